import logging

from enum import StrEnum
from kubernetes import client
from pydantic import BaseModel, ConfigDict, Field, model_validator

from exc import EncodeError
from models import (
    ApiVersion,
    AdmissionReview,
    AdmissionResponse,
    Patch,
    PatchAction,
    PatchOp,
    PatchType,
)

LOG = logging.getLogger(__name__)

CAPACITY_LABEL = "node.kubernetes.io/capacity"
ON_DEMAND = "on-demand"
SPOT = "spot"
PREFERRED_WEIGHT = 10

AFFINITY_PATH = "/spec/affinity"

# Only used for its model-to-JSON conversion; it never talks to a cluster.
_serializer = client.ApiClient()


class AffinityKind(StrEnum):
    REQUIRED = "required"
    PREFERRED = "preferred"


class AffinityPatch(BaseModel):
    """A node affinity on a single capacity label.

    REQUIRED pins the pod to nodes whose label matches `capacity`. PREFERRED
    asks the scheduler to favour such nodes with the given `weight`.
    """

    model_config = ConfigDict(frozen=True)

    kind: AffinityKind
    label: str = Field(min_length=1)
    capacity: str = Field(min_length=1)
    weight: int | None = Field(default=None, ge=1, le=100)

    @model_validator(mode="after")
    def validate_model(self):
        if self.kind == AffinityKind.PREFERRED and self.weight is None:
            raise ValueError("a preferred affinity needs a weight")
        if self.kind == AffinityKind.REQUIRED and self.weight is not None:
            raise ValueError("a required affinity does not take a weight")

        return self

    def to_affinity(self) -> client.V1Affinity:
        term = client.V1NodeSelectorTerm(
            match_expressions=[
                client.V1NodeSelectorRequirement(
                    key=self.label, operator="In", values=[self.capacity]
                )
            ]
        )

        if self.kind == AffinityKind.REQUIRED:
            node_affinity = client.V1NodeAffinity(
                required_during_scheduling_ignored_during_execution=client.V1NodeSelector(
                    node_selector_terms=[term]
                )
            )
        else:
            node_affinity = client.V1NodeAffinity(
                preferred_during_scheduling_ignored_during_execution=[
                    client.V1PreferredSchedulingTerm(weight=self.weight, preference=term)
                ]
            )

        return client.V1Affinity(node_affinity=node_affinity)

    def to_dict(self) -> dict:
        """Render the affinity the way the API server expects it in a pod spec."""
        return _serializer.sanitize_for_serialization(self.to_affinity())


def decide(
    counter_value: int,
    label: str = CAPACITY_LABEL,
    required_capacity: str = ON_DEMAND,
    preferred_capacity: str = SPOT,
    weight: int = PREFERRED_WEIGHT,
) -> AffinityPatch:
    """Pick the affinity for the pod decided at position `counter_value`.

    The first pod (counter value 0) is required to land on `required_capacity`
    nodes. Every later pod only prefers `preferred_capacity` nodes.
    """

    if counter_value < 0:
        raise ValueError(f"counter value must not be negative, got {counter_value}")

    if counter_value == 0:
        return AffinityPatch(
            kind=AffinityKind.REQUIRED, label=label, capacity=required_capacity
        )

    return AffinityPatch(
        kind=AffinityKind.PREFERRED,
        label=label,
        capacity=preferred_capacity,
        weight=weight,
    )


def build_patch(choice: AffinityPatch) -> Patch:
    # An "add" on an existing object member replaces it, so any affinity the
    # pod already had is overwritten.
    return Patch(
        [
            PatchAction(
                op=PatchOp.ADD,
                path=AFFINITY_PATH,
                value=choice.to_dict(),
            )
        ]
    )


def assemble(
    choice: AffinityPatch, uid: str, api_version: ApiVersion = ApiVersion.V1
) -> AdmissionReview:
    """Wrap `choice` in an allowed AdmissionReview response for request `uid`."""

    try:
        patch = build_patch(choice)
        response = AdmissionResponse(
            uid=uid,
            allowed=True,
            patchType=PatchType.JSONPatch,
            patch=patch,
        )
    except (ValueError, TypeError) as err:
        LOG.error("failed to assemble patch for %s: %s", uid, err)
        raise EncodeError(f"Error marshaling JSON patch: {err}") from err

    return AdmissionReview(apiVersion=api_version, response=response)
