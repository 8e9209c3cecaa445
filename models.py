import base64
from typing import Any, Literal
from pydantic import (
    BaseModel,
    Field,
    RootModel,
    ValidationError,
    model_validator,
    field_validator,
)
from pydantic_core import PydanticSerializationError
from enum import StrEnum

from exc import DecodeError, EncodeError


class ApiVersion(StrEnum):
    V1 = "admission.k8s.io/v1"
    V1BETA1 = "admission.k8s.io/v1beta1"


class Operation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class PatchType(StrEnum):
    JSONPatch = "JSONPatch"


class PatchOp(StrEnum):
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"


class PatchAction(BaseModel):
    op: PatchOp
    path: str
    value: Any


# https://jsonpatch.com/
Patch = RootModel[list[PatchAction]]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class AdmissionReviewStatus(BaseModel):
    message: str


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionResponse(BaseModel):
    allowed: bool
    status: AdmissionReviewStatus | None = None
    uid: str
    patchType: PatchType | None = None
    patch: str | None = None

    @field_validator("patch", mode="before")
    @classmethod
    def validate_patch(cls, val):
        if isinstance(val, Patch):
            val = base64.b64encode(val.model_dump_json().encode()).decode()
        elif isinstance(val, (str, bytes)):
            # Make sure the base64 string contains valid data.
            Patch.model_validate_json(base64.b64decode(val))
        return val

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch and not self.patchType:
            raise ValueError("missing patchType field")
        if self.patchType and not self.patch:
            raise ValueError(f"patchType is {self.patchType} but there is no patch")

        return self

    def decoded_patch(self) -> Patch | None:
        if self.patch is None:
            return None

        return Patch.model_validate_json(base64.b64decode(self.patch))


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str
    kind: str


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
class AdmissionRequest(BaseModel):
    uid: str = Field(min_length=1)
    kind: GroupVersionKind | None = None
    name: str | None = None
    namespace: str | None = None
    operation: Operation = Operation.CREATE
    object: dict[str, Any]


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: ApiVersion = ApiVersion.V1
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")

        return self


class Metadata(BaseModel):
    name: str | None = None
    generateName: str | None = None
    namespace: str | None = None
    labels: dict[str, str] = {}


class Pod(BaseModel):
    """The parts of a pod we look at.

    Only `/spec/affinity` is ever patched, so `spec` is carried as an opaque
    mapping rather than modelled field by field.
    """

    apiVersion: str | None = None
    kind: Literal["Pod"] | None = None
    metadata: Metadata = Metadata()
    spec: dict[str, Any] | None = None

    @property
    def display_name(self) -> str:
        if self.metadata.name:
            return self.metadata.name
        if self.metadata.generateName:
            return f"{self.metadata.generateName}<generated>"
        return "<unnamed>"


def decode_review(body: bytes | str) -> AdmissionReview:
    """Decode an AdmissionReview that carries a request.

    Raises DecodeError if the body is not JSON, is not an AdmissionReview, or
    holds only a response.
    """

    try:
        review = AdmissionReview.model_validate_json(body)
    except ValidationError as err:
        raise DecodeError(f"Error decoding admission review: {err}") from err

    if review.request is None:
        raise DecodeError("Error decoding admission review: missing request")

    return review


def decode_pod(review: AdmissionReview) -> Pod:
    try:
        return Pod.model_validate(review.request.object)
    except ValidationError as err:
        raise DecodeError(f"Error unmarshaling pod: {err}") from err


def encode_review(review: AdmissionReview) -> bytes:
    try:
        return review.model_dump_json(exclude_none=True).encode()
    except PydanticSerializationError as err:
        raise EncodeError(
            f"Error marshaling admission review response: {err}"
        ) from err
