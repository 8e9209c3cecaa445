import functools
import logging
import sys

from flask import Flask, Response, request, jsonify, current_app
from werkzeug.exceptions import UnsupportedMediaType

import affinity

from models import (
    AdmissionReview,
    decode_pod,
    decode_review,
    encode_review,
)
from state import DecisionCounter
from exc import ApplicationError, DecodeError, EncodeError

LOG = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


class DEFAULTS:
    CAPACITY_LABEL = affinity.CAPACITY_LABEL
    REQUIRED_CAPACITY = affinity.ON_DEMAND
    PREFERRED_CAPACITY = affinity.SPOT
    PREFERRED_WEIGHT = affinity.PREFERRED_WEIGHT

    # A fresh counter is created for every app unless one is passed in.
    COUNTER = None

    HOST = "0.0.0.0"
    PORT = 8443
    TLS_CERT_FILE = "/etc/webhook/certs/tls.crt"
    TLS_KEY_FILE = "/etc/webhook/certs/tls.key"


def jsonresponse():
    """Transforms the response from a view function into a JSON object."""

    def _outer(func):
        @functools.wraps(func)
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            if isinstance(res, AdmissionReview):
                return Response(encode_review(res), mimetype="application/json")
            else:
                return jsonify(res)

        return _inner

    return _outer


def decide_affinity(counter, policy):
    """Run `policy` against the counter and advance it, as one step.

    Returns the counter value the policy saw and the affinity it picked. No
    other caller can read or advance the counter in between.
    """

    with counter.exclusive():
        observed = counter.peek()
        choice = policy(observed)
        counter.advance()

    return observed, choice


@jsonresponse()
def mutate_pod():
    if not request.is_json:
        raise UnsupportedMediaType()

    review = decode_review(request.get_data())
    pod = decode_pod(review)
    uid = review.request.uid

    observed, choice = decide_affinity(current_app.counter, current_app.policy)
    LOG.info(
        "request %s: pod %s/%s gets %s %s affinity (counter was %d)",
        uid,
        review.request.namespace or pod.metadata.namespace or "",
        pod.display_name,
        choice.kind,
        choice.capacity,
        observed,
    )

    # Assembling and encoding happen outside the counter's exclusive section.
    # If either fails the counter stays advanced.
    return affinity.assemble(choice, uid, review.apiVersion)


def handle_decodeerror(err):
    LOG.warning("rejecting admission request: %s", err)
    return str(err), 400, {"content-type": "text/plain"}


def handle_encodeerror(err):
    LOG.error("failed to encode admission response: %s", err)
    return str(err), 500, {"content-type": "text/plain"}


def handle_applicationerror(err):
    return str(err), 500, {"content-type": "text/plain"}


def health():
    return "OK", 200, {"content-type": "text/plain"}


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    Each app owns its own DecisionCounter, so two apps (for example in two
    tests) never share decisions. Pass COUNTER to supply one explicitly.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    app.config.from_prefixed_env("AFFINITY")
    if config:
        app.config.update(config)

    app.policy = functools.partial(
        affinity.decide,
        label=app.config["CAPACITY_LABEL"],
        required_capacity=app.config["REQUIRED_CAPACITY"],
        preferred_capacity=app.config["PREFERRED_CAPACITY"],
        weight=app.config["PREFERRED_WEIGHT"],
    )

    # Both branches are built once up front so a bad label or weight stops
    # the server instead of failing every request.
    try:
        app.policy(0)
        app.policy(1)
    except ValueError as err:
        LOG.error("Invalid affinity configuration: %s", err)
        sys.exit(1)

    app.counter = app.config["COUNTER"] or DecisionCounter()

    app.errorhandler(DecodeError)(handle_decodeerror)
    app.errorhandler(EncodeError)(handle_encodeerror)
    app.errorhandler(ApplicationError)(handle_applicationerror)
    app.add_url_rule("/healthz", view_func=health)
    app.add_url_rule("/mutate", view_func=mutate_pod, methods=["POST"])

    return app


def main():
    app = create_app()

    host = app.config["HOST"]
    port = int(app.config["PORT"])
    LOG.info(
        "Starting webhook server on %s:%d (%s=%s required first, %s preferred after)",
        host,
        port,
        app.config["CAPACITY_LABEL"],
        app.config["REQUIRED_CAPACITY"],
        app.config["PREFERRED_CAPACITY"],
    )
    app.run(
        host=host,
        port=port,
        ssl_context=(app.config["TLS_CERT_FILE"], app.config["TLS_KEY_FILE"]),
        threaded=True,
    )


if __name__ == "__main__":
    main()
