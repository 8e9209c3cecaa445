class ApplicationError(Exception):
    """Base class for errors raised while handling an admission request."""


class DecodeError(ApplicationError):
    """The request body could not be decoded into an AdmissionReview and pod."""


class EncodeError(ApplicationError):
    """An internally built response could not be serialized."""
