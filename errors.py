"""Error taxonomy surfaced to API callers as ``{"error": message}``."""


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(ServiceError):
    """Missing, empty or oversized input."""

    status_code = 400


class InvalidDocument(ServiceError):
    """The upload claims a supported type but cannot be decoded."""

    status_code = 400


class UnsupportedMediaType(ServiceError):
    status_code = 400


class UnsupportedFormat(ServiceError):
    status_code = 400


class SessionNotFound(ServiceError):
    status_code = 404

    def __init__(self, doc_id: str):
        super().__init__(f"Data not found for id: {doc_id}")
        self.doc_id = doc_id


class ExtractionFailed(ServiceError):
    """The model API call for extraction failed (network, quota, auth, timeout)."""

    status_code = 500


class ChatFailed(ServiceError):
    """The model API call for chat failed to start or broke mid-stream."""

    status_code = 500


class UpstreamUnavailable(ServiceError):
    """No credential configured for the model API, or proxy backend unreachable."""

    status_code = 503
