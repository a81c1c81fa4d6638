"""Error taxonomy for the recognition engines and the hybrid coordinator.

Every error raised by this package derives from ``RecognitionError``. The
cloud engine maps HTTP status codes to error classes through ``STATUS_ERRORS``;
anything not in the table becomes a ``ServiceError``.
"""
from __future__ import annotations


class RecognitionError(Exception):
    """Base class for all recognition failures."""

    retryable: bool = False


class ConfigurationError(RecognitionError):
    """Missing or malformed credential, or an engine that cannot start."""


class ValidationError(RecognitionError):
    """Malformed image payload, or a request the service rejected (HTTP 400)."""


class NetworkError(RecognitionError):
    retryable = True


class DeadlineExceededError(RecognitionError):
    """The cloud attempt did not finish within ``max_time``."""

    retryable = True


class CloudServiceError(RecognitionError):
    """Non-2xx answer from the cloud endpoint."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(CloudServiceError):
    """Credential rejected; not retryable without a new credential."""


class QuotaError(CloudServiceError):
    retryable = True


class ServiceError(CloudServiceError):
    pass


class StateError(RecognitionError):
    """Operation invoked before ``initialize()``."""


class ProcessingError(RecognitionError):
    """Terminal failure surfaced by the coordinator after every path failed."""


STATUS_ERRORS: dict[int, type[RecognitionError]] = {
    400: ValidationError,
    403: AuthError,
    404: ServiceError,
    429: QuotaError,
}

STATUS_MESSAGES: dict[int, str] = {
    403: "API key authentication failed: Please check your cloud vision API key",
    404: "Cloud vision service not found: Please check your API configuration",
    429: "API quota exceeded: You have reached your cloud vision usage limit",
}

NETWORK_ERROR_MESSAGE = "Network error: Please check your internet connection"


def error_for_status(status_code: int, detail: str) -> RecognitionError:
    """Build the error for a non-2xx response.

    ``detail`` is the message from the response body (or the reason phrase).
    A 400 echoes it verbatim; mapped statuses use their fixed user-facing text;
    everything else becomes a ``ServiceError`` carrying status and detail.
    """
    cls = STATUS_ERRORS.get(status_code, ServiceError)
    if cls is ValidationError:
        return ValidationError(detail or "Invalid image format")
    message = STATUS_MESSAGES.get(
        status_code, f"Cloud vision API error: {status_code} - {detail}"
    )
    return cls(message, status_code=status_code)
