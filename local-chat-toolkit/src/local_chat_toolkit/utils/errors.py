"""
Error taxonomy for the chat generation pipeline.

Every domain failure is a 'PipelineError' carrying an 'ErrorKind'. The kind decides
two things: whether the failure may be retried with backoff ('RETRYABLE_KINDS') and
how the orchestrator reacts to it (fatal for validation and history, non-fatal for
retrieval and persistence).

Exceptions raised by third-party clients (the ollama HTTP client, a remote store,
...) are mapped onto the same taxonomy by 'classify_error', which inspects the
exception type, an HTTP 'status_code' / 'status' attribute and finally the class
name. 4xx statuses are never retried, with the single exception of 429.
"""

import asyncio
from enum import StrEnum


class ErrorKind(StrEnum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVICE_UNAVAILABLE = "service_unavailable"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CONFIGURATION = "configuration"
    MALFORMED = "malformed"
    PERSISTENCE = "persistence"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.RATE_LIMIT}
)

HTTP_STATUS_TO_KIND: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMIT,
    500: ErrorKind.INTERNAL,
    502: ErrorKind.SERVICE_UNAVAILABLE,
    503: ErrorKind.SERVICE_UNAVAILABLE,
    504: ErrorKind.TIMEOUT,
}

# Transport errors of httpx (used by the ollama client) and similar libraries,
# matched by name so the pipeline does not import them.
ERROR_NAME_TO_KIND: dict[str, ErrorKind] = {
    "ConnectError": ErrorKind.NETWORK,
    "ConnectTimeout": ErrorKind.TIMEOUT,
    "ReadTimeout": ErrorKind.TIMEOUT,
    "WriteTimeout": ErrorKind.TIMEOUT,
    "PoolTimeout": ErrorKind.TIMEOUT,
    "RemoteProtocolError": ErrorKind.NETWORK,
    "NetworkError": ErrorKind.NETWORK,
    "ServiceUnavailableError": ErrorKind.SERVICE_UNAVAILABLE,
    "RateLimitError": ErrorKind.RATE_LIMIT,
}


class PipelineError(Exception):
    """Base class for all domain failures raised inside pipeline stages."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: ErrorKind | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} ({type(self.cause).__name__}: {self.cause})"
        return self.message


class ValidationError(PipelineError):
    kind = ErrorKind.VALIDATION


class NotFoundError(PipelineError):
    kind = ErrorKind.NOT_FOUND


class TransientError(PipelineError):
    """Network, timeout or service-unavailable failure. Retryable with backoff."""

    kind = ErrorKind.NETWORK


class ConfigurationError(PipelineError):
    kind = ErrorKind.CONFIGURATION


class PromptTemplateError(ConfigurationError):
    """A prompt template could not be rendered with the supplied values."""

    def __init__(self, message: str, missing_placeholders: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_placeholders = missing_placeholders or []


class PersistenceError(PipelineError):
    kind = ErrorKind.PERSISTENCE


class MalformedResponseError(PipelineError):
    kind = ErrorKind.MALFORMED


class ModelBackendError(PipelineError):
    """The model backend failed in a way that is not a transport problem."""

    kind = ErrorKind.INTERNAL


def classify_error(error: BaseException) -> ErrorKind:
    """Return the 'ErrorKind' of any exception, pipeline-owned or foreign."""
    if isinstance(error, PipelineError):
        return error.kind
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int):
        if status in HTTP_STATUS_TO_KIND:
            return HTTP_STATUS_TO_KIND[status]
        if 400 <= status < 500:
            return ErrorKind.BAD_REQUEST
        if status >= 500:
            return ErrorKind.INTERNAL

    for cls in type(error).__mro__:
        if cls.__name__ in ERROR_NAME_TO_KIND:
            return ERROR_NAME_TO_KIND[cls.__name__]

    if isinstance(error, ConnectionError):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    return classify_error(error) in RETRYABLE_KINDS


def as_pipeline_error(error: BaseException, message: str) -> PipelineError:
    """Wrap a foreign exception into the matching 'PipelineError' subclass."""
    if isinstance(error, PipelineError):
        return error
    kind = classify_error(error)
    if kind in RETRYABLE_KINDS:
        return TransientError(message, kind=kind, cause=error)
    if kind == ErrorKind.NOT_FOUND:
        return NotFoundError(message, cause=error)
    if kind in (ErrorKind.VALIDATION, ErrorKind.BAD_REQUEST):
        return ValidationError(message, kind=kind, cause=error)
    return PipelineError(message, kind=kind, cause=error)
