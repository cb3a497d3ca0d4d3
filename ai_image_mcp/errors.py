"""Typed failure taxonomy shared by the resolver, poller, client and tools.

Architectural role:
    Every layer raises one of the classes below instead of bare `RuntimeError`
    so the protocol and HTTP adapters can map failures to stable error codes
    without parsing message text.

Error handling strategy:
    - Errors propagate unchanged to the dispatch layer.
    - The only locally recovered category is the transient poll failure
      (`RemoteServiceError.is_transient`), handled inside `core.job_polling`.
    - `describe_error` builds the single user-visible message per failure.
"""

from __future__ import annotations


class ImageGatewayError(Exception):
    """Base class for all adapter failures."""

    category = "error"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidRequestError(ImageGatewayError, ValueError):
    """Malformed or missing caller input. Never retried."""

    category = "invalid_request"


class NotFoundError(ImageGatewayError, LookupError):
    """A local record, remote token or model does not exist."""

    category = "not_found"


class UnknownToolError(NotFoundError):
    """Dispatch received a tool name that is not registered."""

    category = "unknown_tool"


# HTTP status -> remote failure category.
_STATUS_CATEGORIES = {
    400: "bad_request",
    401: "unauthorized",
    403: "unauthorized",
    404: "not_found",
    409: "not_ready",
    422: "bad_request",
    425: "not_ready",
    429: "rate_limited",
}

_CATEGORY_LABELS = {
    "bad_request": "Bad request",
    "unauthorized": "Unauthorized",
    "not_found": "Endpoint or resource not found",
    "not_ready": "Resource not ready",
    "rate_limited": "Rate limit exceeded",
    "server_error": "Server error",
    "unavailable": "Service unavailable",
    "remote_error": "Remote error",
}

TRANSIENT_REMOTE_CATEGORIES = frozenset({"not_found", "not_ready", "rate_limited", "unavailable"})


def category_for_status(status_code: int | None) -> str:
    """Map an HTTP status code to a remote failure category.

    `None` means the request never produced a response (transport failure).
    """
    if status_code is None:
        return "unavailable"
    if status_code in _STATUS_CATEGORIES:
        return _STATUS_CATEGORIES[status_code]
    if status_code >= 500:
        return "server_error"
    return "remote_error"


class RemoteServiceError(ImageGatewayError):
    """The remote service answered with an error status or could not be reached.

    Attributes:
        status_code: HTTP status, or `None` for transport failures.
        remote_category: One of the `category_for_status` labels.
        detail: Upstream `detail` string when the service supplied one.
    """

    category = "remote_service"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        remote_category: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.remote_category = remote_category or category_for_status(status_code)
        label = _CATEGORY_LABELS.get(self.remote_category, self.remote_category)
        parts = [f"{message}: {label}"]
        if status_code is not None:
            parts.append(f"(HTTP {status_code})")
        if detail:
            parts.append(f"- {detail}")
        super().__init__(" ".join(parts), detail=detail)

    @property
    def is_transient(self) -> bool:
        """Whether a poll loop may swallow this error and try again."""
        return self.remote_category in TRANSIENT_REMOTE_CATEGORIES


class JobFailedError(ImageGatewayError):
    """A polled remote job reached a terminal failure state."""

    category = "job_failed"

    def __init__(self, job_id: str, status: str, detail: str | None = None) -> None:
        self.job_id = job_id
        self.status = status
        message = f"Job {job_id} ended with status '{status}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, detail=detail)


class OperationTimeoutError(ImageGatewayError, TimeoutError):
    """Job polling or an HTTP call exceeded its configured bound."""

    category = "timeout"

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float | None = None,
        job_id: str | None = None,
        last_status: str | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.job_id = job_id
        self.last_status = last_status
        super().__init__(message)

    @classmethod
    def for_job(cls, job_id: str, timeout_seconds: float, last_status: str | None) -> "OperationTimeoutError":
        status = last_status or "unknown"
        return cls(
            f"Job {job_id} did not finish within {timeout_seconds:g} seconds "
            f"(last status: {status})",
            timeout_seconds=timeout_seconds,
            job_id=job_id,
            last_status=status,
        )


class BinaryUnavailableError(ImageGatewayError):
    """Image bytes were mandatory but neither the cache nor the remote had them."""

    category = "binary_unavailable"

    def __init__(self, message: str, *, reference: str | None = None) -> None:
        self.reference = reference
        super().__init__(message)


def describe_error(operation: str, exc: BaseException) -> str:
    """Build the single user-visible failure message for a tool call.

    Format: `"<operation> failed [<category>]: <message>"`. Non-taxonomy
    exceptions are labelled `internal_error`.
    """
    if isinstance(exc, RemoteServiceError):
        category = f"{exc.category}/{exc.remote_category}"
    elif isinstance(exc, ImageGatewayError):
        category = exc.category
    else:
        category = "internal_error"
    text = str(exc) or exc.__class__.__name__
    return f"{operation} failed [{category}]: {text}"
