"""Error taxonomy shared by the engine, the HTTP layer and the CLI.

Every failure a caller can act on is a :class:`DepthwiseError` subclass with a
stable ``code`` string and an HTTP ``status_code``.  The engine raises them;
``depthwise.api.app`` turns them into JSON payloads and the CLI prints them.

=====================  ======  ===============================================
code                   status  caller action
=====================  ======  ===============================================
INVALID_INPUT          400     fix the payload
UNAUTHORIZED           401     sign in
SESSION_NOT_FOUND      404     start a new exploration
NODE_NOT_FOUND         404     reload the session
ANONYMOUS_DEPTH_LIMIT  401     sign in (then migrate the anonymous session)
DEPTH_LIMIT_REACHED    429     upgrade the tier
LIMIT_REACHED          429     upgrade the tier or wait for the monthly reset
RATE_LIMIT_EXCEEDED    429     slow down
UPSTREAM_TRANSIENT     504/429 retry with backoff
SERVER_ERROR           500/503 nothing; the failure is logged server-side
=====================  ======  ===============================================
"""

from __future__ import annotations

from typing import Any


class DepthwiseError(Exception):
    """Base class: carries a machine-readable code and extra payload fields."""

    code = "SERVER_ERROR"
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON body sent to HTTP callers."""
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class InvalidInput(DepthwiseError):
    code = "INVALID_INPUT"
    status_code = 400
    default_message = "Invalid input"


class AuthenticationRequired(DepthwiseError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "You must be signed in"


class SessionNotFound(DepthwiseError):
    code = "SESSION_NOT_FOUND"
    status_code = 404
    default_message = (
        "Session expired or not found. Please start a new exploration."
    )


class NodeNotFound(DepthwiseError):
    code = "NODE_NOT_FOUND"
    status_code = 404
    default_message = "Parent node not found"


class AnonymousDepthLimit(DepthwiseError):
    """Anonymous sessions stop at a fixed depth; this drives the sign-in funnel."""

    code = "ANONYMOUS_DEPTH_LIMIT"
    status_code = 401
    default_message = "Sign in to explore deeper"


class DepthLimitReached(DepthwiseError):
    code = "DEPTH_LIMIT_REACHED"
    status_code = 429
    default_message = "Maximum depth reached for your plan"


class LimitReached(DepthwiseError):
    code = "LIMIT_REACHED"
    status_code = 429
    default_message = "Exploration limit reached"


class RateLimitExceeded(DepthwiseError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    default_message = "Too many requests. Please try again later."


class UpstreamTransient(DepthwiseError):
    """Generator timed out or was rate limited; safe to retry with backoff."""

    code = "UPSTREAM_TRANSIENT"
    status_code = 504
    default_message = "Request timed out. Please try again."

    def __init__(self, message: str | None = None, kind: str = "timeout", **details: Any) -> None:
        super().__init__(message, kind=kind, **details)
        self.kind = kind
        if kind == "rate_limited":
            self.status_code = 429


class ServerError(DepthwiseError):
    code = "SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str | None = None, kind: str = "generic", **details: Any) -> None:
        super().__init__(message, kind=kind, **details)
        self.kind = kind
        if kind == "unavailable":
            self.status_code = 503


class GraphIntegrityError(ServerError):
    """Stored parent pointers violate the tree shape (cycle, depth skew)."""

    default_message = "Graph data is inconsistent"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message, kind="integrity", **details)


_ERRORS_BY_CODE: dict[str, type[DepthwiseError]] = {
    cls.code: cls
    for cls in (
        InvalidInput,
        AuthenticationRequired,
        SessionNotFound,
        NodeNotFound,
        AnonymousDepthLimit,
        DepthLimitReached,
        LimitReached,
        RateLimitExceeded,
        UpstreamTransient,
        ServerError,
    )
}


def error_from_payload(payload: dict[str, Any], status_code: int | None = None) -> DepthwiseError:
    """Rebuild a :class:`DepthwiseError` from an HTTP error body.

    Unknown codes fall back to :class:`ServerError`.
    """
    details = {k: v for k, v in payload.items() if k not in ("error", "code")}
    cls = _ERRORS_BY_CODE.get(str(payload.get("code", "")), ServerError)
    error = cls(payload.get("error"), **details)
    if status_code is not None:
        error.status_code = status_code
    return error
