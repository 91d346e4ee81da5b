"""
Error taxonomy shared by adapters, the request pipeline and the federation engine.

Every failure surfaced to callers is a :class:`FederationError` tagged with an
:class:`ErrorKind`. Transport exceptions are classified exactly once, at the
request pipeline boundary, by :func:`classify_error`; anything that is already a
:class:`FederationError` passes through untouched.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional

import httpx


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    VALIDATION = "validation"
    NOT_IMPLEMENTED = "not-implemented"
    MISSING_ENDPOINT = "missing-endpoint"
    CLIENT = "client"
    SERVER = "server"
    BACKEND_UNAVAILABLE = "backend-unavailable"
    NETWORK = "network"
    CANCELLED = "cancelled"
    INVALID_ADAPTER = "invalid-adapter"
    GENERIC = "generic"


_DEFAULT_MESSAGES = {
    ErrorKind.VALIDATION: "Invalid or missing parameter",
    ErrorKind.NOT_IMPLEMENTED: "Operation not implemented",
    ErrorKind.MISSING_ENDPOINT: "Endpoint URL is not available for this source",
    ErrorKind.CLIENT: "Request was rejected by the backend",
    ErrorKind.SERVER: "Backend responded with a server error",
    ErrorKind.BACKEND_UNAVAILABLE: "Backend did not respond",
    ErrorKind.NETWORK: "Network is unavailable",
    ErrorKind.CANCELLED: "Request was cancelled",
    ErrorKind.INVALID_ADAPTER: "Adapter kind does not satisfy the adapter contract",
    ErrorKind.GENERIC: "Unexpected error",
}


class FederationError(RuntimeError):
    """
    Tagged error carrying an optional cause and HTTP status code.

    Parameters
    ----------
    kind:
        Failure category.
    message:
        Human-readable summary. Falls back to the cause's message, then to a
        default text for the kind.
    cause:
        The original exception, also exposed as ``__cause__`` when raised
        with ``from``.
    status_code:
        Upstream HTTP status code when one was received.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "",
        *,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ) -> None:
        if not message and cause is not None:
            message = str(cause)
        super().__init__(message or _DEFAULT_MESSAGES[kind])
        self.kind = kind
        self.cause = cause
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"FederationError(kind={self.kind.value!r}, message={str(self)!r}, status_code={self.status_code!r})"

    @classmethod
    def validation(cls, parameter: str, message: str = "") -> "FederationError":
        detail = f" ({message})" if message else ""
        return cls(ErrorKind.VALIDATION, f"Invalid or missing parameter: {parameter}{detail}")

    @classmethod
    def not_implemented(cls, operation: str) -> "FederationError":
        return cls(ErrorKind.NOT_IMPLEMENTED, f"Operation not implemented: {operation}")

    @classmethod
    def missing_endpoint(cls, endpoint: str) -> "FederationError":
        return cls(ErrorKind.MISSING_ENDPOINT, f"Endpoint '{endpoint}' is not available for this source")


def classify_error(
    error: BaseException,
    *,
    connectivity_probe: Optional[Callable[[], Optional[bool]]] = None,
) -> FederationError:
    """
    Map an arbitrary exception onto the error taxonomy.

    ``connectivity_probe`` reports ambient connectivity: ``True`` means the
    machine appears online, so a missing response is blamed on the backend.
    ``None`` or ``False`` result in a network error.
    """

    if isinstance(error, FederationError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        kind = ErrorKind.CLIENT if 400 <= status < 500 else ErrorKind.SERVER
        message = f"HTTP {status} error for {error.request.method} {error.request.url}"
        return FederationError(kind, message, cause=error, status_code=status)
    if isinstance(error, httpx.RequestError):
        online = connectivity_probe() if connectivity_probe is not None else None
        kind = ErrorKind.BACKEND_UNAVAILABLE if online else ErrorKind.NETWORK
        return FederationError(kind, cause=error)
    return FederationError(ErrorKind.GENERIC, cause=error)
