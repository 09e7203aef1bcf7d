"""Error hierarchy for davspace.

Every failure that leaves the Remote Store Client is a DavspaceError subclass
carrying a stable ``code`` so callers can branch on the kind without string
matching. ``classify()`` is the single place where protocol/transport errors
become classified errors.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx


class DavspaceError(Exception):
    """Base error for all davspace failures."""

    code: str = "internal_error"
    status_code: int | None = None

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.__class__.__name__
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class AuthenticationFailedError(DavspaceError):
    code = "authentication_failed"
    status_code = 401


class NotFoundError(DavspaceError):
    code = "not_found"
    status_code = 404


class SourceMissingError(NotFoundError):
    """Clipboard source disappeared before paste."""

    code = "source_missing"


class ConflictError(DavspaceError):
    code = "conflict"
    status_code = 409


class RequestTimeoutError(DavspaceError):
    code = "timeout"
    status_code = 408


class NetworkUnreachableError(DavspaceError):
    code = "network_unreachable"


class PathKindMismatchError(DavspaceError):
    code = "path_kind_mismatch"


class SelfReferenceRejectedError(DavspaceError):
    code = "self_reference_rejected"


class ClipboardExpiredError(DavspaceError):
    code = "clipboard_expired"


class ClipboardEmptyError(DavspaceError):
    code = "clipboard_empty"


class NotConnectedError(DavspaceError):
    code = "not_connected"


class ValidationError(DavspaceError):
    code = "validation_error"
    status_code = 400


class OperationCancelledError(DavspaceError):
    code = "cancelled"


class RemoteStoreError(DavspaceError):
    """Protocol failure that fits no narrower kind (5xx, odd statuses)."""

    code = "remote_error"
    status_code = 502


# Transport-level error codes (errno names) that mean "cannot reach the server".
_UNREACHABLE_CODES = frozenset(
    {"ENOTFOUND", "ECONNREFUSED", "ECONNRESET", "EHOSTUNREACH", "ENETUNREACH", "ENETWORK"}
)


def classify(exc: BaseException, *, path: str | None = None) -> DavspaceError:
    """Translate a protocol or transport exception into a DavspaceError.

    Already-classified errors are returned unchanged so re-raising through
    several layers never changes the kind.
    """
    from davspace.clients.protocol.base import ProtocolError

    if isinstance(exc, DavspaceError):
        return exc

    details: dict[str, Any] = {}
    if path is not None:
        details["path"] = path

    if isinstance(exc, ProtocolError):
        status = exc.status
        if status is not None:
            details["status"] = status
        if status in (401, 403):
            return AuthenticationFailedError(f"Authentication failed: {exc}", **details)
        if status == 404:
            return NotFoundError(f"Not found: {path or exc}", **details)
        if status in (405, 409, 412):
            return ConflictError(f"Conflict: {exc}", **details)
        if status == 408 or exc.code == "ETIMEDOUT":
            return RequestTimeoutError(f"Request timed out: {exc}", **details)
        if exc.code in _UNREACHABLE_CODES or status == 0:
            details["code"] = exc.code
            return NetworkUnreachableError(f"Server unreachable: {exc}", **details)
        return RemoteStoreError(f"Remote store error: {exc}", **details)

    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return RequestTimeoutError(f"Request timed out: {path or exc}", **details)
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError, ConnectionError, OSError)):
        return NetworkUnreachableError(f"Server unreachable: {exc}", **details)
    if isinstance(exc, httpx.HTTPError):
        return RemoteStoreError(f"Remote store error: {exc}", **details)

    return RemoteStoreError(str(exc) or exc.__class__.__name__, **details)


class RemedialAction(str, Enum):
    """Follow-up a UI can offer next to an error message."""

    RETRY = "retry"
    OPEN_SETTINGS = "open_settings"


_MESSAGES: dict[str, str] = {
    "authentication_failed": "{op} failed: authentication failed. Check your username and password.",
    "not_found": "{op} failed: file or directory does not exist. Check that the path is correct.",
    "source_missing": "{op} failed: the source no longer exists, it may have been deleted.",
    "conflict": "{op} failed: conflict. {msg}",
    "timeout": "{op} timed out. Check your network connection or raise the timeout settings.",
    "network_unreachable": "{op} failed: cannot reach the server. Check the server address and your network.",
    "not_connected": "{op} failed: not connected. Connect to the server first.",
    "clipboard_empty": "Nothing to paste: the clipboard is empty.",
    "clipboard_expired": "Nothing to paste: the clipboard entry has expired.",
    "self_reference_rejected": "{op} rejected: {msg}",
    "path_kind_mismatch": "{op} failed: {msg}",
    "cancelled": "{op} was cancelled.",
}


def user_message(error: BaseException, operation: str) -> str:
    """Return an actionable, human-readable message for ``error``."""
    err = classify(error)
    if isinstance(err, RemoteStoreError) and err.details.get("status", 0) >= 500:
        return f"{operation} failed: server error. Please try again later."
    template = _MESSAGES.get(err.code)
    if template is None:
        return f"{operation} failed: {err.message}"
    return template.format(op=operation, msg=err.message)


def remedial_actions(error: BaseException) -> list[RemedialAction]:
    """Suggested follow-up actions for ``error``."""
    err = classify(error)
    if isinstance(err, (AuthenticationFailedError, NotConnectedError)):
        return [RemedialAction.OPEN_SETTINGS]
    if isinstance(err, (RequestTimeoutError, NetworkUnreachableError)):
        return [RemedialAction.RETRY]
    if isinstance(err, RemoteStoreError) and err.details.get("status", 0) >= 500:
        return [RemedialAction.RETRY]
    return []
