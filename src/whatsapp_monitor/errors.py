"""Exception hierarchy shared by the monitor components."""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for errors raised by the monitor itself."""


class NotConnectedError(MonitorError):
    """Operation needs a live WhatsApp session but there is none."""

    def __init__(self, message: str = "WhatsApp not connected") -> None:
        super().__init__(message)


class ValidationError(MonitorError):
    """Request payload is missing a required field or has the wrong shape."""


class MessageNotFoundError(MonitorError):
    """Requested captured message id is not in the log."""


class BackendError(MonitorError):
    """Processing backend was unreachable or answered with an error."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GatewayError(MonitorError):
    """Chat client call failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SessionError(GatewayError):
    """Encrypted session state is out of sync with the peer."""


def is_session_error(exc: BaseException) -> bool:
    """Return True when ``exc`` belongs to the session-layer failure class."""

    if isinstance(exc, SessionError):
        return True
    return "SessionError" in str(exc)
