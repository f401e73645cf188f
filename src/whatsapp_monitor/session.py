"""Chat client port and the per-process session context.

The monitor never talks to WhatsApp directly. Everything it needs from the
chat client is described by :class:`ChatSocket`; the live socket, the
connection state and the cached pairing code live in a
:class:`SessionContext` that is handed to every component explicitly.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from .errors import NotConnectedError
from .models import ConnectionState
from .qr import QRCache

EventHandler = Callable[[Mapping[str, Any]], Awaitable[None]]

CONNECTION_UPDATE = "connection.update"
CREDS_UPDATE = "creds.update"
MESSAGES_UPSERT = "messages.upsert"


class DisconnectReason(enum.IntEnum):
    """Status codes attached to a closed connection."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


class ChatSocket(Protocol):
    """Operations the monitor consumes from the chat client."""

    def on(self, event: str, handler: EventHandler) -> None: ...

    async def save_credentials(self) -> None: ...

    async def send_message(self, jid: str, content: Mapping[str, Any]) -> Any: ...

    async def group_metadata(self, jid: str) -> Mapping[str, Any]: ...

    async def group_fetch_all_participating(self) -> Mapping[str, Mapping[str, Any]]: ...

    async def group_create(
        self, subject: str, participants: Sequence[str]
    ) -> Mapping[str, Any]: ...

    async def download_media(self, message: Mapping[str, Any]) -> bytes: ...

    async def logout(self) -> None: ...

    async def close(self) -> None: ...


SocketFactory = Callable[[Path], Awaitable[ChatSocket]]


class SessionContext:
    """Owned holder of the single live session and its derived state."""

    def __init__(self, qr_cache: QRCache | None = None) -> None:
        self.socket: ChatSocket | None = None
        self.state = ConnectionState.DISCONNECTED
        self.qr = qr_cache or QRCache()

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def require_socket(self) -> ChatSocket:
        """Return the live socket or raise when the session is not connected."""

        if not self.connected or self.socket is None:
            raise NotConnectedError()
        return self.socket
