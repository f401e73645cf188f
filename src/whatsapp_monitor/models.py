"""Data models used across the monitor service."""

from __future__ import annotations

import base64
import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

DEFAULT_IMAGE_TYPE = "image/jpeg"


class ConnectionState(str, enum.Enum):
    """Lifecycle state of the single chat session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_PENDING = "qr-pending"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class MediaPayload:
    """Downloaded image bytes with their declared content type."""

    data: bytes
    content_type: str = DEFAULT_IMAGE_TYPE

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


@dataclass(frozen=True, slots=True)
class NormalizedMessage:
    """Canonical shape of a captured group message."""

    id: str
    timestamp: datetime
    group_id: str
    group_name: str
    sender: str
    sender_id: str
    text: str = ""
    media: MediaPayload | None = None

    @property
    def image_url(self) -> str | None:
        return self.media.data_url if self.media is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "groupId": self.group_id,
            "groupName": self.group_name,
            "sender": self.sender,
            "senderId": self.sender_id,
            "text": self.text,
            "imageUrl": self.image_url,
        }


@dataclass(frozen=True, slots=True)
class ClonePayload:
    """Single message body understood by the processing backend."""

    text: str
    image_url: str | None
    group_id: str | None
    group_name: str | None

    @classmethod
    def from_message(cls, message: NormalizedMessage) -> "ClonePayload":
        return cls(
            text=message.text,
            image_url=message.image_url,
            group_id=message.group_id,
            group_name=message.group_name,
        )

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.image_url

    def to_wire(self) -> dict[str, Any]:
        return {
            "mensagem": self.text or "",
            "imagem_url": self.image_url,
            "grupo_origem": self.group_id,
            "grupo_origem_nome": self.group_name,
        }


@dataclass(frozen=True, slots=True)
class OutboundContent:
    """Operator supplied message: plain text or an image with a caption."""

    text: str
    image_url: str | None = None

    def to_payload(self) -> dict[str, Any]:
        if self.image_url:
            return {"image": {"url": self.image_url}, "caption": self.text}
        return {"text": self.text}


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of delivering one message to one destination."""

    group_id: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"groupId": self.group_id, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class GroupInfo:
    """Group metadata as reported by the chat client."""

    id: str
    subject: str
    participants: Sequence[Mapping[str, Any]] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "GroupInfo":
        participants = payload.get("participants") or ()
        return cls(
            id=str(payload.get("id") or ""),
            subject=str(payload.get("subject") or ""),
            participants=list(participants),
        )


@dataclass(slots=True)
class ConnectionUpdate:
    """Subset of a ``connection.update`` event used by the lifecycle manager."""

    connection: str | None = None
    qr: str | None = None
    status_code: int | None = None
    error_message: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ConnectionUpdate":
        status = payload.get("statusCode")
        last_disconnect = payload.get("lastDisconnect")
        message = payload.get("errorMessage")
        if isinstance(last_disconnect, Mapping):
            error = last_disconnect.get("error")
            if isinstance(error, Mapping):
                output = error.get("output")
                if status is None and isinstance(output, Mapping):
                    status = output.get("statusCode")
                if message is None:
                    message = error.get("message")
        return cls(
            connection=payload.get("connection"),
            qr=payload.get("qr"),
            status_code=int(status) if status is not None else None,
            error_message=str(message) if message is not None else None,
        )


@dataclass(slots=True)
class ReconnectPolicy:
    """Delays applied by the lifecycle manager between session attempts."""

    reset_delay: float = 3.0
    base_delay: float = 5.0
    max_delay: float = 60.0
    error_delay: float = 10.0

    def backoff(self, attempt: int) -> float:
        """Return the delay before reconnect ``attempt`` (1-based)."""

        if attempt <= 1:
            return min(self.base_delay, self.max_delay)
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


@dataclass(slots=True)
class RetryPolicy:
    """Tunable behaviour of the outbound delivery engine."""

    max_attempts: int = 3
    session_delay_step: float = 2.0
    retry_delay: float = 1.0
    fanout_delay: float = 1.0


@dataclass(slots=True)
class Settings:
    """Process configuration assembled by the command line entry point."""

    host: str = "0.0.0.0"
    port: int = 3001
    backend_url: str = "http://localhost:5000"
    gateway_url: str = "http://localhost:8080"
    session_name: str = "promo-monitor"
    auth_dir: Path = Path("auth_info_baileys")
    groups_file: Path = Path("monitored_groups.json")
    log_capacity: int = 500
    auto_clone: bool = True
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
