"""Turn raw ``messages.upsert`` events into captured messages.

Processing order for every message of an accepted batch:

1) batch type must be ``notify`` (new) or ``append`` (history)
2) skip messages sent by this account
3) skip anything outside a monitored group
4) unwrap ephemeral / view-once envelopes
5) extract text and download an image if present
6) drop messages with neither text nor image
7) resolve the group name, admit to the log, optionally auto-clone

Media download and group name lookup are best-effort: a failure there
degrades the captured message instead of dropping it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from .forwarder import CloneForwarder
from .message_log import CapturedMessageLog
from .models import DEFAULT_IMAGE_TYPE, MediaPayload, NormalizedMessage
from .registry import GroupRegistry
from .session import SessionContext
from .utils import clip, dig, is_group_jid, utcnow

logger = logging.getLogger(__name__)

ACCEPTED_UPSERT_TYPES = frozenset({"notify", "append"})

# Wrappers are peeled at most once each, in this order.
ENVELOPE_KEYS: tuple[str, ...] = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
)

# Message subtypes fill mutually exclusive fields; the most common come first.
TEXT_PATHS: tuple[tuple[str, ...], ...] = (
    ("conversation",),
    ("extendedTextMessage", "text"),
    ("imageMessage", "caption"),
    ("videoMessage", "caption"),
    ("documentMessage", "caption"),
    ("listResponseMessage", "singleSelectReply", "selectedRowId"),
    ("buttonsResponseMessage", "selectedButtonId"),
)

UNKNOWN_SENDER = "Unknown"


def unwrap_content(content: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    """Return the innermost content map beneath any envelope layers."""

    current = content
    for key in ENVELOPE_KEYS:
        inner = dig(current, key, "message")
        if isinstance(inner, Mapping):
            current = inner
    return current


def extract_text(content: Mapping[str, Any] | None) -> str:
    if not content:
        return ""
    for path in TEXT_PATHS:
        value = dig(content, *path)
        if isinstance(value, str) and value:
            return value
    return ""


def find_image(
    content: Mapping[str, Any] | None, raw_content: Mapping[str, Any] | None
) -> Mapping[str, Any] | None:
    """Return the image sub-message, preferring the unwrapped content."""

    for candidate in (dig(content, "imageMessage"), dig(raw_content, "imageMessage")):
        if isinstance(candidate, Mapping):
            return candidate
    return None


class MessageNormalizer:
    """Filter, normalize and admit inbound group messages."""

    def __init__(
        self,
        context: SessionContext,
        registry: GroupRegistry,
        message_log: CapturedMessageLog,
        forwarder: CloneForwarder | None = None,
        *,
        auto_clone: bool = False,
    ) -> None:
        self._context = context
        self._registry = registry
        self._log = message_log
        self._forwarder = forwarder
        self._auto_clone = auto_clone and forwarder is not None

    async def handle_upsert(self, event: Mapping[str, Any]) -> list[NormalizedMessage]:
        """Process one ``messages.upsert`` batch, returning admitted messages."""

        messages = event.get("messages") or []
        upsert_type = event.get("type")
        logger.debug("Received %d message(s), type %s", len(messages), upsert_type)
        if upsert_type not in ACCEPTED_UPSERT_TYPES:
            logger.debug("Ignoring upsert type %s", upsert_type)
            return []

        admitted: list[NormalizedMessage] = []
        for raw in messages:
            if not isinstance(raw, Mapping):
                continue
            try:
                message = await self.normalize(raw)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Failed to process message %s", dig(raw, "key", "id"))
                continue
            if message is None:
                continue
            self._admit(message)
            admitted.append(message)
        return admitted

    async def normalize(self, raw: Mapping[str, Any]) -> NormalizedMessage | None:
        """Return the canonical message for ``raw`` or None when it is not eligible."""

        key = raw.get("key") or {}
        if key.get("fromMe"):
            logger.debug("Skipping own message")
            return None

        chat_id = key.get("remoteJid")
        if not is_group_jid(chat_id):
            logger.debug("Skipping non-group chat %s", chat_id)
            return None
        if chat_id not in self._registry:
            logger.debug("Skipping unmonitored group %s", chat_id)
            return None

        raw_content = raw.get("message")
        if not isinstance(raw_content, Mapping):
            raw_content = None
        content = unwrap_content(raw_content)
        text = extract_text(content)

        media = None
        image = find_image(content, raw_content)
        if image is not None:
            media = await self._download_image(raw, image)

        if not text and media is None:
            logger.debug("Skipping message without text or image in %s", chat_id)
            return None

        group_name = await self._resolve_group_name(chat_id)
        message = NormalizedMessage(
            id=str(key.get("id") or ""),
            timestamp=utcnow(),
            group_id=chat_id,
            group_name=group_name,
            sender=raw.get("pushName") or UNKNOWN_SENDER,
            sender_id=key.get("participant") or chat_id,
            text=text,
            media=media,
        )
        return message

    def _admit(self, message: NormalizedMessage) -> None:
        self._log.admit(message)
        logger.info(
            "New message in %s from %s: %s",
            message.group_name,
            message.sender,
            clip(message.text),
        )
        if self._auto_clone and self._forwarder is not None:
            self._forwarder.auto_forward(message)

    async def _download_image(
        self, raw: Mapping[str, Any], image: Mapping[str, Any]
    ) -> MediaPayload | None:
        socket = self._context.socket
        if socket is None:
            return None
        try:
            data = await socket.download_media(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Image download failed: %s", exc)
            return None
        if not data:
            return None
        content_type = str(image.get("mimetype") or DEFAULT_IMAGE_TYPE).split(";")[0].strip()
        return MediaPayload(data=bytes(data), content_type=content_type or DEFAULT_IMAGE_TYPE)

    async def _resolve_group_name(self, chat_id: str) -> str:
        socket = self._context.socket
        if socket is None:
            return chat_id
        try:
            metadata = await socket.group_metadata(chat_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Group metadata lookup for %s failed: %s", chat_id, exc)
            return chat_id
        subject = metadata.get("subject") if isinstance(metadata, Mapping) else None
        return str(subject) if subject else chat_id
