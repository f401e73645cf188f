"""Miscellaneous helpers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

GROUP_SUFFIX = "@g.us"

# Chatter emitted by the chat client while it renegotiates signal sessions.
_SESSION_NOISE = (
    "Bad MAC",
    "Failed to decrypt",
    "Session error",
    "Closing session",
    "Closing open session in favor of incoming prekey bundle",
    "SessionEntry",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_group_jid(jid: str | None) -> bool:
    return bool(jid) and GROUP_SUFFIX in str(jid)


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse textual boolean configuration values.

    Supported truthy values: ``on``, ``true``, ``yes``, ``1`` (case-insensitive).
    Supported falsy values: ``off``, ``false``, ``no``, ``0``.
    Any other value returns ``default``.
    """

    if value is None:
        return default
    normalized = value.strip().lower()
    if not normalized:
        return default
    if normalized in {"on", "true", "yes", "1"}:
        return True
    if normalized in {"off", "false", "no", "0"}:
        return False
    return default


def parse_limit(value: str | None, default: int) -> int:
    """Parse a positive integer query value, falling back to ``default``."""

    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def dig(payload: Any, *path: str) -> Any:
    """Follow ``path`` through nested mappings, returning None on any miss."""

    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def clip(text: str, limit: int = 100) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class SessionNoiseFilter(logging.Filter):
    """Drop decrypt/session renegotiation chatter coming from the chat client."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(marker in message for marker in _SESSION_NOISE)
