import logging

from whatsapp_monitor.errors import SessionError, is_session_error
from whatsapp_monitor.utils import (
    SessionNoiseFilter,
    clip,
    dig,
    is_group_jid,
    parse_bool,
    parse_limit,
)


def test_parse_limit_falls_back_for_bad_values() -> None:
    assert parse_limit("25", 100) == 25
    assert parse_limit(" 7 ", 100) == 7
    assert parse_limit(None, 100) == 100
    assert parse_limit("abc", 100) == 100
    assert parse_limit("0", 100) == 100
    assert parse_limit("-5", 100) == 100


def test_parse_bool_supports_truthy_and_falsy() -> None:
    assert parse_bool("on") is True
    assert parse_bool("NO") is False
    assert parse_bool(None, default=True) is True
    assert parse_bool("unexpected", default=False) is False


def test_group_jid_detection() -> None:
    assert is_group_jid("120363@g.us")
    assert not is_group_jid("5511999999999@s.whatsapp.net")
    assert not is_group_jid(None)
    assert not is_group_jid("")


def test_dig_stops_on_missing_levels() -> None:
    payload = {"a": {"b": {"c": 1}}, "x": "flat"}
    assert dig(payload, "a", "b", "c") == 1
    assert dig(payload, "a", "missing", "c") is None
    assert dig(payload, "x", "y") is None
    assert dig(None, "a") is None


def test_clip_truncates_long_text() -> None:
    assert clip("short") == "short"
    assert clip("x" * 120) == "x" * 100 + "..."


def test_session_error_detection() -> None:
    assert is_session_error(SessionError("No open session"))
    assert is_session_error(RuntimeError("SessionError: No sessions"))
    assert not is_session_error(RuntimeError("timed out"))


def test_noise_filter_drops_session_chatter() -> None:
    noise_filter = SessionNoiseFilter()

    def record(message: str) -> logging.LogRecord:
        return logging.LogRecord("gateway", logging.INFO, __file__, 1, message, None, None)

    assert noise_filter.filter(record("Bad MAC while decrypting")) is False
    assert noise_filter.filter(record("Closing open session in favor of incoming prekey bundle")) is False
    assert noise_filter.filter(record("Connected to WhatsApp")) is True
