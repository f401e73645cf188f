from __future__ import annotations

import asyncio

import pytest
from dummies import DummySocket

from whatsapp_monitor.delivery import DeliveryEngine
from whatsapp_monitor.errors import NotConnectedError, SessionError
from whatsapp_monitor.models import ConnectionState, OutboundContent
from whatsapp_monitor.session import SessionContext


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakySocket(DummySocket):
    """Fail every send to the listed destinations."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing

    async def send_message(self, jid, content):
        self.sent.append((jid, content))
        if jid in self.failing:
            raise RuntimeError(f"cannot reach {jid}")
        return {"key": {"id": "ok"}}


def _engine(socket: DummySocket) -> tuple[DeliveryEngine, RecordingSleep]:
    context = SessionContext()
    context.socket = socket
    context.state = ConnectionState.CONNECTED
    sleep = RecordingSleep()
    return DeliveryEngine(context, sleep=sleep), sleep


def test_send_gives_up_after_three_attempts() -> None:
    socket = DummySocket(send_failures=[RuntimeError("boom")] * 5)
    engine, sleep = _engine(socket)

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(engine.send("123@g.us", OutboundContent(text="hi")))

    assert len(socket.sent) == 3
    assert sleep.delays == [1.0, 1.0]


def test_send_succeeds_on_third_attempt() -> None:
    socket = DummySocket(send_failures=[RuntimeError("a"), RuntimeError("b"), None])
    engine, sleep = _engine(socket)

    result = asyncio.run(engine.send("123@g.us", OutboundContent(text="hi")))

    assert result == {"key": {"id": "sent-3"}}
    assert len(socket.sent) == 3
    assert sleep.delays == [1.0, 1.0]


def test_session_errors_back_off_linearly() -> None:
    socket = DummySocket(
        send_failures=[
            SessionError("No sessions"),
            RuntimeError("SessionError: bad mac"),
            SessionError("No sessions"),
        ]
    )
    engine, sleep = _engine(socket)

    with pytest.raises(SessionError):
        asyncio.run(engine.send("123@g.us", OutboundContent(text="hi")))

    assert sleep.delays == [2.0, 4.0]


def test_image_payload_carries_caption() -> None:
    socket = DummySocket()
    engine, _ = _engine(socket)

    asyncio.run(
        engine.send("123@g.us", OutboundContent(text="Deal", image_url="https://cdn/x.jpg"))
    )
    asyncio.run(engine.send("123@g.us", OutboundContent(text="Only text")))

    assert socket.sent == [
        ("123@g.us", {"image": {"url": "https://cdn/x.jpg"}, "caption": "Deal"}),
        ("123@g.us", {"text": "Only text"}),
    ]


def test_fan_out_reports_each_destination() -> None:
    socket = FlakySocket({"b@g.us"})
    engine, sleep = _engine(socket)

    results = asyncio.run(
        engine.send_to_many(["a@g.us", "b@g.us", "c@g.us"], OutboundContent(text="promo"))
    )

    assert [result.to_dict() for result in results] == [
        {"groupId": "a@g.us", "success": True},
        {"groupId": "b@g.us", "success": False, "error": "cannot reach b@g.us"},
        {"groupId": "c@g.us", "success": True},
    ]
    assert [jid for jid, _ in socket.sent] == ["a@g.us", "b@g.us", "b@g.us", "b@g.us", "c@g.us"]
    # pause between destinations plus two retry waits for b
    assert sleep.delays == [1.0, 1.0, 1.0, 1.0]


def test_send_requires_connection() -> None:
    context = SessionContext()
    context.socket = DummySocket()
    engine = DeliveryEngine(context, sleep=RecordingSleep())

    with pytest.raises(NotConnectedError):
        asyncio.run(engine.send("123@g.us", OutboundContent(text="hi")))
    assert context.socket.sent == []


def test_retry_uses_socket_replaced_during_backoff() -> None:
    stale = DummySocket(send_failures=[RuntimeError("connection closed")])
    fresh = DummySocket()
    context = SessionContext()
    context.socket = stale
    context.state = ConnectionState.CONNECTED

    async def reconnect_while_waiting(delay: float) -> None:
        context.socket = fresh

    engine = DeliveryEngine(context, sleep=reconnect_while_waiting)

    asyncio.run(engine.send("123@g.us", OutboundContent(text="hi")))

    assert [jid for jid, _ in stale.sent] == ["123@g.us"]
    assert fresh.sent == [("123@g.us", {"text": "hi"})]


def test_disconnect_during_backoff_stops_retrying() -> None:
    socket = DummySocket(send_failures=[RuntimeError("connection closed")])
    context = SessionContext()
    context.socket = socket
    context.state = ConnectionState.CONNECTED

    async def drop_connection(delay: float) -> None:
        context.state = ConnectionState.DISCONNECTED

    engine = DeliveryEngine(context, sleep=drop_connection)

    with pytest.raises(NotConnectedError):
        asyncio.run(engine.send("123@g.us", OutboundContent(text="hi")))
    assert len(socket.sent) == 1
