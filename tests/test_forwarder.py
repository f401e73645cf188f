from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from dummies import fake_backend_app

from whatsapp_monitor import backend as backend_module
from whatsapp_monitor.backend import CloneBackend
from whatsapp_monitor.errors import BackendError, MessageNotFoundError
from whatsapp_monitor.forwarder import CloneForwarder
from whatsapp_monitor.message_log import CapturedMessageLog
from whatsapp_monitor.models import ClonePayload, MediaPayload, NormalizedMessage


def _message(message_id: str, text: str = "Deal", media: MediaPayload | None = None):
    return NormalizedMessage(
        id=message_id,
        timestamp=datetime(2024, 3, 28, tzinfo=timezone.utc),
        group_id="123@g.us",
        group_name="Promo",
        sender="Alice",
        sender_id="1@s.whatsapp.net",
        text=text,
        media=media,
    )


def test_forward_one_posts_wire_payload() -> None:
    async def runner() -> None:
        received: list = []
        async with TestServer(fake_backend_app(received)) as server:
            async with aiohttp.ClientSession() as session:
                backend = CloneBackend(str(server.make_url("/")), session)
                forwarder = CloneForwarder(backend, CapturedMessageLog())
                payload = ClonePayload(
                    text="Deal", image_url=None, group_id="123@g.us", group_name="Promo"
                )

                response = await forwarder.forward_one(payload)

        assert response["success"] is True
        assert received == [
            (
                "clone-message",
                {
                    "mensagem": "Deal",
                    "imagem_url": None,
                    "grupo_origem": "123@g.us",
                    "grupo_origem_nome": "Promo",
                },
            )
        ]

    asyncio.run(runner())


def test_forward_by_id_and_batch_resolve_against_log() -> None:
    async def runner() -> None:
        received: list = []
        log = CapturedMessageLog()
        log.admit(_message("A", media=MediaPayload(b"img", "image/jpeg")))
        log.admit(_message("B", text="Second"))

        async with TestServer(fake_backend_app(received)) as server:
            async with aiohttp.ClientSession() as session:
                forwarder = CloneForwarder(CloneBackend(str(server.make_url("/")), session), log)

                await forwarder.forward_by_id("A")
                batch = await forwarder.forward_batch(["B", "missing", "A"])
                with pytest.raises(MessageNotFoundError):
                    await forwarder.forward_by_id("missing")
                with pytest.raises(MessageNotFoundError):
                    await forwarder.forward_batch(["nope", "other"])

        assert batch == {"success": True, "total_sucesso": 2}
        assert received[0][1]["imagem_url"] == "data:image/jpeg;base64,aW1n"
        kind, body = received[1]
        assert kind == "clone-multiple"
        assert [item["mensagem"] for item in body["mensagens"]] == ["Second", "Deal"]
        assert len(received) == 2

    asyncio.run(runner())


def test_queue_proxies() -> None:
    async def runner() -> None:
        received: list = []
        async with TestServer(fake_backend_app(received)) as server:
            async with aiohttp.ClientSession() as session:
                forwarder = CloneForwarder(
                    CloneBackend(str(server.make_url("/")), session), CapturedMessageLog()
                )
                queue = await forwarder.queue()
                filtered = await forwarder.queue("pendente")
                stats = await forwarder.queue_stats()

        assert queue["status"] == "todos"
        assert filtered["status"] == "pendente"
        assert stats == {"pendente": 2, "enviado": 5}

    asyncio.run(runner())


def test_backend_error_status_is_raised() -> None:
    async def runner() -> None:
        async with TestServer(fake_backend_app([], status=502)) as server:
            async with aiohttp.ClientSession() as session:
                backend = CloneBackend(str(server.make_url("/")), session)
                payload = ClonePayload(text="x", image_url=None, group_id=None, group_name=None)
                with pytest.raises(BackendError) as excinfo:
                    await backend.clone_message(payload)

        assert excinfo.value.status == 502
        assert str(excinfo.value) == "Request failed with status code 502"

    asyncio.run(runner())


def test_backend_timeout_is_reported(monkeypatch) -> None:
    monkeypatch.setattr(backend_module, "_QUEUE_STATS_TIMEOUT", 0.05)

    async def slow(request: web.Request) -> web.Response:
        await asyncio.sleep(1)
        return web.json_response({})

    async def runner() -> None:
        app = web.Application()
        app.router.add_get("/fila-mensagens/estatisticas", slow)
        async with TestServer(app) as server:
            async with aiohttp.ClientSession() as session:
                backend = CloneBackend(str(server.make_url("/")), session)
                with pytest.raises(BackendError, match="timeout of 50ms exceeded"):
                    await backend.queue_stats()

    asyncio.run(runner())


def test_auto_forward_failure_is_only_logged(caplog) -> None:
    async def runner() -> None:
        received: list = []
        async with TestServer(fake_backend_app(received, status=500)) as server:
            async with aiohttp.ClientSession() as session:
                forwarder = CloneForwarder(
                    CloneBackend(str(server.make_url("/")), session), CapturedMessageLog()
                )
                task = forwarder.auto_forward(_message("A"))
                await forwarder.close()

        assert task.done()
        assert task.exception() is None
        assert len(received) == 1

    with caplog.at_level("ERROR"):
        asyncio.run(runner())
    assert "Automatic clone of A failed" in caplog.text
