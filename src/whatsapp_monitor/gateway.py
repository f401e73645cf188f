"""WhatsApp gateway adapter.

The WhatsApp protocol itself is handled by a gateway sidecar that keeps its
multi-file credentials in the auth directory we point it at. This module
speaks the sidecar's REST API for calls and relays its websocket event
stream to the handlers registered through :meth:`GatewaySocket.on`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

import aiohttp

from .errors import GatewayError, SessionError
from .session import CONNECTION_UPDATE, DisconnectReason, EventHandler

logger = logging.getLogger(__name__)

_CALL_TIMEOUT = 60
_START_TIMEOUT = 30


class GatewaySocket:
    """ChatSocket implementation backed by the gateway sidecar."""

    def __init__(self, base_url: str, session_name: str, session: aiohttp.ClientSession):
        self._base = f"{base_url.rstrip('/')}/sessions/{session_name}"
        self._session = session
        self._handlers: dict[str, list[EventHandler]] = {}
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._pump: asyncio.Task[None] | None = None
        self._closing = False

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    async def connect(self, auth_dir: Path) -> None:
        """Ask the gateway to open the session and start relaying its events."""

        ws = await self._session.ws_connect(f"{self._base}/events", heartbeat=30)
        self._ws = ws
        await self._call("POST", "/start", json={"authDir": str(auth_dir)}, timeout=_START_TIMEOUT)
        self._pump = asyncio.create_task(self._relay_events(ws), name="gateway-events")

    async def _relay_events(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for frame in ws:
                if frame.type is aiohttp.WSMsgType.TEXT:
                    try:
                        envelope = frame.json()
                    except ValueError:
                        logger.warning("Ignoring malformed gateway frame")
                        continue
                    await self._dispatch(envelope)
                elif frame.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                    break
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientError as exc:
            logger.warning("Gateway event stream failed: %s", exc)
        if not self._closing:
            # A dropped stream is a transport problem, not a credential one.
            await self._emit(
                CONNECTION_UPDATE,
                {
                    "connection": "close",
                    "statusCode": int(DisconnectReason.CONNECTION_CLOSED),
                    "errorMessage": "Gateway event stream closed",
                },
            )

    async def _dispatch(self, envelope: Any) -> None:
        if not isinstance(envelope, Mapping):
            return
        event = envelope.get("event")
        data = envelope.get("data")
        if not isinstance(event, str) or not isinstance(data, Mapping):
            return
        await self._emit(event, data)

    async def _emit(self, event: str, data: Mapping[str, Any]) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                await handler(data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Handler for %s failed", event)

    async def save_credentials(self) -> None:
        await self._call("POST", "/creds")

    async def send_message(self, jid: str, content: Mapping[str, Any]) -> Any:
        return await self._call("POST", "/messages", json={"jid": jid, "content": dict(content)})

    async def group_metadata(self, jid: str) -> Mapping[str, Any]:
        return await self._call("GET", f"/groups/{jid}")

    async def group_fetch_all_participating(self) -> Mapping[str, Mapping[str, Any]]:
        data = await self._call("GET", "/groups")
        if isinstance(data, list):
            return {str(group.get("id")): group for group in data if isinstance(group, Mapping)}
        return data or {}

    async def group_create(self, subject: str, participants: Sequence[str]) -> Mapping[str, Any]:
        return await self._call(
            "POST", "/groups", json={"subject": subject, "participants": list(participants)}
        )

    async def download_media(self, message: Mapping[str, Any]) -> bytes:
        return await self._call("POST", "/media", json={"message": dict(message)}, raw=True)

    async def logout(self) -> None:
        await self._call("POST", "/logout")

    async def close(self) -> None:
        self._closing = True
        if self._pump is not None and self._pump is not asyncio.current_task():
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        timeout: float = _CALL_TIMEOUT,
        raw: bool = False,
    ) -> Any:
        url = f"{self._base}{path}"
        try:
            timeout_cfg = aiohttp.ClientTimeout(total=timeout)
            async with self._session.request(method, url, json=json, timeout=timeout_cfg) as resp:
                if resp.status >= 400:
                    raise _gateway_error(resp.status, await resp.text())
                if raw:
                    return await resp.read()
                if resp.content_length == 0:
                    return None
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise GatewayError(f"Gateway call {method} {path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise GatewayError(str(exc) or exc.__class__.__name__) from exc
        except ValueError as exc:
            raise GatewayError(f"Invalid gateway response: {exc}") from exc


def _gateway_error(status: int, body: str) -> GatewayError:
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None
    message = payload.get("error") if isinstance(payload, Mapping) else body.strip()
    text = str(message or f"Gateway answered {status}")
    if "SessionError" in text:
        return SessionError(text, status=status)
    return GatewayError(text, status=status)


def gateway_socket_factory(base_url: str, session_name: str, session: aiohttp.ClientSession):
    """Return a socket factory bound to one gateway session."""

    async def factory(auth_dir: Path) -> GatewaySocket:
        socket = GatewaySocket(base_url, session_name, session)
        try:
            await socket.connect(auth_dir)
        except BaseException:
            await socket.close()
            raise
        return socket

    return factory
