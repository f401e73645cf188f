"""JSON HTTP API exposed to the operator panel and the scraper."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping

from aiohttp import web

from .connection import ConnectionManager
from .delivery import DeliveryEngine
from .errors import BackendError, MessageNotFoundError, NotConnectedError, ValidationError
from .forwarder import CloneForwarder
from .message_log import DEFAULT_LIST_LIMIT, CapturedMessageLog
from .models import ClonePayload, GroupInfo, OutboundContent
from .registry import GroupRegistry
from .session import SessionContext
from .utils import parse_limit

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error(status: int, message: str, *, success: bool | None = None) -> web.Response:
    body: dict[str, Any] = {"error": message}
    if success is not None:
        body = {"success": success, **body}
    return web.json_response(body, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Translate unexpected failures into JSON 500 responses."""

    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except NotConnectedError as exc:
        return _error(400, str(exc))
    except ValidationError as exc:
        return _error(400, str(exc))
    except MessageNotFoundError as exc:
        return _error(404, str(exc), success=False)
    except Exception as exc:
        logger.exception("Unhandled error in %s %s", request.method, request.path)
        return _error(500, str(exc))


async def _read_json(request: web.Request) -> Mapping[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, Mapping) else {}


class MonitorAPI:
    """Route handlers bound to the running monitor components."""

    def __init__(
        self,
        context: SessionContext,
        connection: ConnectionManager,
        registry: GroupRegistry,
        message_log: CapturedMessageLog,
        delivery: DeliveryEngine,
        forwarder: CloneForwarder,
    ) -> None:
        self._context = context
        self._connection = connection
        self._registry = registry
        self._log = message_log
        self._delivery = delivery
        self._forwarder = forwarder

    def routes(self) -> list[web.RouteDef]:
        return [
            web.get("/status", self.status),
            web.get("/qr", self.qr),
            web.get("/groups", self.list_groups),
            web.post("/groups/monitor", self.monitor),
            web.post("/monitor", self.monitor),
            web.delete("/groups/monitor/{group_id}", self.unmonitor),
            web.post("/unmonitor", self.unmonitor),
            web.get("/messages", self.messages),
            web.post("/groups/create", self.create_group),
            web.post("/groups/send-message", self.send_message),
            web.post("/send-product", self.send_product),
            web.post("/logout", self.logout),
            web.post("/clone-message", self.clone_message),
            web.post("/clone-multiple", self.clone_multiple),
            web.get("/clone-queue", self.clone_queue),
            web.get("/clone-queue/stats", self.clone_queue_stats),
        ]

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------
    async def status(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "connected": self._context.connected,
                "state": self._context.state.value,
                "monitoredGroups": len(self._registry),
            }
        )

    async def qr(self, request: web.Request) -> web.Response:
        image = self._context.qr.get()
        state = self._context.state.value
        if image:
            return web.json_response({"qr": image, "state": state})
        if self._context.connected:
            return web.json_response({"message": "Already connected", "state": state})
        return web.json_response(
            {
                "message": "QR code not available yet. Waiting for connection...",
                "state": state,
                "hint": "The QR code is generated automatically. Wait a few seconds and reload.",
            }
        )

    async def logout(self, request: web.Request) -> web.Response:
        await self._connection.logout()
        return web.json_response({"success": True, "message": "Logged out successfully"})

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    async def list_groups(self, request: web.Request) -> web.Response:
        socket = self._context.require_socket()
        groups = await socket.group_fetch_all_participating()
        payload = []
        for raw in groups.values():
            group = GroupInfo.from_payload(raw)
            payload.append(
                {
                    "id": group.id,
                    "name": group.subject,
                    "participants": len(group.participants),
                    "monitored": group.id in self._registry,
                }
            )
        return web.json_response({"groups": payload})

    async def monitor(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        group_id = str(data.get("groupId") or "").strip()
        if not group_id:
            return _error(400, "groupId is required", success=False)
        self._registry.add(group_id)
        return web.json_response(
            {
                "success": True,
                "message": "Group added to monitoring",
                "monitoredGroups": len(self._registry),
            }
        )

    async def unmonitor(self, request: web.Request) -> web.Response:
        group_id = request.match_info.get("group_id")
        if not group_id:
            data = await _read_json(request)
            group_id = str(data.get("groupId") or "").strip()
        if not group_id:
            return _error(400, "groupId is required", success=False)
        if not self._registry.remove(group_id):
            return _error(404, "Group was not monitored", success=False)
        return web.json_response(
            {
                "success": True,
                "message": "Group removed from monitoring",
                "monitoredGroups": len(self._registry),
            }
        )

    async def create_group(self, request: web.Request) -> web.Response:
        socket = self._context.require_socket()
        data = await _read_json(request)
        name = data.get("groupName")
        participants = data.get("participants")
        if not name or not isinstance(participants, list):
            raise ValidationError("groupName and participants (array) are required")
        group = await socket.group_create(str(name), [str(item) for item in participants])
        logger.info("Group created: %s (%s)", name, group.get("id"))
        return web.json_response(
            {
                "success": True,
                "message": "Group created successfully",
                "group": {
                    "id": group.get("id"),
                    "name": name,
                    "participants": len(participants),
                },
            }
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    async def messages(self, request: web.Request) -> web.Response:
        limit = parse_limit(request.query.get("limit"), DEFAULT_LIST_LIMIT)
        messages = self._log.list(limit)
        return web.json_response(
            {
                "success": True,
                "count": len(messages),
                "total": len(self._log),
                "messages": [message.to_dict() for message in messages],
            }
        )

    async def send_message(self, request: web.Request) -> web.Response:
        self._context.require_socket()
        data = await _read_json(request)
        group_id = data.get("groupId")
        text = data.get("message")
        if not group_id or not text:
            raise ValidationError("groupId and message are required")
        content = OutboundContent(text=str(text), image_url=data.get("imageUrl") or None)
        await self._delivery.send(str(group_id), content)
        return web.json_response({"success": True, "message": "Message sent successfully"})

    async def send_product(self, request: web.Request) -> web.Response:
        self._context.require_socket()
        data = await _read_json(request)
        group_ids = data.get("groupIds")
        text = data.get("message")
        if not isinstance(group_ids, list) or not text:
            raise ValidationError("groupIds (array) and message are required")
        content = OutboundContent(text=str(text), image_url=data.get("imageUrl") or None)
        results = await self._delivery.send_to_many([str(item) for item in group_ids], content)
        return web.json_response(
            {
                "success": True,
                "message": "Process finished",
                "results": [result.to_dict() for result in results],
            }
        )

    # ------------------------------------------------------------------
    # Cloning
    # ------------------------------------------------------------------
    async def clone_message(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        message_id = data.get("messageId")
        if message_id:
            message = self._log.find(str(message_id))
            if message is None:
                return _error(404, "Message not found", success=False)
            payload = ClonePayload.from_message(message)
        else:
            payload = ClonePayload(
                text=str(data.get("mensagem") or ""),
                image_url=data.get("imagem_url") or None,
                group_id=data.get("grupo_origem"),
                group_name=data.get("grupo_origem_nome"),
            )
        if payload.is_empty:
            return _error(400, "Message or image is required", success=False)
        try:
            response = await self._forwarder.forward_one(payload)
        except BackendError as exc:
            logger.error("Clone request failed: %s", exc)
            return _error(500, f"Clone processing failed: {exc}", success=False)
        return web.json_response(
            {
                "success": True,
                "message": "Message cloned and scheduled for sending!",
                "data": response,
            }
        )

    async def clone_multiple(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        message_ids = data.get("messageIds")
        if not isinstance(message_ids, list) or not message_ids:
            return _error(400, "messageIds is required (array)", success=False)
        try:
            response = await self._forwarder.forward_batch([str(item) for item in message_ids])
        except BackendError as exc:
            logger.error("Batch clone request failed: %s", exc)
            return _error(500, f"Clone processing failed: {exc}", success=False)
        total = response.get("total_sucesso") if isinstance(response, Mapping) else None
        return web.json_response(
            {
                "success": True,
                "message": f"{total} messages cloned and scheduled!",
                "data": response,
            }
        )

    async def clone_queue(self, request: web.Request) -> web.Response:
        status = request.query.get("status") or "todos"
        try:
            response = await self._forwarder.queue(status)
        except BackendError as exc:
            return _error(500, str(exc), success=False)
        return web.json_response(response)

    async def clone_queue_stats(self, request: web.Request) -> web.Response:
        try:
            response = await self._forwarder.queue_stats()
        except BackendError as exc:
            return _error(500, str(exc), success=False)
        return web.json_response(response)


def create_app(api: MonitorAPI) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app.add_routes(api.routes())
    return app
