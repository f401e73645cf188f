"""Application bootstrap for the WhatsApp monitor."""

from __future__ import annotations

import asyncio
import logging

import aiohttp
from aiohttp import web

from .backend import CloneBackend
from .connection import ConnectionManager
from .delivery import DeliveryEngine
from .forwarder import CloneForwarder
from .gateway import gateway_socket_factory
from .http_api import MonitorAPI, create_app
from .message_log import CapturedMessageLog
from .models import Settings
from .normalizer import MessageNormalizer
from .registry import GroupRegistry
from .session import SessionContext, SocketFactory

logger = logging.getLogger(__name__)


class MonitorComponents:
    """Every long-lived component of one monitor process, wired together."""

    def __init__(
        self,
        settings: Settings,
        http_session: aiohttp.ClientSession,
        socket_factory: SocketFactory,
    ) -> None:
        self.settings = settings
        self.context = SessionContext()
        self.registry = GroupRegistry(settings.groups_file)
        self.message_log = CapturedMessageLog(settings.log_capacity)
        self.backend = CloneBackend(settings.backend_url, http_session)
        self.forwarder = CloneForwarder(self.backend, self.message_log)
        self.normalizer = MessageNormalizer(
            self.context,
            self.registry,
            self.message_log,
            self.forwarder,
            auto_clone=settings.auto_clone,
        )
        self.connection = ConnectionManager(
            self.context,
            socket_factory,
            auth_dir=settings.auth_dir,
            on_messages=self.normalizer.handle_upsert,
            policy=settings.reconnect,
        )
        self.delivery = DeliveryEngine(self.context, settings.retry)
        self.api = MonitorAPI(
            self.context,
            self.connection,
            self.registry,
            self.message_log,
            self.delivery,
            self.forwarder,
        )

    def web_app(self) -> web.Application:
        return create_app(self.api)


class WhatsAppMonitorApp:
    """High level coordinator tying together the session, HTTP API and backend."""

    def __init__(self, settings: Settings, *, socket_factory: SocketFactory | None = None):
        self._settings = settings
        self._socket_factory = socket_factory

    async def run(self) -> None:
        settings = self._settings
        async with aiohttp.ClientSession() as session:
            factory = self._socket_factory or gateway_socket_factory(
                settings.gateway_url, settings.session_name, session
            )
            components = MonitorComponents(settings, session, factory)
            runner = web.AppRunner(components.web_app())
            await runner.setup()
            site = web.TCPSite(runner, settings.host, settings.port)
            await site.start()
            logger.info("WhatsApp monitor listening on %s:%d", settings.host, settings.port)
            logger.info("Clone backend: %s", settings.backend_url)
            logger.info(
                "Monitoring %d group(s), auto clone %s",
                len(components.registry),
                "on" if settings.auto_clone else "off",
            )

            try:
                await components.connection.start()
                await asyncio.Event().wait()
            finally:
                await components.connection.stop()
                await components.forwarder.close()
                await runner.cleanup()
