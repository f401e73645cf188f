"""Connection lifecycle of the single WhatsApp session."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from .models import ConnectionState, ConnectionUpdate, ReconnectPolicy
from .qr import render_qr_data_url
from .session import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    MESSAGES_UPSERT,
    ChatSocket,
    DisconnectReason,
    SessionContext,
    SocketFactory,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Mapping[str, Any]], Awaitable[Any]]


def needs_credential_reset(update: ConnectionUpdate) -> bool:
    """Unknown close status or a crypto failure means local credentials are unusable."""

    if update.status_code is None:
        return True
    return "crypto" in (update.error_message or "")


class ConnectionManager:
    """Open the session, follow its events and decide how to recover."""

    def __init__(
        self,
        context: SessionContext,
        socket_factory: SocketFactory,
        *,
        auth_dir: Path,
        on_messages: MessageHandler | None = None,
        policy: ReconnectPolicy | None = None,
        qr_renderer: Callable[[str], str] = render_qr_data_url,
    ) -> None:
        self._context = context
        self._socket_factory = socket_factory
        self._auth_dir = auth_dir
        self._on_messages = on_messages
        self._policy = policy or ReconnectPolicy()
        self._render_qr = qr_renderer
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._reconnect_attempts = 0
        self._logged_out = False

    @property
    def state(self) -> ConnectionState:
        return self._context.state

    @property
    def logged_out(self) -> bool:
        return self._logged_out

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._on_messages = handler

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Open a new session; failures schedule a retry instead of raising."""

        self._logged_out = False
        self._context.state = ConnectionState.CONNECTING
        logger.info("Starting WhatsApp connection")
        previous = self._context.socket
        self._context.socket = None
        if previous is not None:
            await self._close_socket(previous)
        try:
            socket = await self._socket_factory(self._auth_dir)
            socket.on(CONNECTION_UPDATE, self._handle_connection_update)
            socket.on(CREDS_UPDATE, self._handle_creds_update)
            socket.on(MESSAGES_UPSERT, self._handle_messages)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Could not start the WhatsApp session")
            self._context.state = ConnectionState.ERROR
            self._schedule_start(self._policy.error_delay)
            return
        self._context.socket = socket
        logger.info("Session created, waiting for connection events")

    async def stop(self) -> None:
        """Cancel pending reconnects and close the socket on shutdown."""

        self._cancel_reconnect()
        for task in list(self._background):
            task.cancel()
        socket = self._context.socket
        self._context.socket = None
        if socket is not None:
            await self._close_socket(socket)
        self._context.state = ConnectionState.DISCONNECTED
        self._context.qr.clear()

    async def logout(self) -> None:
        """End the session for good and wipe the stored credentials."""

        socket = self._context.socket
        if socket is not None:
            # Closes emitted while the logout is in flight must not reconnect.
            self._logged_out = True
            try:
                await socket.logout()
            except BaseException:
                self._logged_out = False
                raise
            await self._close_socket(socket)
        self._logged_out = True
        self._cancel_reconnect()
        self._context.socket = None
        self._remove_credentials()
        self._context.state = ConnectionState.DISCONNECTED
        self._context.qr.clear()
        logger.info("Logged out, credentials removed")

    # ------------------------------------------------------------------
    # Event observers
    # ------------------------------------------------------------------
    async def _handle_connection_update(self, payload: Mapping[str, Any]) -> None:
        update = ConnectionUpdate.from_payload(payload)
        logger.debug(
            "Connection update: connection=%s qr=%s status=%s",
            update.connection,
            bool(update.qr),
            update.status_code,
        )

        if update.qr:
            self._handle_qr(update.qr)

        if update.connection == "close":
            self._handle_close(update)
        elif update.connection == "open":
            logger.info("Connected to WhatsApp")
            self._reconnect_attempts = 0
            self._context.qr.clear()
            self._context.state = ConnectionState.CONNECTED
        elif update.connection == "connecting":
            self._context.state = ConnectionState.CONNECTING

    def _handle_qr(self, code: str) -> None:
        self._context.state = ConnectionState.QR_PENDING
        logger.info("Pairing code received, waiting for scan")
        try:
            image = self._render_qr(code)
        except Exception:
            logger.exception("Could not render the pairing code")
            return
        self._context.qr.set(image)

    def _handle_close(self, update: ConnectionUpdate) -> None:
        logger.warning(
            "Connection closed (status %s): %s", update.status_code, update.error_message
        )
        self._context.state = ConnectionState.DISCONNECTED
        self._context.qr.clear()

        if self._logged_out:
            return

        if needs_credential_reset(update):
            logger.warning("Session state looks corrupted, removing credentials")
            self._remove_credentials()
            self._schedule_start(self._policy.reset_delay)
            return

        if update.status_code == DisconnectReason.LOGGED_OUT:
            logger.warning("Logged out remotely, not reconnecting")
            self._logged_out = True
            return

        self._reconnect_attempts += 1
        delay = self._policy.backoff(self._reconnect_attempts)
        logger.info("Reconnecting in %.0fs (attempt %d)", delay, self._reconnect_attempts)
        self._schedule_start(delay)

    async def _handle_creds_update(self, payload: Mapping[str, Any]) -> None:
        socket = self._context.socket
        if socket is None:
            return
        task = asyncio.create_task(self._save_credentials(socket), name="save-credentials")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _save_credentials(self, socket: ChatSocket) -> None:
        try:
            await socket.save_credentials()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Could not persist updated credentials")

    async def _handle_messages(self, payload: Mapping[str, Any]) -> None:
        if self._on_messages is None:
            return
        await self._on_messages(payload)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _schedule_start(self, delay: float) -> None:
        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(
            self._delayed_start(delay), name="whatsapp-reconnect"
        )

    async def _delayed_start(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        await self.start()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _remove_credentials(self) -> None:
        if not self._auth_dir.exists():
            return
        try:
            shutil.rmtree(self._auth_dir)
        except OSError as exc:
            logger.error("Could not remove credentials at %s: %s", self._auth_dir, exc)
        else:
            logger.info("Credentials removed from %s", self._auth_dir)

    async def _close_socket(self, socket: ChatSocket) -> None:
        try:
            await socket.close()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Ignoring error while closing the previous socket: %s", exc)
