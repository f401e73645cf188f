"""Relay captured messages to the clone backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from .backend import CloneBackend
from .errors import BackendError, MessageNotFoundError
from .message_log import CapturedMessageLog
from .models import ClonePayload, NormalizedMessage

logger = logging.getLogger(__name__)


class CloneForwarder:
    """Forward messages on demand or automatically right after capture."""

    def __init__(self, backend: CloneBackend, message_log: CapturedMessageLog) -> None:
        self._backend = backend
        self._log = message_log
        self._pending: set[asyncio.Task[None]] = set()

    async def forward_one(self, payload: ClonePayload) -> Any:
        """Send a single payload to the backend; errors propagate unretried."""

        logger.info("Cloning message from group %s", payload.group_name or payload.group_id)
        response = await self._backend.clone_message(payload)
        logger.info("Message cloned and scheduled")
        return response

    async def forward_by_id(self, message_id: str) -> Any:
        message = self._log.find(message_id)
        if message is None:
            raise MessageNotFoundError("Message not found")
        return await self.forward_one(ClonePayload.from_message(message))

    async def forward_batch(self, message_ids: Sequence[str]) -> Any:
        """Resolve ``message_ids`` against the log and clone them in one request.

        Unknown ids are dropped; at least one id has to resolve.
        """

        payloads: list[ClonePayload] = []
        for message_id in message_ids:
            message = self._log.find(message_id)
            if message is not None:
                payloads.append(ClonePayload.from_message(message))
        if not payloads:
            raise MessageNotFoundError("No messages found")
        logger.info("Cloning %d of %d requested messages", len(payloads), len(message_ids))
        response = await self._backend.clone_multiple(payloads)
        if isinstance(response, Mapping):
            logger.info("%s message(s) cloned", response.get("total_sucesso"))
        return response

    async def queue(self, status: str = "todos") -> Any:
        return await self._backend.queue(status)

    async def queue_stats(self) -> Any:
        return await self._backend.queue_stats()

    def auto_forward(self, message: NormalizedMessage) -> asyncio.Task[None]:
        """Clone ``message`` in a detached task whose failure is only logged."""

        task = asyncio.create_task(
            self._auto_forward(message), name=f"auto-clone-{message.id}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _auto_forward(self, message: NormalizedMessage) -> None:
        try:
            response = await self._backend.clone_message(ClonePayload.from_message(message))
        except asyncio.CancelledError:
            raise
        except BackendError as exc:
            logger.error("Automatic clone of %s failed: %s", message.id, exc)
            return
        except Exception:
            logger.exception("Automatic clone of %s failed", message.id)
            return

        if isinstance(response, Mapping) and response.get("success"):
            logger.info("Message %s cloned and scheduled automatically", message.id)
            for link in response.get("links_substituidos") or ():
                if isinstance(link, Mapping):
                    logger.info("  - %s: link replaced", link.get("plataforma"))
        else:
            logger.info("Automatic clone of %s answered: %s", message.id, response)

    async def close(self) -> None:
        """Wait for outstanding automatic clones to settle."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
