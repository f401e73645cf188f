"""Outbound message delivery with bounded retries."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

from .errors import NotConnectedError, is_session_error
from .models import DeliveryResult, OutboundContent, RetryPolicy
from .session import SessionContext

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DeliveryEngine:
    """Send operator messages through the live session."""

    def __init__(
        self,
        context: SessionContext,
        policy: RetryPolicy | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._context = context
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    async def send(self, destination: str, content: OutboundContent) -> Any:
        """Deliver ``content`` to ``destination``, retrying transient failures.

        Session-layer failures back off for ``attempt * 2`` seconds, anything
        else for a flat second. The last failure is re-raised once the
        attempts are exhausted.
        """

        payload = content.to_payload()
        attempts = max(1, self._policy.max_attempts)

        for attempt in range(1, attempts + 1):
            # A reconnect during the backoff replaces the socket.
            socket = self._context.require_socket()
            logger.info("Sending to %s (attempt %d/%d)", destination, attempt, attempts)
            try:
                result = await socket.send_message(destination, payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Attempt %d to %s failed: %s", attempt, destination, exc)
                if attempt >= attempts:
                    raise
                if is_session_error(exc):
                    delay = attempt * self._policy.session_delay_step
                    logger.warning("Session error detected, waiting %.0fs before retry", delay)
                else:
                    delay = self._policy.retry_delay
                await self._sleep(delay)
            else:
                logger.info("Message delivered to %s on attempt %d", destination, attempt)
                return result
        raise NotConnectedError()

    async def send_to_many(
        self, destinations: Sequence[str], content: OutboundContent
    ) -> list[DeliveryResult]:
        """Deliver sequentially to every destination, one result each."""

        results: list[DeliveryResult] = []
        for index, destination in enumerate(destinations):
            if index > 0:
                await self._sleep(self._policy.fanout_delay)
            try:
                await self.send(destination, content)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Delivery to %s failed: %s", destination, exc)
                results.append(DeliveryResult(destination, success=False, error=str(exc)))
            else:
                results.append(DeliveryResult(destination, success=True))
        return results
