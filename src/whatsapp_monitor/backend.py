"""Client for the link-replacement (clone) processing backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

import aiohttp

from .errors import BackendError
from .models import ClonePayload

logger = logging.getLogger(__name__)

_CLONE_TIMEOUT = 30
_CLONE_BATCH_TIMEOUT = 60
_QUEUE_TIMEOUT = 10
_QUEUE_STATS_TIMEOUT = 5


class CloneBackend:
    """Thin asynchronous wrapper around the backend's HTTP endpoints."""

    def __init__(self, base_url: str, session: aiohttp.ClientSession):
        self._base_url = base_url.rstrip("/")
        self._session = session

    @property
    def base_url(self) -> str:
        return self._base_url

    async def clone_message(self, payload: ClonePayload) -> Any:
        return await self._request(
            "POST",
            "/whatsapp/clone-message",
            json=payload.to_wire(),
            timeout=_CLONE_TIMEOUT,
        )

    async def clone_multiple(self, payloads: Sequence[ClonePayload]) -> Any:
        return await self._request(
            "POST",
            "/whatsapp/clone-multiple",
            json={"mensagens": [payload.to_wire() for payload in payloads]},
            timeout=_CLONE_BATCH_TIMEOUT,
        )

    async def queue(self, status: str = "todos") -> Any:
        return await self._request(
            "GET",
            "/fila-mensagens",
            params={"status": status},
            timeout=_QUEUE_TIMEOUT,
        )

    async def queue_stats(self) -> Any:
        return await self._request(
            "GET",
            "/fila-mensagens/estatisticas",
            timeout=_QUEUE_STATS_TIMEOUT,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
        timeout: float,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            timeout_cfg = aiohttp.ClientTimeout(total=timeout)
            async with self._session.request(
                method,
                url,
                json=json,
                params=params,
                timeout=timeout_cfg,
            ) as resp:
                if resp.status >= 400:
                    detail = (await resp.text())[:200]
                    logger.warning(
                        "Backend answered %s for %s %s: %s", resp.status, method, path, detail
                    )
                    raise BackendError(
                        f"Request failed with status code {resp.status}",
                        status=resp.status,
                    )
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise BackendError(f"timeout of {timeout * 1000:.0f}ms exceeded") from exc
        except aiohttp.ClientError as exc:
            raise BackendError(str(exc) or exc.__class__.__name__) from exc
        except ValueError as exc:
            raise BackendError(f"Invalid backend response: {exc}") from exc
