"""Pairing code rendering and short-lived caching."""

from __future__ import annotations

import base64
import io
import time
from typing import Callable

import qrcode

QR_TTL_SECONDS = 300.0


def render_qr_data_url(code: str) -> str:
    """Render ``code`` as a PNG QR image wrapped in a ``data:`` URL."""

    qr = qrcode.QRCode(border=4)
    qr.add_data(code)
    qr.make(fit=True)
    image = qr.make_image()
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class QRCache:
    """Hold the latest rendered pairing code until it expires."""

    def __init__(
        self,
        ttl: float = QR_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._value: str | None = None
        self._expires_at = 0.0

    def set(self, value: str) -> None:
        self._value = value
        self._expires_at = self._clock() + self._ttl

    def get(self) -> str | None:
        if self._value is None:
            return None
        if self._clock() >= self._expires_at:
            self.clear()
            return None
        return self._value

    def clear(self) -> None:
        self._value = None
        self._expires_at = 0.0
