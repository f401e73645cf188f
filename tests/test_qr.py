import base64

from whatsapp_monitor.qr import QRCache, render_qr_data_url


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_qr_cache_expires_after_ttl() -> None:
    clock = FakeClock()
    cache = QRCache(ttl=300, clock=clock)
    assert cache.get() is None

    cache.set("data:image/png;base64,AAAA")
    clock.now += 299
    assert cache.get() == "data:image/png;base64,AAAA"

    clock.now += 1
    assert cache.get() is None


def test_qr_cache_clear() -> None:
    cache = QRCache()
    cache.set("value")
    cache.clear()
    assert cache.get() is None


def test_render_produces_png_data_url() -> None:
    url = render_qr_data_url("2@pairing-code,key,other")

    prefix = "data:image/png;base64,"
    assert url.startswith(prefix)
    assert base64.b64decode(url[len(prefix) :]).startswith(b"\x89PNG")
