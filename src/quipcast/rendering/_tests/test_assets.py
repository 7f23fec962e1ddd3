from __future__ import annotations

import asyncio
import io

from PIL import Image

from quipcast.rendering.assets import DEFAULT_COLOR, AssetCache, AssetState, LogoBook, logo_stem, model_color
from quipcast.rendering.fonts import SANS, FontBook, FontSpec, candidate_files


def _png(color=(0, 128, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (40, 40), color).save(buf, format="PNG")
    return buf.getvalue()


def test_colors_and_logo_stems() -> None:
    assert model_color("Kimi K2") == "#00E599"
    assert model_color("Unknown 9") == DEFAULT_COLOR
    assert logo_stem("Sonnet 4.6") == "claude"
    assert logo_stem("Mystery") is None


def test_logo_book_urls() -> None:
    book = LogoBook(AssetCache(), "http://host:5109/assets/logos/", extension=".svg")
    assert book.url_for("GPT-5.2") == "http://host:5109/assets/logos/openai.svg"
    assert book.url_for("Mystery") is None
    assert LogoBook(AssetCache(), None).url_for("GPT-5.2") is None


def test_cache_loads_once_and_scales() -> None:
    async def _run() -> None:
        fetched: list[str] = []

        async def fetch(url: str) -> bytes:
            fetched.append(url)
            return _png()

        cache = AssetCache(fetch)
        url = "http://host/assets/logos/kimi.png"
        assert cache.lookup(url, 20) is None
        assert cache.lookup(url, 20) is None
        assert cache.pending == (url,)
        assert cache.dispatch_pending() == 1
        assert cache.state(url) is AssetState.LOADING
        await asyncio.sleep(0.01)

        assert cache.state(url) is AssetState.READY
        img = cache.lookup(url, 20)
        assert img is not None and img.size == (20, 20)
        assert cache.lookup(url, 20) is img
        assert cache.dispatch_pending() == 0
        assert fetched == [url]
        await cache.close()

    asyncio.run(_run())


def test_failed_fetch_is_not_retried() -> None:
    async def _run() -> None:
        calls = 0

        async def fetch(url: str) -> bytes:
            nonlocal calls
            calls += 1
            raise OSError("404")

        cache = AssetCache(fetch)
        url = "http://host/assets/logos/grok.png"
        cache.lookup(url, 16)
        cache.dispatch_pending()
        await asyncio.sleep(0.01)
        assert cache.state(url) is AssetState.FAILED
        assert cache.lookup(url, 16) is None
        assert cache.dispatch_pending() == 0
        assert calls == 1

    asyncio.run(_run())


def test_font_candidates_and_fallback(tmp_path) -> None:
    spec = FontSpec(SANS, 700, 24)
    assert candidate_files(spec) == ["Inter-Bold.ttf", "Inter-Regular.ttf", "Inter.ttf"]
    book = FontBook(tmp_path)
    font = book.get(spec)
    assert book.get(spec) is font
    assert font.getlength("abc") > 0
