"""Model accent colors and lazily loaded logo images.

Logo loading is asynchronous and best-effort. The renderer asks the cache for a
logo on every frame; a miss records the URL and returns ``None`` so the frame
is drawn text-only, and the render loop later calls :meth:`AssetCache.dispatch_pending`
to start the fetch. A URL is fetched at most once: once it is ``READY`` or
``FAILED`` it never triggers another load.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from PIL import Image

logger = logging.getLogger(__name__)

MODEL_COLORS: dict[str, str] = {
    "Gemini 3.1 Pro": "#4285F4",
    "Kimi K2": "#00E599",
    "DeepSeek 3.2": "#4D6BFE",
    "GLM-5": "#1F63EC",
    "GPT-5.2": "#10A37F",
    "Opus 4.6": "#D97757",
    "Sonnet 4.6": "#D97757",
    "Grok 4.1": "#FFFFFF",
    "MiniMax 2.5": "#FF3B30",
}
DEFAULT_COLOR = "#aeb6d6"

# (substring in model name, logo file stem); first match wins
LOGO_STEMS: tuple[tuple[str, str], ...] = (
    ("Gemini", "gemini"),
    ("Kimi", "kimi"),
    ("DeepSeek", "deepseek"),
    ("GLM", "glm"),
    ("GPT", "openai"),
    ("Opus", "claude"),
    ("Sonnet", "claude"),
    ("Grok", "grok"),
    ("MiniMax", "minimax"),
)

Fetch = Callable[[str], Awaitable[bytes]]


def model_color(name: str) -> str:
    return MODEL_COLORS.get(name, DEFAULT_COLOR)


def logo_stem(name: str) -> Optional[str]:
    for needle, stem in LOGO_STEMS:
        if needle in name:
            return stem
    return None


class AssetState(Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class _Entry:
    state: AssetState
    image: Optional[Image.Image] = None
    scaled: dict[int, Image.Image] = field(default_factory=dict)


def decode_image(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img.convert("RGBA")


class AssetCache:
    """URL-keyed image cache owned by the render loop."""

    def __init__(self, fetch: Optional[Fetch] = None) -> None:
        self._fetch = fetch
        self._entries: dict[str, _Entry] = {}
        self._pending: list[str] = []
        self._tasks: set[asyncio.Task] = set()

    def state(self, url: str) -> Optional[AssetState]:
        entry = self._entries.get(url)
        return None if entry is None else entry.state

    def lookup(self, url: str, size: int) -> Optional[Image.Image]:
        """Return the image scaled to ``size`` x ``size`` if loaded, else None."""
        entry = self._entries.get(url)
        if entry is None:
            self._entries[url] = _Entry(state=AssetState.LOADING)
            self._pending.append(url)
            return None
        if entry.state is not AssetState.READY or entry.image is None:
            return None
        scaled = entry.scaled.get(size)
        if scaled is None:
            scaled = entry.image.resize((size, size), Image.Resampling.LANCZOS)
            entry.scaled[size] = scaled
        return scaled

    def preload(self, url: str, image: Image.Image) -> None:
        self._entries[url] = _Entry(state=AssetState.READY, image=image.convert("RGBA"))

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._pending)

    def dispatch_pending(self) -> int:
        """Start loads for URLs first requested since the last call."""
        if not self._pending:
            return 0
        urls, self._pending = self._pending, []
        if self._fetch is None:
            for url in urls:
                self._entries[url].state = AssetState.FAILED
            return 0
        loop = asyncio.get_running_loop()
        for url in urls:
            task = loop.create_task(self._load(url))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(urls)

    async def _load(self, url: str) -> None:
        entry = self._entries[url]
        try:
            data = await self._fetch(url)  # type: ignore[misc]
            entry.image = decode_image(data)
            entry.state = AssetState.READY
            logger.debug("asset ready: %s", url)
        except asyncio.CancelledError:
            entry.state = AssetState.FAILED
            raise
        except Exception:
            entry.state = AssetState.FAILED
            logger.debug("asset load failed: %s", url, exc_info=True)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class LogoBook:
    """Maps model names onto logo URLs and looks them up in an :class:`AssetCache`."""

    def __init__(self, cache: AssetCache, base_url: Optional[str], extension: str = "png") -> None:
        self.cache = cache
        self.base_url = base_url.rstrip("/") if base_url else None
        self.extension = extension.lstrip(".")

    def url_for(self, name: str) -> Optional[str]:
        stem = logo_stem(name)
        if stem is None or self.base_url is None:
            return None
        return f"{self.base_url}/{stem}.{self.extension}"

    def logo(self, name: str, size: int) -> Optional[Image.Image]:
        url = self.url_for(name)
        if url is None:
            return None
        return self.cache.lookup(url, int(size))


class HttpFetcher:
    """aiohttp-backed fetcher; one client session per surface session."""

    def __init__(self, timeout_s: float = 5.0) -> None:
        self._timeout_s = float(timeout_s)
        self._session = None

    async def __call__(self, url: str) -> bytes:
        import aiohttp

        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout_s))
        async with self._session.get(url) as resp:
            resp.raise_for_status()
            return await resp.read()

    async def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            await session.close()
