from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from PIL import ImageFont

logger = logging.getLogger(__name__)

Font = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]

SANS = "Inter"
MONO = "JetBrains Mono"
SERIF = "DM Serif Display"

_WEIGHT_SUFFIX = {400: "Regular", 500: "Medium", 600: "SemiBold", 700: "Bold"}
_FAMILY_STEM = {SANS: "Inter", MONO: "JetBrainsMono", SERIF: "DMSerifDisplay"}


@dataclass(frozen=True)
class FontSpec:
    family: str
    weight: int
    size: int


def candidate_files(spec: FontSpec) -> list[str]:
    stem = _FAMILY_STEM.get(spec.family, spec.family.replace(" ", ""))
    names = []
    suffix = _WEIGHT_SUFFIX.get(spec.weight)
    if suffix is not None:
        names.append(f"{stem}-{suffix}.ttf")
    names.append(f"{stem}-Regular.ttf")
    names.append(f"{stem}.ttf")
    return names


class FontBook:
    """Resolves :class:`FontSpec` values to Pillow fonts, once per spec.

    Font files are looked up by conventional name (``Inter-Bold.ttf``,
    ``JetBrainsMono-SemiBold.ttf``, ``DMSerifDisplay-Regular.ttf``...) in
    ``font_dir``. A missing file falls back to Pillow's bundled scalable font
    at the same size so layout stays size-correct.
    """

    def __init__(self, font_dir: Optional[Union[str, Path]] = None) -> None:
        self.font_dir = Path(font_dir) if font_dir else None
        self._cache: dict[FontSpec, Font] = {}
        self._warned: set[str] = set()

    def get(self, spec: FontSpec) -> Font:
        font = self._cache.get(spec)
        if font is None:
            font = self._load(spec)
            self._cache[spec] = font
        return font

    def _load(self, spec: FontSpec) -> Font:
        if self.font_dir is not None:
            for name in candidate_files(spec):
                path = self.font_dir / name
                if not path.is_file():
                    continue
                try:
                    return ImageFont.truetype(str(path), spec.size)
                except OSError:
                    logger.debug("font load failed: %s", path, exc_info=True)
        if spec.family not in self._warned:
            self._warned.add(spec.family)
            logger.info("font family %r not found; using Pillow default", spec.family)
        return ImageFont.load_default(size=spec.size)
