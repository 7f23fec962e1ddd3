from __future__ import annotations

import os
from typing import Mapping, Optional


def _lookup(name: str, env: Optional[Mapping[str, str]]) -> Optional[str]:
    source = os.environ if env is None else env
    return source.get(name)


def env_str(name: str, default: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    v = _lookup(name, env)
    if v is None:
        return default
    v = v.strip()
    return v if v != "" else default


def env_bool(name: str, default: bool = False, env: Optional[Mapping[str, str]] = None) -> bool:
    v = _lookup(name, env)
    if v is None:
        return default
    s = v.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def env_positive_int(name: str, default: int, env: Optional[Mapping[str, str]] = None) -> int:
    """Parse a strictly positive integer; anything else yields *default*."""
    v = _lookup(name, env)
    if not v:
        return default
    try:
        parsed = int(v.strip(), 10)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def env_positive_float(name: str, default: float, env: Optional[Mapping[str, str]] = None) -> float:
    v = _lookup(name, env)
    if not v:
        return default
    try:
        parsed = float(v)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def parse_size(value: Optional[str], default: tuple[int, int]) -> tuple[int, int]:
    """Parse ``WIDTHxHEIGHT``; missing halves fall back to *default* halves."""
    if not value:
        return default
    parts = value.lower().split("x")
    width, height = default
    try:
        if parts[0]:
            width = int(parts[0])
        if len(parts) > 1 and parts[1]:
            height = int(parts[1])
    except ValueError:
        return default
    return width, height
