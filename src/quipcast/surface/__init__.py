"""Headless stand-in for the spectator page: sync, render, capture."""

from .app import BroadcastSurface, SurfaceConfig, with_capture_params

__all__ = ["BroadcastSurface", "SurfaceConfig", "with_capture_params"]
