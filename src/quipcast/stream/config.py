from __future__ import annotations

"""
Stream orchestrator configuration.

Everything is read once from the environment (or an injected mapping) into a
:class:`StreamConfig`. Numeric knobs that fail to parse fall back to their
defaults; the only hard error is live mode without a stream key.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from quipcast.stream.errors import ConfigError
from quipcast.utils.env import env_bool, env_positive_float, env_positive_int, env_str, parse_size

MODES = ("live", "dryrun")
DEFAULT_RTMP_URL = "rtmp://live.twitch.tv/app"


@dataclass
class StreamConfig:
    mode: str = "dryrun"
    fps: int = 30
    capture_bitrate: int = 12_000_000
    width: int = 1920
    height: int = 1080
    video_bitrate: str = "6000k"
    maxrate: str = "6000k"
    bufsize: str = "12000k"
    gop: int = 60
    audio_bitrate: str = "160k"
    broadcast_url: str = "http://127.0.0.1:5109/broadcast"
    stream_key: Optional[str] = None
    rtmp_url: str = DEFAULT_RTMP_URL
    ready_timeout_s: float = 10.0
    probe_timeout_s: float = 5.0
    shutdown_grace_s: float = 5.0
    debug: bool = False

    @property
    def live(self) -> bool:
        return self.mode == "live"

    @property
    def rtmp_target(self) -> str:
        return f"{self.rtmp_url.rstrip('/')}/{self.stream_key}"

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        if out.get("stream_key"):
            out["stream_key"] = "***"
        return out


def load_stream_config(mode: str, env: Optional[Mapping[str, str]] = None) -> StreamConfig:
    if mode not in MODES:
        raise ConfigError(f"unknown mode {mode!r}; expected one of {', '.join(MODES)}")
    width, height = parse_size(env_str("STREAM_TARGET_SIZE", None, env), (1920, 1080))
    port = env_str("STREAM_APP_PORT", "5109", env)
    cfg = StreamConfig(
        mode=mode,
        fps=env_positive_int("STREAM_FPS", 30, env),
        capture_bitrate=env_positive_int("STREAM_CAPTURE_BITRATE", 12_000_000, env),
        width=width,
        height=height,
        video_bitrate=env_str("STREAM_VIDEO_BITRATE", "6000k", env),
        maxrate=env_str("STREAM_MAXRATE", "6000k", env),
        bufsize=env_str("STREAM_BUFSIZE", "12000k", env),
        gop=env_positive_int("STREAM_GOP", 60, env),
        audio_bitrate=env_str("STREAM_AUDIO_BITRATE", "160k", env),
        broadcast_url=env_str("BROADCAST_URL", f"http://127.0.0.1:{port}/broadcast", env),
        stream_key=env_str("TWITCH_STREAM_KEY", None, env),
        rtmp_url=env_str("STREAM_RTMP_URL", DEFAULT_RTMP_URL, env),
        ready_timeout_s=env_positive_float("STREAM_READY_TIMEOUT_S", 10.0, env),
        debug=env_bool("STREAM_DEBUG", False, env),
    )
    if cfg.live and not cfg.stream_key:
        raise ConfigError("TWITCH_STREAM_KEY is not set.")
    return cfg
