"""ffmpeg / ffplay command lines and the byte pump between them."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from quipcast.stream.config import StreamConfig

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
FFPLAY = "ffplay"
PUMP_READ_SIZE = 64 * 1024


def build_ffmpeg_args(cfg: StreamConfig) -> list[str]:
    """Arguments (without the program name) for the transcoding encoder.

    Input 0 is the WebM capture stream on stdin, input 1 a silent stereo track
    so ingest servers that insist on audio are satisfied. Video is letterboxed
    to the target size and re-encoded as low-latency H.264.
    """
    w, h = int(cfg.width), int(cfg.height)
    gop = str(int(cfg.gop))
    args = [
        "-hide_banner",
        "-loglevel", "warning",
        "-fflags", "+genpts",
        "-f", "webm",
        "-i", "pipe:0",
        "-f", "lavfi",
        "-i", "anullsrc=channel_layout=stereo:sample_rate=44100",
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-vf", f"scale={w}:{h}:force_original_aspect_ratio=decrease,pad={w}:{h}:(ow-iw)/2:(oh-ih)/2",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-tune", "zerolatency",
        "-pix_fmt", "yuv420p",
        "-b:v", cfg.video_bitrate,
        "-maxrate", cfg.maxrate,
        "-bufsize", cfg.bufsize,
        "-g", gop,
        "-keyint_min", gop,
        "-sc_threshold", "0",
        "-c:a", "aac",
        "-b:a", cfg.audio_bitrate,
        "-ar", "44100",
        "-ac", "2",
    ]
    if cfg.live:
        args += ["-f", "flv", cfg.rtmp_target]
    else:
        args += ["-f", "mpegts", "pipe:1"]
    return args


def build_ffplay_args() -> list[str]:
    return ["-hide_banner", "-fflags", "nobuffer", "-flags", "low_delay", "-framedrop", "-i", "pipe:0"]


def redact_args(args: list[str]) -> list[str]:
    """Copy of *args* safe to log: RTMP URLs lose their stream key."""
    out = []
    for arg in args:
        if arg.startswith("rtmp://") or arg.startswith("rtmps://"):
            base, _, _key = arg.rpartition("/")
            arg = f"{base}/***"
        out.append(arg)
    return out


async def pump(reader: Any, writer: Any) -> int:
    """Copy *reader* into *writer* until EOF; always closes *writer*.

    Downstream pipe failures end the pump quietly; they only happen when the
    preview player is going away.
    """
    total = 0
    try:
        while True:
            data = await reader.read(PUMP_READ_SIZE)
            if not data:
                break
            writer.write(data)
            await writer.drain()
            total += len(data)
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("preview pump: downstream closed", exc_info=True)
    finally:
        try:
            writer.close()
        except Exception:
            logger.debug("preview pump: close failed", exc_info=True)
    return total
