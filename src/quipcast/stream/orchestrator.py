from __future__ import annotations

"""
Stream orchestrator: render target -> headless surface -> relay -> ffmpeg.

Startup order:
1. probe the render target over HTTP;
2. start ffmpeg (and, in dryrun mode, ffplay fed from ffmpeg's stdout);
3. open the chunk relay on an ephemeral local port;
4. launch the surface subprocess pointed at the target with the relay URL;
5. wait for the first media chunk (readiness gate).

From then on the process lives as long as ffmpeg does. Shutdown is a single
ordered teardown shared by signals, subprocess exits and failures, and the
process exit status mirrors ffmpeg's.
"""

import argparse
import asyncio
import logging
import signal
import sys
from asyncio import subprocess as aio_subprocess
from typing import Any, Callable, Mapping, Optional

from quipcast.stream.config import MODES, StreamConfig, load_stream_config
from quipcast.stream.errors import (
    CaptureTimeout,
    EncoderFailed,
    OrchestratorError,
    RenderTargetUnreachable,
    SurfaceFailed,
)
from quipcast.stream.ffmpeg import FFMPEG, FFPLAY, build_ffmpeg_args, build_ffplay_args, pump, redact_args
from quipcast.stream.relay import ChunkRelay
from quipcast.stream.teardown import TeardownPlan, close_stdin, terminate_process, wait_or_kill
from quipcast.surface.app import with_capture_params
from quipcast.utils.env import env_bool

logger = logging.getLogger(__name__)

SURFACE_MODULE = "quipcast.surface"


def exit_code_for(returncode: Optional[int]) -> int:
    """Map a subprocess return code onto a shell-style exit status."""
    if returncode is None:
        return 1
    if returncode < 0:
        return 128 + (-returncode)
    return int(returncode)


async def probe_render_target(url: str, timeout_s: float = 5.0) -> None:
    import aiohttp

    try:
        timeout = aiohttp.ClientTimeout(total=float(timeout_s))
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as resp:
                if resp.status >= 400:
                    raise RenderTargetUnreachable(_unreachable(url, f"HTTP {resp.status}"))
    except RenderTargetUnreachable:
        raise
    except asyncio.TimeoutError:
        raise RenderTargetUnreachable(_unreachable(url, f"timed out after {timeout_s:g}s")) from None
    except (aiohttp.ClientError, OSError, ValueError) as exc:
        raise RenderTargetUnreachable(_unreachable(url, str(exc) or type(exc).__name__)) from exc


def _unreachable(url: str, detail: str) -> str:
    return f"Cannot reach broadcast page at {url} ({detail}). Start the app server first."


class StreamOrchestrator:
    def __init__(
        self,
        cfg: StreamConfig,
        *,
        spawn: Callable[..., Any] = aio_subprocess.create_subprocess_exec,
        probe: Callable[[str, float], Any] = probe_render_target,
        relay_factory: Callable[[Any], ChunkRelay] = ChunkRelay,
        python: str = sys.executable,
        handle_signals: bool = True,
    ) -> None:
        self.cfg = cfg
        self._spawn = spawn
        self._probe = probe
        self._relay_factory = relay_factory
        self._python = python
        self._handle_signals = handle_signals
        self.encoder: Any = None
        self.preview: Any = None
        self.surface: Any = None
        self.relay: Optional[ChunkRelay] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._encoder_exit: Optional[asyncio.Task] = None
        self._surface_exit: Optional[asyncio.Task] = None
        self._preview_exit: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self.signal_received: Optional[int] = None
        self.teardown = self._build_teardown()
        self._signals: list[int] = []

    # ---- startup -------------------------------------------------------------

    async def _start_encoder(self) -> None:
        args = build_ffmpeg_args(self.cfg)
        logger.debug("ffmpeg %s", " ".join(redact_args(args)))
        try:
            self.encoder = await self._spawn(
                FFMPEG,
                *args,
                stdin=aio_subprocess.PIPE,
                stdout=None if self.cfg.live else aio_subprocess.PIPE,
            )
        except OSError as exc:
            raise EncoderFailed(f"cannot start {FFMPEG}: {exc}") from exc
        self._encoder_exit = asyncio.ensure_future(self.encoder.wait())

        if self.cfg.live:
            return
        try:
            self.preview = await self._spawn(FFPLAY, *build_ffplay_args(), stdin=aio_subprocess.PIPE)
        except OSError as exc:
            raise EncoderFailed(f"cannot start {FFPLAY}: {exc}") from exc
        if self.encoder.stdout is None or self.preview.stdin is None:
            raise EncoderFailed("Failed to pipe ffmpeg output into ffplay.")
        self._pump_task = asyncio.ensure_future(pump(self.encoder.stdout, self.preview.stdin))
        self._preview_exit = asyncio.ensure_future(self.preview.wait())

    async def _start_surface(self, sink_url: str) -> None:
        url = with_capture_params(self.cfg.broadcast_url, sink_url, self.cfg.fps, self.cfg.capture_bitrate)
        args = [self._python, "-m", SURFACE_MODULE, url]
        if self.cfg.debug:
            args.append("--debug")
        quiet = None if self.cfg.debug else aio_subprocess.DEVNULL
        try:
            self.surface = await self._spawn(*args, stdin=aio_subprocess.DEVNULL, stdout=quiet, stderr=quiet)
        except OSError as exc:
            raise SurfaceFailed(f"cannot start surface: {exc}") from exc
        self._surface_exit = asyncio.ensure_future(self.surface.wait())
        logger.info("surface started (pid %s) for %s", getattr(self.surface, "pid", "?"), self.cfg.broadcast_url)

    async def _wait_ready(self) -> None:
        first_chunk = self.relay.first_chunk
        stop_wait = asyncio.ensure_future(self._stop.wait())
        waiters = {first_chunk, self._encoder_exit, self._surface_exit, stop_wait}
        if self._preview_exit is not None:
            waiters.add(self._preview_exit)
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.cfg.ready_timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_wait.cancel()
        if first_chunk in done and not first_chunk.cancelled():
            exc = first_chunk.exception()
            if exc is not None:
                raise EncoderFailed(f"encoder rejected the first chunk: {exc}")
            return
        if self._encoder_exit in done:
            raise EncoderFailed(
                f"{FFMPEG} exited with status {exit_code_for(self.encoder.returncode)} before the first chunk"
            )
        if self._surface_exit in done:
            raise SurfaceFailed(
                f"surface exited with status {exit_code_for(self.surface.returncode)} before the first chunk"
            )
        if self._preview_exit is not None and self._preview_exit in done:
            raise EncoderFailed(
                f"{FFPLAY} exited with status {exit_code_for(self.preview.returncode)} before the first chunk"
            )
        if self._stop.is_set():
            return
        raise CaptureTimeout(
            f"No media chunks received from the surface within {self.cfg.ready_timeout_s:g}s."
        )

    # ---- lifecycle -----------------------------------------------------------

    async def run(self) -> int:
        await self._probe(self.cfg.broadcast_url, self.cfg.probe_timeout_s)
        loop = asyncio.get_running_loop()
        self._install_signal_handlers(loop)
        try:
            await self._start_encoder()
            self.relay = self._relay_factory(self.encoder.stdin)
            sink_url = await self.relay.start()
            await self._start_surface(sink_url)
            await self._wait_ready()
            if not self._stop.is_set():
                logger.info("Streaming from %s in %s mode", self.cfg.broadcast_url, self.cfg.mode)
            return await self._supervise()
        finally:
            await self.shutdown()
            self._remove_signal_handlers(loop)

    async def _supervise(self) -> int:
        stop_wait = asyncio.ensure_future(self._stop.wait())
        watched = {self._encoder_exit, self._surface_exit, stop_wait}
        if self._preview_exit is not None:
            watched.add(self._preview_exit)
        try:
            done, _ = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_wait.cancel()
        surface_died = self._surface_exit in done and self._encoder_exit not in done and not self._stop.is_set()
        if surface_died:
            logger.error("surface exited unexpectedly (status %s)", exit_code_for(self.surface.returncode))
        if self._preview_exit is not None and self._preview_exit in done:
            logger.info("%s closed (status %s); shutting down", FFPLAY, exit_code_for(self.preview.returncode))
        if self._encoder_exit not in done:
            await self.shutdown()
        code = exit_code_for(await self._encoder_exit)
        if self._pump_task is not None:
            await asyncio.gather(self._pump_task, return_exceptions=True)
        if code != 0:
            logger.error("%s exited with status %d", FFMPEG, code)
        if surface_died and code == 0:
            return 1
        return code

    async def shutdown(self) -> None:
        await self.teardown.run()

    def _build_teardown(self) -> TeardownPlan:
        grace = self.cfg.shutdown_grace_s
        # room for terminate, the grace period and a kill
        plan = TeardownPlan(step_timeout_s=2 * grace + 1.0)
        plan.add("relay", self._stop_relay)
        plan.add("surface", lambda: terminate_process(self.surface, grace))
        plan.add("encoder stdin", lambda: close_stdin(self.encoder))
        plan.add("encoder", lambda: wait_or_kill(self.encoder, grace))
        plan.add("preview pump", self._stop_pump)
        plan.add("preview", self._stop_preview)
        return plan

    async def _stop_relay(self) -> None:
        if self.relay is not None:
            await self.relay.stop()

    async def _stop_pump(self) -> None:
        task = self._pump_task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.cfg.shutdown_grace_s)
        except asyncio.TimeoutError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _stop_preview(self) -> None:
        if self.preview is None:
            return
        await close_stdin(self.preview)
        await wait_or_kill(self.preview, self.cfg.shutdown_grace_s)

    # ---- signals -------------------------------------------------------------

    def request_stop(self, signum: Optional[int] = None) -> None:
        if signum is not None:
            logger.info("received signal %d; shutting down", signum)
            self.signal_received = signum
        self._stop.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        if not self._handle_signals:
            return
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop, int(sig))
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("signal handler for %s unavailable", sig, exc_info=True)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self._signals:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("signal handler removal failed for %s", sig, exc_info=True)
        self._signals.clear()


def main(argv=None, env: Optional[Mapping[str, str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="quipcast-stream",
        description="Render the live broadcast and push it to Twitch (live) or a local player (dryrun).",
    )
    parser.add_argument("mode", choices=MODES, help="live: push RTMP (needs TWITCH_STREAM_KEY); dryrun: local ffplay")
    args = parser.parse_args(argv)

    debug = env_bool("STREAM_DEBUG", False, env)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
    )
    try:
        cfg = load_stream_config(args.mode, env)
        logger.debug("stream config: %s", cfg.as_dict())
        return asyncio.run(StreamOrchestrator(cfg).run())
    except OrchestratorError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
