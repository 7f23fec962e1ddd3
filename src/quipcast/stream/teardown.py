"""Ordered, isolated shutdown steps.

A :class:`TeardownPlan` runs its steps in registration order exactly once. A
step that raises or outlives ``step_timeout_s`` is logged and the next step
still runs. Concurrent or later callers of :meth:`TeardownPlan.run` wait on
the same execution.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Step = Callable[[], Awaitable[None]]


class TeardownPlan:
    def __init__(self, step_timeout_s: Optional[float] = None) -> None:
        self.step_timeout_s = step_timeout_s
        self._steps: list[tuple[str, Step]] = []
        self._task: Optional[asyncio.Task] = None
        self.completed: list[str] = []
        self.failed: list[str] = []

    def add(self, name: str, step: Step) -> None:
        if self._task is not None:
            raise RuntimeError("teardown already started")
        self._steps.append((name, step))

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def steps(self) -> list[str]:
        return [name for name, _ in self._steps]

    async def run(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._execute())
        # a cancelled caller must not abort the shutdown itself
        await asyncio.shield(self._task)

    async def _execute(self) -> None:
        for name, step in self._steps:
            try:
                await asyncio.wait_for(step(), timeout=self.step_timeout_s)
            except asyncio.TimeoutError:
                self.failed.append(name)
                logger.warning("teardown: step %s did not finish within %.1fs", name, self.step_timeout_s)
            except Exception:
                self.failed.append(name)
                logger.warning("teardown: step %s failed", name, exc_info=True)
            else:
                self.completed.append(name)
        logger.debug("teardown: done (failed=%s)", self.failed or "none")


async def terminate_process(proc: Any, timeout_s: float) -> Optional[int]:
    """SIGTERM *proc*, escalate to SIGKILL after *timeout_s*; returns its exit code."""
    if proc is None:
        return None
    if proc.returncode is None:
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
    return await wait_or_kill(proc, timeout_s)


async def wait_or_kill(proc: Any, timeout_s: float) -> Optional[int]:
    if proc is None:
        return None
    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning("process %s did not exit within %.1fs; killing", getattr(proc, "pid", "?"), timeout_s)
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        return await proc.wait()


async def close_stdin(proc: Any) -> None:
    stdin = getattr(proc, "stdin", None) if proc is not None else None
    if stdin is None or stdin.is_closing():
        return
    stdin.close()
    try:
        await stdin.wait_closed()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("stdin already closed by peer", exc_info=True)
