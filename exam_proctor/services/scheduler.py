"""Fixed-interval asyncio loops.

Deadlines are computed from the loop clock at start, so a slow callback
does not push later runs back. A run that overshoots its slot skips the
missed deadlines instead of firing them in a burst.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[None]]]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:  # no running loop
        return None


class PeriodicTask:
    """Runs ``callback`` every ``interval`` seconds until cancelled."""

    def __init__(self, name: str, interval: float, callback: Callback) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_deadline = loop.time() + self.interval
        while not self._stopping:
            await asyncio.sleep(max(0.0, next_deadline - loop.time()))
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # One failed cycle must not kill the loop; the next one supersedes it
                logger.exception("Periodic task %s failed", self.name)
            self.runs += 1
            next_deadline += self.interval
            now = loop.time()
            if next_deadline < now:
                skipped = int((now - next_deadline) // self.interval) + 1
                next_deadline += skipped * self.interval

    def cancel(self) -> None:
        """Request cancellation; safe to call from inside the callback."""
        self._stopping = True
        if self._task is not None and self._task is not _current_task():
            self._task.cancel()

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        self.cancel()
        task = self._task
        if task is None or task is _current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._task = None
