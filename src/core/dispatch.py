# core/dispatch.py
from __future__ import annotations

import heapq
import itertools
import logging
import queue
import time
from typing import Callable

from core.errors import ControlError

logger = logging.getLogger(__name__)


class TimerHandle:
    def __init__(self, due: float, fn: Callable[[], None]):
        self.due = due
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Dispatcher:
    """
    Single logical execution context driven by the host through tick().

    Jobs may be posted from any thread (engine callbacks, RPC threads); they
    only ever run inside tick(), one at a time, in posting order. One-shot
    timers are kept on the same context.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._jobs: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._timers: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def post(self, fn: Callable[[], None]) -> None:
        self._jobs.put(fn)

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self.clock() + max(0.0, delay_s), fn)
        heapq.heappush(self._timers, (handle.due, next(self._seq), handle))
        return handle

    def pending_timers(self) -> int:
        return sum(1 for _, _, h in self._timers if not h.cancelled)

    def tick(self, max_jobs: int = 500) -> int:
        """Run queued jobs, then timers that are due. Returns how many ran."""
        ran = 0
        for _ in range(max_jobs):
            try:
                fn = self._jobs.get_nowait()
            except queue.Empty:
                break
            self._run(fn)
            ran += 1

        now = self.clock()
        while self._timers and self._timers[0][0] <= now:
            _, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._run(handle.fn)
            ran += 1
        return ran

    def clear(self) -> None:
        for _, _, handle in self._timers:
            handle.cancel()
        self._timers.clear()
        while True:
            try:
                self._jobs.get_nowait()
            except queue.Empty:
                break

    def _run(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except ControlError as e:
            # Keep the context alive; the failing job is dropped.
            logger.critical("Unhandled error inside dispatch job %r: %s", fn, e)
        except Exception:
            logger.exception("Dispatch job %r crashed", fn)
