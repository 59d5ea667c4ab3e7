# core/coalescer.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.dispatch import Dispatcher, TimerHandle
from core.errors import ControlError
from core.models import ChangeFlags

logger = logging.getLogger(__name__)

MIN_TIME_BETWEEN_UPDATES_S = 1.0


@dataclass
class PendingChange:
    last_fire_time: Optional[float]
    accumulated_flags: ChangeFlags = ChangeFlags.NONE
    timer: Optional[TimerHandle] = None


class ChangeCoalescer:
    """
    Collapses bursts of native change notifications into one reload per playlist.

    The first notification arms a one-shot timer so that two reloads of the
    same playlist are at least `min_interval_s` apart. Notifications arriving
    while the timer is armed only add their flags; the timer is never pushed
    back.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        on_fire: Callable[[int, ChangeFlags], None],
        min_interval_s: float = MIN_TIME_BETWEEN_UPDATES_S,
    ):
        self._dispatcher = dispatcher
        self._on_fire = on_fire
        self.min_interval_s = min_interval_s
        self._pending: dict[int, PendingChange] = {}

    def track(self, playlist_id: int) -> None:
        """Start debouncing a playlist; its last load counts as a fire at `now`."""
        if playlist_id not in self._pending:
            self._pending[playlist_id] = PendingChange(last_fire_time=self._dispatcher.clock())

    def notify(self, playlist_id: int, flags: ChangeFlags) -> None:
        state = self._pending.get(playlist_id)
        if state is None:
            state = self._pending[playlist_id] = PendingChange(last_fire_time=None)

        state.accumulated_flags |= flags
        if state.timer is not None:
            return

        now = self._dispatcher.clock()
        if state.last_fire_time is None:
            delay = 0.0
        else:
            delay = max(self.min_interval_s - (now - state.last_fire_time), 0.0)
        logger.debug("Playlist %d: reload scheduled in %.3fs (flags %r)", playlist_id, delay, state.accumulated_flags)
        state.timer = self._dispatcher.call_later(delay, lambda: self._fire(playlist_id))

    def cancel(self, playlist_id: int) -> None:
        state = self._pending.pop(playlist_id, None)
        if state is not None and state.timer is not None:
            state.timer.cancel()

    def cancel_all(self) -> None:
        for playlist_id in list(self._pending):
            self.cancel(playlist_id)

    def is_pending(self, playlist_id: int) -> bool:
        state = self._pending.get(playlist_id)
        return state is not None and state.timer is not None

    def _fire(self, playlist_id: int) -> None:
        state = self._pending.get(playlist_id)
        if state is None:
            return  # playlist removed meanwhile

        flags = state.accumulated_flags
        try:
            self._on_fire(playlist_id, flags)
        except ControlError as e:
            logger.error("Playlist %d: reload failed, left stale: %s", playlist_id, e)
        finally:
            state.accumulated_flags = ChangeFlags.NONE
            state.last_fire_time = self._dispatcher.clock()
            state.timer = None
