# core/ids.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Hashable, Optional

from core.errors import InvalidArgument, NotFound
from core.models import CURRENT

logger = logging.getLogger(__name__)

_TOMBSTONE = object()


class IDTranslator:
    """
    Maps engine-native playlist handles to stable integer IDs and back.

    IDs are indices (1-based) into an append-only table. A removed playlist
    leaves a tombstone in its slot, so an ID is never handed out twice in the
    lifetime of the translator, even if the engine recycles the handle value.
    """

    def __init__(self, is_alive: Callable[[Hashable], bool]):
        self._is_alive = is_alive
        self._slots: list[object] = []
        self._by_handle: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def to_stable_id(self, handle: Hashable) -> int:
        with self._lock:
            stable_id = self._by_handle.get(handle)
            if stable_id is not None:
                return stable_id

            if handle is None or not self._is_alive(handle):
                raise NotFound(f"Native playlist handle {handle!r} is not alive")

            self._slots.append(handle)
            stable_id = len(self._slots)
            self._by_handle[handle] = stable_id
        logger.debug("Playlist handle %r mapped to id %d", handle, stable_id)
        return stable_id

    def to_native_handle(self, stable_id: int) -> Hashable:
        with self._lock:
            if not isinstance(stable_id, int) or stable_id < 1 or stable_id > len(self._slots):
                raise InvalidArgument(f"Unknown playlist id {stable_id}")
            handle = self._slots[stable_id - 1]
        if handle is _TOMBSTONE:
            raise InvalidArgument(f"Playlist id {stable_id} was removed")
        return handle

    def known(self, handle: Hashable) -> Optional[int]:
        """Stable ID of an already mapped handle, without creating one."""
        with self._lock:
            return self._by_handle.get(handle)

    def forget(self, stable_id: int) -> None:
        handle = self.to_native_handle(stable_id)
        with self._lock:
            self._slots[stable_id - 1] = _TOMBSTONE
            del self._by_handle[handle]

    def live_ids(self) -> list[int]:
        with self._lock:
            return [i + 1 for i, h in enumerate(self._slots) if h is not _TOMBSTONE]

    def resolve_absolute(self, raw_id: int, current: Callable[[], Optional[int]]) -> int:
        """
        Resolve CURRENT (-1) against the live playback context.

        `current` returns the ID of whatever is playing right now, or None.
        Other negative IDs are rejected; non-negative IDs are already absolute.
        """
        if not isinstance(raw_id, int):
            raise InvalidArgument(f"Identifier {raw_id!r} is not an integer")
        if raw_id == CURRENT:
            resolved = current()
            if resolved is None:
                raise NotFound("Nothing is playing")
            return resolved
        if raw_id < 0:
            raise InvalidArgument(f"Identifier {raw_id} is out of range")
        return raw_id
