# src/player/backends.py
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Hashable, Iterator, Optional

from core.errors import EngineCallFailed, InvalidArgument
from core.models import (
    TAG_FIELDS, ChangeFlags, NativeEntry, PlaybackState, PlaylistSnapshot, SourceType, Status,
)
from player.sdk import (
    GENERATION_3_MIN_VERSION, LEGACY_STATUS_IDS, S_OK,
    LegacyCommand, LegacyMessage, LegacySdk, ModernSdk, NativeCallError, StorageListener,
)

logger = logging.getLogger(__name__)

BOOL_STATUSES = {Status.MUTE, Status.REPEAT, Status.SHUFFLE, Status.RADIO_CAPTURE}

_SOURCE_TYPES = {"file": SourceType.FILE, "url": SourceType.URL, "radio": SourceType.RADIO}


def entry_from_native(data: dict[str, Any], with_rating: bool) -> NativeEntry:
    """Raises EngineCallFailed when the engine hands over a malformed entry."""
    try:
        source = data.get("source", "file")
        if not isinstance(source, SourceType):
            source = _SOURCE_TYPES.get(str(source).lower(), SourceType.FILE)
        rating = data.get("rating") if with_rating else None
        return NativeEntry(
            filename=data.get("filename") or "",
            duration_ms=int(data.get("duration_ms") or 0),
            rating=None if rating is None else min(5.0, max(0.0, float(rating))),
            source_type=source,
            tags={k: data[k] for k in TAG_FIELDS if data.get(k) is not None},
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise EngineCallFailed(f"Malformed entry from the engine: {e}") from e


def normalize_status(status: Status, value: Any) -> Any:
    if status in BOOL_STATUSES:
        return bool(value)
    if status == Status.PLAYER:
        return PlaybackState(int(value or 0))
    return value


class EngineBackend:
    """
    Uniform, handle-level view of one SDK generation.

    Exactly one subclass is picked at startup (see select_backend); the
    manager above it never checks which one it got.
    """

    generation = 0
    supports_native_rating = False

    def __init__(self, sdk: Any):
        self.sdk = sdk
        self._sink: Optional[StorageListener] = None

    def connect(self, sink: StorageListener) -> None:
        self._sink = sink

    def disconnect(self) -> None:
        self._sink = None

    def playback_state(self) -> PlaybackState:
        return self.get_status(Status.PLAYER)

    def forget(self, handle: Hashable) -> None:
        """Drop per-handle state kept on this side; the engine may reuse the handle."""


# ----------------------------
# Generation 2
# ----------------------------

class LegacyBackend(EngineBackend):
    generation = 2
    supports_native_rating = False

    def __init__(self, sdk: LegacySdk):
        super().__init__(sdk)
        self._locked: set[int] = set()

    def _check(self, code: int, what: str) -> None:
        if code != S_OK:
            raise EngineCallFailed(f"{what} failed", code)

    def _out(self, result: tuple[int, Any], what: str) -> Any:
        code, value = result
        self._check(code, what)
        return value

    # ---- notifications ----

    def connect(self, sink: StorageListener) -> None:
        super().connect(sink)
        self.sdk.set_message_hook(self._on_message)

    def disconnect(self) -> None:
        self.sdk.set_message_hook(None)
        super().disconnect()

    def _on_message(self, message: int, handle: int) -> None:
        sink = self._sink
        if sink is None:
            return
        if message == LegacyMessage.STORAGE_ACTIVATED:
            sink.on_storage_activated(handle)
        elif message == LegacyMessage.STORAGE_ADDED:
            sink.on_storage_added(handle)
        elif message == LegacyMessage.STORAGE_CHANGED:
            # Generation 2 does not say what changed.
            sink.on_storage_changed(handle, ChangeFlags.CONTENT | ChangeFlags.ENTRY_INFO)
        elif message == LegacyMessage.STORAGE_REMOVED:
            sink.on_storage_removed(handle)
        else:
            logger.debug("Ignoring engine message %r for %r", message, handle)

    # ---- info ----

    def version(self) -> str:
        v = int(self.sdk.version_id())
        return f"{v // 1000}.{(v % 1000) // 10:02d}.{v % 10}"

    def playlist_handles(self) -> list[Hashable]:
        return list(self.sdk.playlist_handles())

    def is_alive(self, handle: Hashable) -> bool:
        return handle in self.sdk.playlist_handles()

    def read_playlist(self, handle: Hashable) -> PlaylistSnapshot:
        title = self._out(self.sdk.playlist_title(handle), "playlist_title")
        count = self._out(self.sdk.entry_count(handle), "entry_count")
        if not isinstance(count, int) or count < 0:
            raise EngineCallFailed(f"entry_count returned {count!r}")
        entries = [
            entry_from_native(self._out(self.sdk.entry_info(handle, i), "entry_info"), with_rating=False)
            for i in range(count)
        ]
        return PlaylistSnapshot(title=title, entries=entries)

    # ---- playback ----

    def play(self) -> None:
        self._check(self.sdk.command(LegacyCommand.PLAY), "play")

    def play_entry(self, handle: Hashable, index: int) -> None:
        self._check(self.sdk.play_entry(handle, index), "play_entry")

    def stop(self) -> None:
        self._check(self.sdk.command(LegacyCommand.STOP), "stop")

    def pause(self) -> None:
        self._check(self.sdk.command(LegacyCommand.PAUSE), "pause")

    def next(self) -> None:
        self._check(self.sdk.command(LegacyCommand.NEXT), "next")

    def previous(self) -> None:
        self._check(self.sdk.command(LegacyCommand.PREV), "previous")

    def get_status(self, status: Status) -> Any:
        value = self._out(self.sdk.status_get(LEGACY_STATUS_IDS[status]), f"status_get({status.name})")
        return normalize_status(status, value)

    def set_status(self, status: Status, value: Any) -> None:
        self._check(self.sdk.status_set(LEGACY_STATUS_IDS[status], int(value)), f"status_set({status.name})")

    def playing(self) -> tuple[Optional[Hashable], Optional[int]]:
        handle = self.sdk.playing_playlist()
        if not handle:
            return None, None
        index = self.sdk.playing_index()
        return handle, (index if index >= 0 else None)

    # ---- queue / edits ----

    def queue(self, handle: Hashable, index: int, at_beginning: bool) -> None:
        self._check(self.sdk.queue_entry(handle, index, at_beginning), "queue_entry")

    def unqueue(self, handle: Hashable, index: int) -> None:
        self._check(self.sdk.unqueue_entry(handle, index), "unqueue_entry")

    def add_file(self, handle: Hashable, path: str) -> None:
        self._check(self.sdk.add_files(handle, [path]), "add_files")

    def add_url(self, handle: Hashable, url: str) -> None:
        self._check(self.sdk.add_url(handle, url), "add_url")

    def remove_entry(self, handle: Hashable, index: int, physically: bool) -> None:
        filename = None
        if physically:
            filename = self._out(self.sdk.entry_info(handle, index), "entry_info").get("filename")
        self._check(self.sdk.delete_entry(handle, index), "delete_entry")
        if filename:
            # Generation 2 cannot delete files itself.
            try:
                os.remove(filename)
            except OSError as e:
                raise EngineCallFailed(f"Cannot delete {filename}: {e}") from e

    def create_playlist(self, title: str) -> Hashable:
        return self._out(self.sdk.new_playlist(title), "new_playlist")

    def set_rating(self, handle: Hashable, index: int, rating: float) -> None:
        """No native rating; the cache keeps it."""

    def lock(self, handle: Hashable) -> None:
        if handle in self._locked:
            raise EngineCallFailed(f"Playlist {handle!r} is already locked")
        self._locked.add(handle)

    def unlock(self, handle: Hashable) -> None:
        if handle not in self._locked:
            raise EngineCallFailed(f"Playlist {handle!r} is not locked")
        self._locked.discard(handle)

    def forget(self, handle: Hashable) -> None:
        self._locked.discard(handle)

    def supported_extensions(self) -> list[str]:
        return [ext.strip().lstrip("*").lstrip(".").lower() for ext in self.sdk.formats().split(";") if ext.strip()]

    def format_title(self, handle: Hashable, index: int, format_string: str) -> Optional[str]:
        return None  # formatted from cached fields by the manager

    def cover(self, handle: Hashable, index: int) -> tuple[Optional[str], Optional[bytes]]:
        code, path, data = self.sdk.cover(handle, index)
        self._check(code, "cover")
        return path, data


# ----------------------------
# Generation 3
# ----------------------------

@contextmanager
def native_call(what: str) -> Iterator[None]:
    try:
        yield
    except NativeCallError as e:
        raise EngineCallFailed(f"{what} failed: {e}", e.code) from e


class ModernBackend(EngineBackend):
    generation = 3
    supports_native_rating = True

    def __init__(self, sdk: ModernSdk):
        super().__init__(sdk)

    def connect(self, sink: StorageListener) -> None:
        super().connect(sink)
        self.sdk.set_listener(sink)

    def disconnect(self) -> None:
        self.sdk.set_listener(None)
        super().disconnect()

    def version(self) -> str:
        with native_call("version"):
            text = self.sdk.version_string()
        if text:
            return text
        v = int(self.sdk.version_id())
        return f"{v // 1000}.{(v % 1000) // 10:02d}.{v % 10}"

    def playlist_handles(self) -> list[Hashable]:
        with native_call("playlist_handles"):
            return list(self.sdk.playlist_handles())

    def is_alive(self, handle: Hashable) -> bool:
        return bool(self.sdk.is_alive(handle))

    def read_playlist(self, handle: Hashable) -> PlaylistSnapshot:
        with native_call("read_playlist"):
            result = self.sdk.read_playlist(handle)
        try:
            title, entries = result
            entries = list(entries)
        except (TypeError, ValueError) as e:
            raise EngineCallFailed(f"read_playlist returned {result!r}") from e
        return PlaylistSnapshot(title=title, entries=[entry_from_native(e, with_rating=True) for e in entries])

    def play(self) -> None:
        with native_call("play"):
            self.sdk.play()

    def play_entry(self, handle: Hashable, index: int) -> None:
        with native_call("play_entry"):
            self.sdk.play_entry(handle, index)

    def stop(self) -> None:
        with native_call("stop"):
            self.sdk.stop()

    def pause(self) -> None:
        with native_call("pause"):
            self.sdk.pause()

    def next(self) -> None:
        with native_call("next"):
            self.sdk.next()

    def previous(self) -> None:
        with native_call("previous"):
            self.sdk.previous()

    def get_status(self, status: Status) -> Any:
        with native_call(f"get_status({status.name})"):
            value = self.sdk.get_status(status.name.lower())
        return normalize_status(status, value)

    def set_status(self, status: Status, value: Any) -> None:
        with native_call(f"set_status({status.name})"):
            self.sdk.set_status(status.name.lower(), value)

    def playing(self) -> tuple[Optional[Hashable], Optional[int]]:
        with native_call("playing"):
            return self.sdk.playing_playlist(), self.sdk.playing_index()

    def queue(self, handle: Hashable, index: int, at_beginning: bool) -> None:
        with native_call("queue"):
            self.sdk.queue(handle, index, at_beginning)

    def unqueue(self, handle: Hashable, index: int) -> None:
        with native_call("unqueue"):
            self.sdk.unqueue(handle, index)

    def add_file(self, handle: Hashable, path: str) -> None:
        with native_call("add_file"):
            self.sdk.add_file(handle, path)

    def add_url(self, handle: Hashable, url: str) -> None:
        with native_call("add_url"):
            self.sdk.add_url(handle, url)

    def remove_entry(self, handle: Hashable, index: int, physically: bool) -> None:
        with native_call("remove_entry"):
            self.sdk.remove_entry(handle, index, physically)

    def create_playlist(self, title: str) -> Hashable:
        with native_call("create_playlist"):
            return self.sdk.create_playlist(title)

    def set_rating(self, handle: Hashable, index: int, rating: float) -> None:
        with native_call("set_rating"):
            self.sdk.set_rating(handle, index, rating)

    def lock(self, handle: Hashable) -> None:
        with native_call("lock"):
            self.sdk.lock(handle)

    def unlock(self, handle: Hashable) -> None:
        with native_call("unlock"):
            self.sdk.unlock(handle)

    def supported_extensions(self) -> list[str]:
        with native_call("supported_extensions"):
            return [ext.lstrip("*").lstrip(".").lower() for ext in self.sdk.supported_extensions()]

    def format_title(self, handle: Hashable, index: int, format_string: str) -> Optional[str]:
        with native_call("format_title"):
            return self.sdk.format_title(handle, index, format_string)

    def cover(self, handle: Hashable, index: int) -> tuple[Optional[str], Optional[bytes]]:
        with native_call("cover"):
            return self.sdk.cover(handle, index)


def select_backend(sdk: Any) -> EngineBackend:
    """Pick the strategy for this engine once, from its reported version id."""
    try:
        version_id = int(sdk.version_id())
    except (AttributeError, TypeError, ValueError, NativeCallError) as e:
        raise EngineCallFailed(f"Unable to read engine version: {e}") from e

    if version_id <= 0:
        raise InvalidArgument(f"Engine reported an invalid version id {version_id}")
    if version_id < GENERATION_3_MIN_VERSION:
        backend: EngineBackend = LegacyBackend(sdk)
    else:
        backend = ModernBackend(sdk)
    logger.info("Engine version id %d, using generation %d backend", version_id, backend.generation)
    return backend
