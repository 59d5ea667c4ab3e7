# src/player/manager.py
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional

from core.bus import ListenerBus
from core.coalescer import MIN_TIME_BETWEEN_UPDATES_S, ChangeCoalescer
from core.dispatch import Dispatcher
from core.errors import ControlError, InvalidArgument, NotFound, PersistenceError
from core.ids import IDTranslator
from core.models import (
    CURRENT, RELOAD_FLAGS, ChangeFlags, Event, EventType, PlaybackState, SourceType, Status,
    TrackDescription,
)
from core.utils import format_entry_title
from db.cache import PlaylistCache
from db.models import Entry, Playlist
from player.backends import EngineBackend, select_backend

logger = logging.getLogger(__name__)

READ_ONLY_STATUSES = {Status.PLAYER, Status.LENGTH, Status.KBPS, Status.KHZ}
STATUS_RANGES = {
    Status.VOLUME: (0, 100),
    Status.BALANCE: (-100, 100),
    Status.SPEED: (25, 200),
}

# Status changes the engine does not announce itself.
_STATUS_EVENTS = {
    Status.VOLUME, Status.MUTE, Status.SHUFFLE, Status.REPEAT, Status.RADIO_CAPTURE, Status.POS,
    Status.BALANCE, Status.SPEED,
}


@dataclass(frozen=True)
class ManagerInternals:
    """Components behind EngineManager, for tests and diagnostics only."""
    dispatcher: Dispatcher
    ids: IDTranslator
    cache: PlaylistCache
    coalescer: ChangeCoalescer
    bus: ListenerBus
    backend: EngineBackend


class EngineManager:
    """
    Version-independent control surface over one media engine.

    Engine notifications may arrive on any thread; they are queued and only
    handled inside on_tick(), together with debounce timers and listener
    delivery. Control calls go straight to the engine; metadata reads come
    from the playlist cache.
    """

    def __init__(
        self,
        sdk: Any,
        work_dir: str,
        clock: Callable[[], float] = time.monotonic,
        min_update_interval_s: float = MIN_TIME_BETWEEN_UPDATES_S,
    ):
        self._dispatcher = Dispatcher(clock)
        self._backend = select_backend(sdk)
        self._ids = IDTranslator(self._backend.is_alive)
        self._cache = PlaylistCache(work_dir, self._backend, self._ids)  # raises PersistenceError
        self._bus = ListenerBus(self._dispatcher)
        self._coalescer = ChangeCoalescer(self._dispatcher, self._on_debounced_change, min_update_interval_s)

        self._last_track: Optional[TrackDescription] = None
        self._last_state: Optional[PlaybackState] = None

        self._backend.connect(self)
        for handle in self._backend.playlist_handles():
            self._handle_storage_added(handle, announce=False)
        self._poll_state(publish=False)

    def internals(self) -> ManagerInternals:
        return ManagerInternals(
            dispatcher=self._dispatcher,
            ids=self._ids,
            cache=self._cache,
            coalescer=self._coalescer,
            bus=self._bus,
            backend=self._backend,
        )

    @property
    def cache(self) -> PlaylistCache:
        return self._cache

    def close(self) -> None:
        self._backend.disconnect()
        self._coalescer.cancel_all()
        self._dispatcher.clear()
        self._bus.clear()
        self._cache.close()

    # ----------------------------
    # Engine notifications (any thread)
    # ----------------------------

    def on_storage_activated(self, handle: Hashable) -> None:
        self._dispatcher.post(lambda: self._handle_storage_activated(handle))

    def on_storage_added(self, handle: Hashable) -> None:
        self._dispatcher.post(lambda: self._handle_storage_added(handle))

    def on_storage_changed(self, handle: Hashable, flags: int) -> None:
        self._dispatcher.post(lambda: self._handle_storage_changed(handle, ChangeFlags(flags)))

    def on_storage_removed(self, handle: Hashable) -> None:
        self._dispatcher.post(lambda: self._handle_storage_removed(handle))

    # ----------------------------
    # Dispatch context
    # ----------------------------

    def on_tick(self) -> None:
        self._dispatcher.tick()
        self._poll_state()
        # deliver what polling produced
        self._dispatcher.tick()

    def _handle_storage_activated(self, handle: Hashable) -> None:
        playlist_id = self._ids.known(handle)
        if playlist_id is None:
            logger.debug("Activated storage %r is unknown", handle)
            return
        self._bus.publish(Event(EventType.PLAYLIST_ACTIVATED, playlist_id=playlist_id))

    def _handle_storage_added(self, handle: Hashable, announce: bool = True) -> None:
        try:
            playlist_id = self._ids.to_stable_id(handle)
        except NotFound:
            logger.warning("Storage %r vanished before it could be loaded", handle)
            return
        if self._cache.has_playlist(playlist_id):
            return

        self._cache.add_playlist(playlist_id)
        self._coalescer.track(playlist_id)
        try:
            self._cache.reload(playlist_id)
        except ControlError as e:
            logger.error("Playlist %d: initial load failed, left stale: %s", playlist_id, e)
        if announce:
            self._bus.publish(Event(EventType.PLAYLIST_ADDED, playlist_id=playlist_id))
            self._bus.publish(Event(EventType.PLAYLISTS_CONTENT_CHANGED, playlist_id=playlist_id))

    def _handle_storage_changed(self, handle: Hashable, flags: ChangeFlags) -> None:
        playlist_id = self._ids.known(handle)
        if playlist_id is None or not self._cache.has_playlist(playlist_id):
            self._handle_storage_added(handle)
            return
        if flags & RELOAD_FLAGS:
            self._cache.mark_stale(playlist_id)
            self._coalescer.notify(playlist_id, flags)

    def _handle_storage_removed(self, handle: Hashable) -> None:
        playlist_id = self._ids.known(handle)
        if playlist_id is None:
            return
        self._coalescer.cancel(playlist_id)
        try:
            self._cache.remove_entries(playlist_id)
            self._cache.remove_playlist(playlist_id)
        except PersistenceError as e:
            logger.error("Playlist %d: could not purge cached rows: %s", playlist_id, e)
        self._ids.forget(playlist_id)
        self._backend.forget(handle)
        self._bus.publish(Event(EventType.PLAYLIST_REMOVED, playlist_id=playlist_id))

    def _on_debounced_change(self, playlist_id: int, flags: ChangeFlags) -> None:
        if not self._cache.has_playlist(playlist_id):
            return
        changed = self._cache.reload(playlist_id)
        self._bus.publish(Event(EventType.PLAYLIST_CHANGED, playlist_id=playlist_id, flags=flags))
        if changed:
            self._bus.publish(Event(EventType.PLAYLISTS_CONTENT_CHANGED, playlist_id=playlist_id))

    def _poll_state(self, publish: bool = True) -> None:
        """Synthesize track/state change events the engine does not send."""
        try:
            track = self.get_playing_track()
            state = self._backend.playback_state()
        except ControlError as e:
            logger.debug("State polling skipped: %s", e)
            return

        if track != self._last_track:
            self._last_track = track
            if publish:
                self._bus.publish(Event(
                    EventType.TRACK_CHANGED,
                    playlist_id=track.playlist_id if track else None,
                    value=track,
                ))
        if state != self._last_state:
            self._last_state = state
            if publish:
                self._bus.publish(Event(EventType.PLAYER_STATE_CHANGED, value=state))

    # ----------------------------
    # Reload requests
    # ----------------------------

    def reload_playlist(self, playlist_id: int) -> bool:
        """Reload now. Must be called on the dispatch context."""
        return self._cache.reload(self.get_absolute_playlist_id(playlist_id))

    def request_reload(self, playlist_id: int) -> None:
        """Thread-safe: the reload runs on the next tick."""
        playlist_id = self.get_absolute_playlist_id(playlist_id)

        def job() -> None:
            if not self._cache.has_playlist(playlist_id):
                return
            try:
                self._on_debounced_change(playlist_id, ChangeFlags.NONE)
            except ControlError as e:
                logger.error("Playlist %d: requested reload failed, left stale: %s", playlist_id, e)

        self._dispatcher.post(job)

    # ----------------------------
    # Playback control
    # ----------------------------

    def start_playback(self, track: Optional[TrackDescription] = None) -> None:
        if track is None:
            self._backend.play()
            return
        handle, entry = self._resolve_entry(track)
        self._backend.play_entry(handle, entry.position)

    def stop_playback(self) -> None:
        self._backend.stop()

    def pause_playback(self) -> None:
        self._backend.pause()

    def play_next_track(self) -> None:
        self._backend.next()

    def play_previous_track(self) -> None:
        self._backend.previous()

    def get_version(self) -> str:
        return self._backend.version()

    def set_status(self, status: Status, value: Any) -> None:
        if status in READ_ONLY_STATUSES:
            raise InvalidArgument(f"Status {status.name} is read only")
        bounds = STATUS_RANGES.get(status)
        if bounds is not None and not bounds[0] <= int(value) <= bounds[1]:
            raise InvalidArgument(f"Status {status.name} value {value} is out of range {bounds}")
        if status == Status.POS and int(value) < 0:
            raise InvalidArgument(f"Track position {value} is negative")

        self._backend.set_status(status, value)
        if status in _STATUS_EVENTS:
            self._bus.publish(Event(EventType.STATUS_CHANGED, status=status, value=value))

    def get_status(self, status: Status) -> Any:
        return self._backend.get_status(status)

    def get_playback_state(self) -> PlaybackState:
        return self._backend.playback_state()

    # ----------------------------
    # Play queue
    # ----------------------------

    def enqueue_entry_for_play(self, track: TrackDescription, insert_at_queue_beginning: bool = False) -> None:
        handle, entry = self._resolve_entry(track)
        self._backend.queue(handle, entry.position, insert_at_queue_beginning)

    def remove_entry_from_play_queue(self, track: TrackDescription) -> None:
        handle, entry = self._resolve_entry(track)
        self._backend.unqueue(handle, entry.position)

    # ----------------------------
    # Playing track and absolute IDs
    # ----------------------------

    def get_playing_playlist(self) -> Optional[int]:
        handle, _ = self._backend.playing()
        return None if handle is None else self._ids.known(handle)

    def get_playing_entry(self) -> Optional[int]:
        track = self.get_playing_track()
        return None if track is None else track.entry_id

    def get_playing_track(self) -> Optional[TrackDescription]:
        handle, index = self._backend.playing()
        if handle is None or index is None:
            return None
        playlist_id = self._ids.known(handle)
        if playlist_id is None:
            return None
        entry_id = self._cache.entry_id_at(playlist_id, index)
        if entry_id is None:
            return None
        return TrackDescription(playlist_id, entry_id)

    def get_absolute_playlist_id(self, playlist_id: int) -> int:
        return self._ids.resolve_absolute(playlist_id, self.get_playing_playlist)

    def get_absolute_entry_id(self, entry_id: int) -> int:
        return self._ids.resolve_absolute(entry_id, self.get_playing_entry)

    def get_absolute_track_desc(self, track: TrackDescription) -> TrackDescription:
        if track.playlist_id == CURRENT and track.entry_id == CURRENT:
            playing = self.get_playing_track()
            if playing is None:
                raise NotFound("Nothing is playing")
            return playing
        return TrackDescription(
            self.get_absolute_playlist_id(track.playlist_id),
            self.get_absolute_entry_id(track.entry_id),
        )

    # ----------------------------
    # Metadata reads
    # ----------------------------

    def get_playlists(self) -> list[Playlist]:
        return self._cache.playlists()

    def get_playlist_entries(self, playlist_id: int) -> list[Entry]:
        return self._cache.entries(self.get_absolute_playlist_id(playlist_id))

    def get_playlist_crc32(self, playlist_id: int) -> int:
        return self._cache.get_checksum(self.get_absolute_playlist_id(playlist_id))

    def get_track_source_type(self, track: TrackDescription) -> SourceType:
        return SourceType(self._cache.get_int(self.get_absolute_track_desc(track), "source_type"))

    def get_entry_filename(self, track: TrackDescription) -> str:
        return self._cache.get_string(self.get_absolute_track_desc(track), "filename")

    def get_formatted_entry_title(self, track: TrackDescription, format_string: str) -> str:
        handle, entry = self._resolve_entry(track)
        title = self._backend.format_title(handle, entry.position, format_string)
        if title is None:
            title = format_entry_title(entry.fields(), format_string)
        return title

    def is_cover_image_file_exist(self, track: TrackDescription) -> Optional[str]:
        handle, entry = self._resolve_entry(track)
        path, _ = self._backend.cover(handle, entry.position)
        if path and os.path.isfile(path):
            return path
        return None

    def save_cover_to_file(self, track: TrackDescription, filename: str, cover_width: int = 0, cover_height: int = 0) -> None:
        if cover_width or cover_height:
            raise InvalidArgument("Cover resizing is not supported; pass zero width and height")
        handle, entry = self._resolve_entry(track)
        path, data = self._backend.cover(handle, entry.position)
        try:
            if data is None and path and os.path.isfile(path):
                with open(path, "rb") as f:
                    data = f.read()
            if not data:
                raise NotFound(f"No cover art for entry {entry.stable_id}")
            with open(filename, "wb") as f:
                f.write(data)
        except OSError as e:
            raise PersistenceError(f"Cannot write cover to {filename}: {e}") from e

    # ----------------------------
    # Ratings
    # ----------------------------

    def track_rating(self, track: TrackDescription) -> float:
        return self._cache.get_float(self.get_absolute_track_desc(track), "rating")

    def set_track_rating(self, track: TrackDescription, rating: float) -> None:
        rating = float(rating)
        if not 0.0 <= rating <= 5.0:
            raise InvalidArgument(f"Rating {rating} is outside [0, 5]")
        handle, entry = self._resolve_entry(track)
        self._backend.set_rating(handle, entry.position, rating)
        self._cache.store_rating(
            TrackDescription(entry.playlist_id, entry.stable_id),
            rating,
            keep_by_filename=not self._backend.supports_native_rating,
        )

    # ----------------------------
    # Playlist edits
    # ----------------------------

    def add_file_to_playlist(self, path: str, playlist_id: int) -> None:
        self._backend.add_file(self._handle_of(playlist_id), path)

    def add_url_to_playlist(self, url: str, playlist_id: int) -> None:
        self._backend.add_url(self._handle_of(playlist_id), url)

    def remove_track(self, track: TrackDescription, physically: bool = False) -> None:
        handle, entry = self._resolve_entry(track)
        self._backend.remove_entry(handle, entry.position, physically)

    def create_playlist(self, title: str) -> int:
        handle = self._backend.create_playlist(title)
        playlist_id = self._ids.to_stable_id(handle)
        # The cache picks it up on the dispatch context, like any added storage.
        self._dispatcher.post(lambda: self._handle_storage_added(handle))
        return playlist_id

    def lock_playlist(self, playlist_id: int) -> None:
        self._cache.lock(self.get_absolute_playlist_id(playlist_id))

    def unlock_playlist(self, playlist_id: int) -> None:
        self._cache.unlock(self.get_absolute_playlist_id(playlist_id))

    def supported_track_extensions(self) -> str:
        return ";".join(f"*.{ext}" for ext in self._backend.supported_extensions())

    # ----------------------------
    # Listeners
    # ----------------------------

    def register_listener(self, listener: Callable[[Event], None]) -> int:
        return self._bus.subscribe(listener)

    def unregister_listener(self, listener_id: int) -> None:
        self._bus.unsubscribe(listener_id)

    # ----------------------------
    # Helpers
    # ----------------------------

    def _handle_of(self, playlist_id: int) -> Hashable:
        return self._ids.to_native_handle(self.get_absolute_playlist_id(playlist_id))

    def _resolve_entry(self, track: TrackDescription) -> tuple[Hashable, Entry]:
        track = self.get_absolute_track_desc(track)
        handle = self._ids.to_native_handle(track.playlist_id)
        return handle, self._cache.get_entry(track)
