from __future__ import annotations

import dataclasses
import itertools
import logging
import sqlite3
import threading
from typing import Any, Callable, Hashable, Optional, Protocol

from core.errors import InvalidArgument, PersistenceError
from core.ids import IDTranslator
from core.models import TAG_FIELDS, PlaylistSnapshot, PlaylistState, TrackDescription
from core.utils import playlist_checksum
from db import database
from db.migrations import connect, initialize_database
from db.models import Config, Entry, Playlist
from db.schema import ENTRY_COLUMNS

logger = logging.getLogger(__name__)

INT32_MIN, INT32_MAX = -(2 ** 31), 2 ** 31 - 1
INT64_MIN, INT64_MAX = -(2 ** 63), 2 ** 63 - 1


class PlaylistSource(Protocol):
    """What the cache needs from the engine side."""

    def read_playlist(self, handle: Hashable) -> PlaylistSnapshot: ...
    def lock(self, handle: Hashable) -> None: ...
    def unlock(self, handle: Hashable) -> None: ...


class PlaylistCache:
    """
    Persisted store of playlist and entry metadata.

    Mutations run on the dispatch context. Reads may come from any thread:
    every thread gets its own sqlite connection and the database runs in WAL
    mode, so a reader sees either the content before a reload or after it.
    """

    def __init__(self, work_dir: str, source: PlaylistSource, translator: IDTranslator):
        self._source = source
        self._translator = translator
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()
        self._lock = threading.RLock()
        self._playlists: dict[int, Playlist] = {}
        self._reload_again: set[int] = set()
        self._entry_ids = itertools.count(1)

        try:
            self.db_path = initialize_database(work_dir)
            database.clean_cache(self._db())
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open playlist database in {work_dir}: {e}") from e

    # ----------------------------
    # Connections
    # ----------------------------

    def _db(self) -> sqlite3.Connection:
        db = getattr(self._local, "db", None)
        if db is None:
            db = connect(self.db_path)
            self._local.db = db
            with self._conn_lock:
                self._connections.append(db)
        return db

    def close(self) -> None:
        with self._conn_lock:
            for db in self._connections:
                db.close()
            self._connections.clear()
        self._local = threading.local()

    def _query(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(self._db(), *args)
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    # ----------------------------
    # Config
    # ----------------------------

    def get_config(self) -> Config:
        return self._query(database.get_config)

    def set_config(self, config: Config) -> None:
        self._query(database.set_config, config)

    # ----------------------------
    # Playlist lifecycle
    # ----------------------------

    def add_playlist(self, playlist_id: int) -> Playlist:
        handle = self._translator.to_native_handle(playlist_id)
        with self._lock:
            playlist = self._playlists.get(playlist_id)
            if playlist is None:
                playlist = Playlist(stable_id=playlist_id, native_handle=handle)
                self._playlists[playlist_id] = playlist
                self._query(database.add_playlist, playlist_id, "")
            return playlist

    def reload(self, playlist_id: int) -> bool:
        """
        Re-read a playlist from the engine and swap its cached content.

        Returns True if the content checksum changed. A request arriving while
        a reload of the same playlist is running is folded into one extra pass.
        On failure the playlist is left STALE and the error propagates.
        """
        with self._lock:
            playlist = self._get(playlist_id)
            if playlist.state in (PlaylistState.LOADING, PlaylistState.RELOADING):
                self._reload_again.add(playlist_id)
                return False

        changed = False
        while True:
            with self._lock:
                playlist = self._playlists.get(playlist_id)
                if playlist is None:
                    return changed
                first_load = playlist.state == PlaylistState.DISCOVERED
                self._set(playlist_id, state=PlaylistState.LOADING if first_load else PlaylistState.RELOADING)
            try:
                changed = self._reload_once(playlist, first_load) or changed
            except Exception:
                with self._lock:
                    self._reload_again.discard(playlist_id)
                    if playlist_id in self._playlists:
                        self._set(playlist_id, state=PlaylistState.STALE)
                raise
            with self._lock:
                if playlist_id not in self._reload_again:
                    return changed
                self._reload_again.discard(playlist_id)

    def _reload_once(self, playlist: Playlist, first_load: bool) -> bool:
        playlist_id = playlist.stable_id
        snapshot = self._source.read_playlist(playlist.native_handle)

        rows = []
        for position, native in enumerate(snapshot.entries):
            rating = native.rating
            if rating is None:
                rating = self._query(database.get_stored_rating, native.filename) or 0.0
            row: dict[str, Any] = {name: native.tags.get(name) for name in TAG_FIELDS}
            row.update(
                playlist_id=playlist_id,
                position=position,
                filename=native.filename,
                duration=int(native.duration_ms),
                rating=float(rating),
                source_type=int(native.source_type),
            )
            rows.append(row)

        crc = playlist_checksum(snapshot.title, rows)
        if not first_load and crc == playlist.content_checksum:
            # Same content: keep the rows, and with them the entry IDs.
            with self._lock:
                if playlist_id in self._playlists:
                    self._set(playlist_id, state=PlaylistState.READY)
            logger.debug("Playlist %d reloaded, content unchanged", playlist_id)
            return False

        for row in rows:
            row["id"] = next(self._entry_ids)
        with self._lock:
            if playlist_id not in self._playlists:
                return False  # removed while the engine was being read
            self._query(database.replace_playlist_entries, playlist_id, snapshot.title, crc, rows)
            self._set(
                playlist_id,
                title=snapshot.title,
                entry_count=len(rows),
                content_checksum=crc,
                state=PlaylistState.READY,
            )
        logger.info("Playlist %d loaded: %d entries, crc32 %08x", playlist_id, len(rows), crc)
        return True

    def mark_stale(self, playlist_id: int) -> None:
        with self._lock:
            if playlist_id in self._playlists:
                self._set(playlist_id, state=PlaylistState.STALE)

    def remove_entries(self, playlist_id: int) -> None:
        self._query(database.delete_playlist_entries, playlist_id)
        with self._lock:
            if playlist_id in self._playlists:
                self._set(playlist_id, entry_count=0)

    def remove_playlist(self, playlist_id: int) -> None:
        with self._lock:
            playlist = self._playlists.pop(playlist_id, None)
            self._reload_again.discard(playlist_id)
        self._query(database.delete_playlist, playlist_id)
        if playlist is not None:
            logger.info("Playlist %d removed", playlist_id)

    # ----------------------------
    # Edit lock
    # ----------------------------

    def lock(self, playlist_id: int) -> None:
        playlist = self.get_playlist(playlist_id)
        self._source.lock(playlist.native_handle)
        with self._lock:
            self._set(playlist_id, lock_state=True)

    def unlock(self, playlist_id: int) -> None:
        playlist = self.get_playlist(playlist_id)
        self._source.unlock(playlist.native_handle)
        with self._lock:
            self._set(playlist_id, lock_state=False)

    # ----------------------------
    # Reads
    # ----------------------------

    def get_playlist(self, playlist_id: int) -> Playlist:
        with self._lock:
            return self._get(playlist_id)

    def playlists(self) -> list[Playlist]:
        with self._lock:
            return sorted(self._playlists.values(), key=lambda p: p.stable_id)

    def has_playlist(self, playlist_id: int) -> bool:
        return playlist_id in self._playlists

    def get_checksum(self, playlist_id: int) -> int:
        return self.get_playlist(playlist_id).content_checksum

    def get_state(self, playlist_id: int) -> PlaylistState:
        with self._lock:
            playlist = self._playlists.get(playlist_id)
        return PlaylistState.REMOVED if playlist is None else playlist.state

    def entries(self, playlist_id: int) -> list[Entry]:
        self.get_playlist(playlist_id)
        return self._query(database.get_entries, playlist_id)

    def get_entry(self, track: TrackDescription) -> Entry:
        entry = self._query(database.get_entry, track.playlist_id, track.entry_id)
        if entry is None:
            raise InvalidArgument(f"Unknown entry {track.entry_id} in playlist {track.playlist_id}")
        return entry

    def entry_id_at(self, playlist_id: int, position: int) -> Optional[int]:
        return self._query(database.get_entry_id_at, playlist_id, position)

    def get_field(self, track: TrackDescription, field: str) -> Any:
        if field not in ENTRY_COLUMNS:
            raise InvalidArgument(f"Unknown entry field {field!r}")
        row = self._query(database.get_entry_field, track.playlist_id, track.entry_id, field)
        if row is None:
            raise InvalidArgument(f"Unknown entry {track.entry_id} in playlist {track.playlist_id}")
        return row["value"]

    def get_string(self, track: TrackDescription, field: str) -> str:
        value = self.get_field(track, field)
        return "" if value is None else str(value)

    def get_int(self, track: TrackDescription, field: str) -> int:
        return self._as_int(self.get_field(track, field), field, INT32_MIN, INT32_MAX)

    def get_int64(self, track: TrackDescription, field: str) -> int:
        return self._as_int(self.get_field(track, field), field, INT64_MIN, INT64_MAX)

    def get_float(self, track: TrackDescription, field: str) -> float:
        value = self.get_field(track, field)
        try:
            return float(value or 0.0)
        except (TypeError, ValueError):
            raise InvalidArgument(f"Field {field!r} is not numeric: {value!r}")

    # ----------------------------
    # Ratings
    # ----------------------------

    def store_rating(self, track: TrackDescription, rating: float, keep_by_filename: bool) -> None:
        entry = self.get_entry(track)
        if keep_by_filename:
            self._query(database.set_stored_rating, entry.filename, rating)
        self._query(database.update_entry_rating, entry.stable_id, rating)

    # ----------------------------
    # Helpers
    # ----------------------------

    def _get(self, playlist_id: int) -> Playlist:
        playlist = self._playlists.get(playlist_id)
        if playlist is None:
            raise InvalidArgument(f"Unknown playlist id {playlist_id}")
        return playlist

    def _set(self, playlist_id: int, **changes: Any) -> None:
        # Records are immutable; readers holding the old one are unaffected.
        self._playlists[playlist_id] = dataclasses.replace(self._playlists[playlist_id], **changes)

    @staticmethod
    def _as_int(value: Any, field: str, lo: int, hi: int) -> int:
        try:
            number = int(value or 0)
        except (TypeError, ValueError):
            raise InvalidArgument(f"Field {field!r} is not an integer: {value!r}")
        if not lo <= number <= hi:
            raise InvalidArgument(f"Field {field!r} value {number} does not fit")
        return number
