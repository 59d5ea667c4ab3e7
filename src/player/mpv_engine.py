# src/player/mpv_engine.py
from __future__ import annotations

import itertools
import logging
import os
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from core.models import ChangeFlags, PlaybackState
from core.utils import format_entry_title
from library.streams import StreamProbe
from library.tags import AUDIO_EXTS, find_folder_cover, read_embedded_cover, read_track_info
from player.mpv_ipc import MpvClient
from player.sdk import NativeCallError, StorageListener

logger = logging.getLogger(__name__)

MPV_ENGINE_VERSION_ID = 3100

E_INVALIDARG = -2
E_ACCESSDENIED = -3
E_NOTFOUND = -4


@dataclass
class Storage:
    handle: int
    title: str
    entries: list[dict[str, Any]] = field(default_factory=list)
    locked: bool = False
    held_flags: int = 0  # notifications held back while locked


class MpvSdk:
    """
    A generation 3 engine backed by an idle mpv process.

    Playlists ("storages") live in this process. When one is played, its
    entries are loaded into mpv's internal playlist; mpv's playlist-pos then
    tells which entry is playing. Any thread may call in; storage
    notifications are raised on the calling thread.
    """

    def __init__(self, client: MpvClient, probe: Optional[StreamProbe] = None):
        self.client = client
        self.probe = probe or StreamProbe()
        self._lock = threading.RLock()
        self._storages: dict[int, Storage] = {}
        self._handles = itertools.count(1)
        self._listener: Optional[StorageListener] = None
        self._active: Optional[int] = None
        self._playing: Optional[int] = None
        self._queue: list[tuple[int, int]] = []
        self._balance = 0
        self._radio_capture = False
        self._shuffle = False  # picked here; mpv keeps storage order
        self._random = random.Random()

        self.client.on_event("end-file", self._on_end_file)

    def start(self) -> None:
        self.client.start()
        self.client.properties["mpv-version"] = self.client.get_property("mpv-version")

    def shutdown(self) -> None:
        self.client.stop()
        self.probe.close()

    def process_events(self) -> None:
        """Pump mpv replies and events; call from the host's tick."""
        self.client.process_messages()

    # ---- identity ----

    def version_id(self) -> int:
        return MPV_ENGINE_VERSION_ID

    def version_string(self) -> str:
        mpv_version = self.client.value("mpv-version")
        return f"3.10.0 ({mpv_version})" if mpv_version else ""

    def set_listener(self, listener: Optional[StorageListener]) -> None:
        self._listener = listener

    # ---- storages ----

    def playlist_handles(self) -> list[int]:
        with self._lock:
            return list(self._storages)

    def is_alive(self, handle: Any) -> bool:
        with self._lock:
            return handle in self._storages

    def read_playlist(self, handle: Any) -> tuple[str, list[dict[str, Any]]]:
        with self._lock:
            storage = self._storage(handle)
            return storage.title, [dict(e) for e in storage.entries]

    def create_playlist(self, title: str) -> int:
        with self._lock:
            handle = next(self._handles)
            self._storages[handle] = Storage(handle=handle, title=title)
            if self._active is None:
                self._active = handle
        logger.info("Playlist storage %d created: %s", handle, title)
        if self._listener is not None:
            self._listener.on_storage_added(handle)
        return handle

    def delete_playlist(self, handle: Any) -> None:
        with self._lock:
            self._storage(handle)
            del self._storages[handle]
            self._queue = [q for q in self._queue if q[0] != handle]
            if self._active == handle:
                self._active = next(iter(self._storages), None)
            was_playing = self._playing == handle
            if was_playing:
                self._playing = None
        if was_playing:
            self.client.stop_playback()
        if self._listener is not None:
            self._listener.on_storage_removed(handle)

    def activate(self, handle: Any) -> None:
        with self._lock:
            self._storage(handle)
            self._active = handle
        if self._listener is not None:
            self._listener.on_storage_activated(handle)

    def rename_playlist(self, handle: Any, title: str) -> None:
        with self._lock:
            self._storage(handle).title = title
        self._changed(handle, ChangeFlags.NAME)

    # ---- playback ----

    def play(self) -> None:
        with self._lock:
            playing, active = self._playing, self._active
        if playing is not None:
            self.client.set_property("pause", False)
        elif active is not None:
            self.play_entry(active, 0)

    def play_entry(self, handle: Any, index: int) -> None:
        with self._lock:
            storage = self._storage(handle)
            self._entry(storage, index)
            paths = [e["filename"] for e in storage.entries]
            switch = self._playing != handle
            self._playing = handle
        if switch:
            self.client.load_files(paths, start_index=index)
        else:
            self.client.play_index(index)

    def stop(self) -> None:
        with self._lock:
            self._playing = None
        self.client.stop_playback()

    def pause(self) -> None:
        self.client.set_property("pause", not self.client.value("pause", False))

    def next(self) -> None:
        if not self._play_queued() and not self._play_shuffled():
            self.client.next()

    def previous(self) -> None:
        self.client.previous()

    def playing_playlist(self) -> Optional[int]:
        with self._lock:
            if self._playing is None or self.client.value("idle-active", False):
                return None
            return self._playing

    def playing_index(self) -> Optional[int]:
        if self.playing_playlist() is None:
            return None
        pos = self.client.value("playlist-pos", -1)
        return pos if pos >= 0 else None

    # ---- status ----

    def get_status(self, name: str) -> Any:
        c = self.client
        if name == "player":
            if self.playing_playlist() is None:
                return PlaybackState.STOPPED
            return PlaybackState.PAUSED if c.value("pause", False) else PlaybackState.PLAYING
        if name == "volume":
            return int(round(float(c.value("volume", 100))))
        if name == "mute":
            return bool(c.value("mute", False))
        if name == "speed":
            return int(round(float(c.value("speed", 1.0)) * 100))
        if name == "repeat":
            return c.value("loop-playlist", "no") not in ("no", False)
        if name == "shuffle":
            return self._shuffle
        if name == "balance":
            return self._balance
        if name == "radio_capture":
            return self._radio_capture
        if name == "pos":
            return int(float(c.value("time-pos", 0.0)))
        if name == "length":
            return int(float(c.value("duration", 0.0)))
        if name == "kbps":
            return int(c.value("audio-bitrate", 0)) // 1000
        if name == "khz":
            return int(c.value("audio-params/samplerate", 0)) // 1000
        raise NativeCallError(E_INVALIDARG, f"unknown status {name!r}")

    def set_status(self, name: str, value: Any) -> None:
        c = self.client
        if name == "volume":
            c.set_property("volume", int(value))
        elif name == "mute":
            c.set_property("mute", bool(value))
        elif name == "speed":
            c.set_property("speed", int(value) / 100.0)
        elif name == "repeat":
            c.set_property("loop-playlist", "inf" if value else "no")
        elif name == "shuffle":
            self._shuffle = bool(value)
        elif name == "balance":
            self._balance = int(value)
            # mpv has no balance property; pan the stereo channels instead
            left = min(1.0, 1.0 - self._balance / 100.0)
            right = min(1.0, 1.0 + self._balance / 100.0)
            c.set_property("af", f"lavfi=[pan=stereo|c0={left:.2f}*c0|c1={right:.2f}*c1]" if self._balance else "")
        elif name == "radio_capture":
            self._radio_capture = bool(value)
        elif name == "pos":
            c.seek_seconds(float(value))
        else:
            raise NativeCallError(E_INVALIDARG, f"status {name!r} cannot be set")

    # ---- queue ----

    def queue(self, handle: Any, index: int, at_beginning: bool) -> None:
        with self._lock:
            self._entry(self._storage(handle), index)
            item = (handle, index)
            if item in self._queue:
                self._queue.remove(item)
            if at_beginning:
                self._queue.insert(0, item)
            else:
                self._queue.append(item)

    def unqueue(self, handle: Any, index: int) -> None:
        with self._lock:
            try:
                self._queue.remove((handle, index))
            except ValueError:
                raise NativeCallError(E_NOTFOUND, f"entry {index} of {handle} is not queued")

    def _play_queued(self) -> bool:
        with self._lock:
            if not self._queue:
                return False
            handle, index = self._queue.pop(0)
            if handle not in self._storages:
                return False
        self.play_entry(handle, index)
        return True

    def _play_shuffled(self) -> bool:
        """Jump to a random other entry of the playing storage."""
        with self._lock:
            if not self._shuffle or self._playing is None:
                return False
            handle = self._playing
            count = len(self._storages[handle].entries)
        current = self.client.value("playlist-pos", -1)
        choices = [i for i in range(count) if i != current]
        if not choices:
            return False
        self.play_entry(handle, self._random.choice(choices))
        return True

    def _on_end_file(self, msg: dict[str, Any]) -> None:
        if msg.get("reason") == "eof":
            if not self._play_queued():
                self._play_shuffled()

    # ---- edits ----

    def add_file(self, handle: Any, path: str) -> None:
        if not os.path.isfile(path):
            raise NativeCallError(E_NOTFOUND, f"no such file: {path}")
        if os.path.splitext(path)[1].lower() not in AUDIO_EXTS:
            raise NativeCallError(E_INVALIDARG, f"unsupported file type: {path}")
        self._append(handle, read_track_info(path))

    def add_url(self, handle: Any, url: str) -> None:
        self._storage(handle)
        self._append(handle, {"filename": url, "source": self.probe.classify(url), "duration_ms": 0, "title": url})

    def _append(self, handle: Any, entry: dict[str, Any]) -> None:
        entry.setdefault("rating", 0.0)
        with self._lock:
            self._storage(handle).entries.append(entry)
            loaded = self._playing == handle
        if loaded:
            self.client.append_file(entry["filename"])
        self._changed(handle, ChangeFlags.CONTENT)

    def remove_entry(self, handle: Any, index: int, physically: bool) -> None:
        with self._lock:
            storage = self._storage(handle)
            entry = self._entry(storage, index)
            del storage.entries[index]
            self._queue = [(h, i if h != handle or i < index else i - 1)
                           for h, i in self._queue if (h, i) != (handle, index)]
            loaded = self._playing == handle
        if loaded:
            self.client.remove_index(index)
        if physically and entry.get("source") == "file":
            try:
                os.remove(entry["filename"])
            except OSError as e:
                raise NativeCallError(E_ACCESSDENIED, f"cannot delete {entry['filename']}: {e}")
        self._changed(handle, ChangeFlags.CONTENT)

    def set_rating(self, handle: Any, index: int, rating: float) -> None:
        with self._lock:
            self._entry(self._storage(handle), index)["rating"] = float(rating)
        self._changed(handle, ChangeFlags.ENTRY_INFO)

    def lock(self, handle: Any) -> None:
        """Begin a batch update: change notifications are held until unlock()."""
        with self._lock:
            storage = self._storage(handle)
            if storage.locked:
                raise NativeCallError(E_ACCESSDENIED, f"playlist {handle} is already locked")
            storage.locked = True

    def unlock(self, handle: Any) -> None:
        with self._lock:
            storage = self._storage(handle)
            if not storage.locked:
                raise NativeCallError(E_INVALIDARG, f"playlist {handle} is not locked")
            storage.locked = False
            held, storage.held_flags = storage.held_flags, 0
        if held:
            self._changed(handle, ChangeFlags(held))

    # ---- entry info ----

    def supported_extensions(self) -> list[str]:
        return [f"*{ext}" for ext in sorted(AUDIO_EXTS)]

    def format_title(self, handle: Any, index: int, format_string: str) -> str:
        with self._lock:
            entry = dict(self._entry(self._storage(handle), index))
        entry["duration"] = entry.get("duration_ms", 0)
        return format_entry_title(entry, format_string)

    def cover(self, handle: Any, index: int) -> tuple[Optional[str], Optional[bytes]]:
        with self._lock:
            entry = dict(self._entry(self._storage(handle), index))
        if entry.get("source") != "file":
            return None, None
        filename = entry["filename"]
        embedded = read_embedded_cover(filename)
        if embedded:
            return None, embedded
        return find_folder_cover(filename), None

    # ---- helpers ----

    def _storage(self, handle: Any) -> Storage:
        storage = self._storages.get(handle)
        if storage is None:
            raise NativeCallError(E_NOTFOUND, f"no playlist {handle!r}")
        return storage

    @staticmethod
    def _entry(storage: Storage, index: int) -> dict[str, Any]:
        if not 0 <= index < len(storage.entries):
            raise NativeCallError(E_INVALIDARG, f"no entry {index} in playlist {storage.handle}")
        return storage.entries[index]

    def _changed(self, handle: Any, flags: ChangeFlags) -> None:
        with self._lock:
            storage = self._storages.get(handle)
            if storage is not None and storage.locked:
                storage.held_flags |= int(flags)
                return
        if self._listener is not None:
            self._listener.on_storage_changed(handle, int(flags))
