# src/player/sdk.py
"""
Shapes of the native engine SDKs the control layer can sit on.

Two generations exist and they do not agree on much:

  * Generation 2 (LegacySdk): a flat call surface. Every call returns an
    integer status code (0 = success); calls with output return a
    (code, value) tuple. Change notifications arrive through one message
    callback. No ratings, no edit lock, no title formatter.

  * Generation 3 (ModernSdk): object-style calls that raise
    NativeCallError on failure, with a listener object for storage
    notifications, native ratings, edit locking and title formatting.

Engines report a numeric version id; ids below 3000 are generation 2.
"""
from __future__ import annotations

from enum import IntEnum
from typing import Any, Callable, Hashable, Optional, Protocol

from core.models import Status

GENERATION_3_MIN_VERSION = 3000

S_OK = 0
E_FAIL = -1


class NativeCallError(Exception):
    """Raised by generation 3 engines when a call fails."""

    def __init__(self, code: int = E_FAIL, message: str = ""):
        super().__init__(message or f"native call failed with code {code}")
        self.code = code


# ----------------------------
# Generation 2
# ----------------------------

class LegacyCommand(IntEnum):
    PLAY = 1
    PAUSE = 2
    STOP = 3
    NEXT = 4
    PREV = 5


class LegacyMessage(IntEnum):
    STORAGE_ACTIVATED = 1
    STORAGE_ADDED = 2
    STORAGE_CHANGED = 3     # no flags: any change at all
    STORAGE_REMOVED = 4


# Generation 2 addresses status values by small integer ids and only speaks ints.
LEGACY_STATUS_IDS = {
    Status.VOLUME: 1,
    Status.BALANCE: 2,
    Status.SPEED: 3,
    Status.PLAYER: 4,
    Status.MUTE: 5,
    Status.REPEAT: 29,
    Status.POS: 31,
    Status.LENGTH: 32,
    Status.KBPS: 35,
    Status.KHZ: 36,
    Status.RADIO_CAPTURE: 40,
    Status.SHUFFLE: 41,
}


class LegacySdk(Protocol):
    def version_id(self) -> int: ...
    def playlist_handles(self) -> list[int]: ...
    def playlist_title(self, handle: int) -> tuple[int, str]: ...
    def entry_count(self, handle: int) -> tuple[int, int]: ...
    # entry dict keys: filename, duration_ms, source ("file"/"url"/"radio"), tag names
    def entry_info(self, handle: int, index: int) -> tuple[int, dict[str, Any]]: ...
    def command(self, cmd: LegacyCommand) -> int: ...
    def play_entry(self, handle: int, index: int) -> int: ...
    def status_get(self, status_id: int) -> tuple[int, int]: ...
    def status_set(self, status_id: int, value: int) -> int: ...
    def playing_playlist(self) -> int: ...        # 0 if nothing is playing
    def playing_index(self) -> int: ...           # -1 if nothing is playing
    def queue_entry(self, handle: int, index: int, at_beginning: bool) -> int: ...
    def unqueue_entry(self, handle: int, index: int) -> int: ...
    def add_files(self, handle: int, paths: list[str]) -> int: ...
    def add_url(self, handle: int, url: str) -> int: ...
    def delete_entry(self, handle: int, index: int) -> int: ...
    def new_playlist(self, title: str) -> tuple[int, int]: ...
    def formats(self) -> str: ...                 # "*.mp3;*.ogg;..."
    def cover(self, handle: int, index: int) -> tuple[int, Optional[str], Optional[bytes]]: ...
    def set_message_hook(self, hook: Optional[Callable[[int, int], None]]) -> None: ...


# ----------------------------
# Generation 3
# ----------------------------

class StorageListener(Protocol):
    def on_storage_activated(self, handle: Hashable) -> None: ...
    def on_storage_added(self, handle: Hashable) -> None: ...
    def on_storage_changed(self, handle: Hashable, flags: int) -> None: ...
    def on_storage_removed(self, handle: Hashable) -> None: ...


class ModernSdk(Protocol):
    def version_id(self) -> int: ...
    def version_string(self) -> str: ...
    def playlist_handles(self) -> list[Hashable]: ...
    def is_alive(self, handle: Hashable) -> bool: ...
    # returns (title, [entry dict, ...]); entry dicts as for LegacySdk plus "rating"
    def read_playlist(self, handle: Hashable) -> tuple[str, list[dict[str, Any]]]: ...
    def play(self) -> None: ...
    def play_entry(self, handle: Hashable, index: int) -> None: ...
    def stop(self) -> None: ...
    def pause(self) -> None: ...
    def next(self) -> None: ...
    def previous(self) -> None: ...
    def get_status(self, name: str) -> Any: ...
    def set_status(self, name: str, value: Any) -> None: ...
    def playing_playlist(self) -> Optional[Hashable]: ...
    def playing_index(self) -> Optional[int]: ...
    def queue(self, handle: Hashable, index: int, at_beginning: bool) -> None: ...
    def unqueue(self, handle: Hashable, index: int) -> None: ...
    def add_file(self, handle: Hashable, path: str) -> None: ...
    def add_url(self, handle: Hashable, url: str) -> None: ...
    def remove_entry(self, handle: Hashable, index: int, physically: bool) -> None: ...
    def create_playlist(self, title: str) -> Hashable: ...
    def set_rating(self, handle: Hashable, index: int, rating: float) -> None: ...
    def lock(self, handle: Hashable) -> None: ...
    def unlock(self, handle: Hashable) -> None: ...
    def supported_extensions(self) -> list[str]: ...
    def format_title(self, handle: Hashable, index: int, format_string: str) -> str: ...
    def cover(self, handle: Hashable, index: int) -> tuple[Optional[str], Optional[bytes]]: ...
    def set_listener(self, listener: Optional[StorageListener]) -> None: ...
