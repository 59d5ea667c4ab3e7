# core/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag, auto
from typing import Any, Optional

# Sentinel for "the currently playing playlist/entry".
CURRENT = -1


class PlaybackState(IntEnum):
    STOPPED = 0
    PLAYING = 1
    PAUSED = 2


class SourceType(IntEnum):
    FILE = 0
    URL = 1
    RADIO = 2


class Status(Enum):
    VOLUME = auto()         # 0..100
    BALANCE = auto()        # -100..100
    SPEED = auto()          # percent, 100 = normal
    PLAYER = auto()         # PlaybackState
    MUTE = auto()
    REPEAT = auto()
    SHUFFLE = auto()
    RADIO_CAPTURE = auto()
    POS = auto()            # seconds
    LENGTH = auto()         # seconds, read only
    KBPS = auto()           # read only
    KHZ = auto()            # read only


class PlaylistState(Enum):
    DISCOVERED = auto()
    LOADING = auto()
    READY = auto()
    STALE = auto()
    RELOADING = auto()
    REMOVED = auto()


class ChangeFlags(IntFlag):
    NONE = 0
    NAME = 1
    SELECTION = 2
    PLAYING_SWITCH = 4
    FOCUS = 8
    CONTENT = 16
    ENTRY_INFO = 32
    STATISTICS = 64
    PLAYABLE = 128
    READ_ONLY = 256


# Flags that make cached playlist data out of date. Selection/focus changes do not.
RELOAD_FLAGS = ChangeFlags.NAME | ChangeFlags.CONTENT | ChangeFlags.ENTRY_INFO | ChangeFlags.STATISTICS


class EventType(Enum):
    PLAYLIST_ACTIVATED = auto()
    PLAYLIST_ADDED = auto()
    PLAYLIST_CHANGED = auto()
    PLAYLIST_REMOVED = auto()
    PLAYLISTS_CONTENT_CHANGED = auto()
    TRACK_CHANGED = auto()
    PLAYER_STATE_CHANGED = auto()
    STATUS_CHANGED = auto()


@dataclass(frozen=True)
class Event:
    type: EventType
    playlist_id: Optional[int] = None
    flags: ChangeFlags = ChangeFlags.NONE
    status: Optional[Status] = None
    value: Any = None


@dataclass(frozen=True)
class TrackDescription:
    playlist_id: int
    entry_id: int


# Tag columns cached for every entry, besides the fixed ones.
TAG_FIELDS = ("title", "artist", "album", "date", "genre", "bitrate", "channels", "samplerate", "filesize")


@dataclass
class NativeEntry:
    """One entry as read from the engine, before it gets a stable ID."""
    filename: str
    duration_ms: int = 0
    rating: Optional[float] = None      # None: engine keeps no rating for it
    source_type: SourceType = SourceType.FILE
    tags: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlaylistSnapshot:
    title: str
    entries: list[NativeEntry]
