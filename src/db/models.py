from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Optional
import sqlite3

from core.models import TAG_FIELDS, PlaylistState, SourceType


@dataclass
class Entry:
    stable_id: int
    playlist_id: int
    position: int
    filename: str
    duration: int       # ms
    rating: float
    source_type: SourceType
    tag_fields: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Entry":
        return Entry(
            stable_id=row["id"],
            playlist_id=row["playlist_id"],
            position=row["position"],
            filename=row["filename"],
            duration=row["duration"] or 0,
            rating=float(row["rating"] or 0.0),
            source_type=SourceType(row["source_type"] or 0),
            tag_fields={k: row[k] for k in TAG_FIELDS if row[k] is not None},
        )

    def fields(self) -> dict[str, Any]:
        out = dict(self.tag_fields)
        out.update(filename=self.filename, duration=self.duration, rating=self.rating)
        return out


@dataclass(frozen=True)
class Playlist:
    stable_id: int
    native_handle: Hashable
    title: str = ""
    entry_count: int = 0
    content_checksum: int = 0
    lock_state: bool = False
    state: PlaylistState = PlaylistState.DISCOVERED


@dataclass
class Config:
    tick_interval_ms: int = 100
    min_update_interval_ms: int = 1000
    log_level: str = "INFO"

    @staticmethod
    def from_row(row: Optional[sqlite3.Row]) -> "Config":
        if row is None:
            return Config()
        return Config(
            tick_interval_ms=int(row["tick_interval_ms"]),
            min_update_interval_ms=int(row["min_update_interval_ms"]),
            log_level=row["log_level"],
        )
