# src/player/capabilities.py
"""
Narrow views of EngineManager.

Collaborators (RPC methods, download/upload handlers...) should ask for the
smallest one that covers what they do, instead of the whole manager.
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from core.models import Event, PlaybackState, SourceType, Status, TrackDescription


@runtime_checkable
class PlaybackControl(Protocol):
    def start_playback(self, track: Optional[TrackDescription] = None) -> None: ...
    def stop_playback(self) -> None: ...
    def pause_playback(self) -> None: ...
    def play_next_track(self) -> None: ...
    def play_previous_track(self) -> None: ...
    def set_status(self, status: Status, value: Any) -> None: ...
    def get_status(self, status: Status) -> Any: ...
    def get_playback_state(self) -> PlaybackState: ...


@runtime_checkable
class PlayQueue(Protocol):
    def enqueue_entry_for_play(self, track: TrackDescription, insert_at_queue_beginning: bool = False) -> None: ...
    def remove_entry_from_play_queue(self, track: TrackDescription) -> None: ...


@runtime_checkable
class PlaylistReader(Protocol):
    def get_playing_playlist(self) -> Optional[int]: ...
    def get_playing_entry(self) -> Optional[int]: ...
    def get_playing_track(self) -> Optional[TrackDescription]: ...
    def get_absolute_playlist_id(self, playlist_id: int) -> int: ...
    def get_absolute_entry_id(self, entry_id: int) -> int: ...
    def get_absolute_track_desc(self, track: TrackDescription) -> TrackDescription: ...
    def get_playlist_crc32(self, playlist_id: int) -> int: ...
    def get_track_source_type(self, track: TrackDescription) -> SourceType: ...
    def get_entry_filename(self, track: TrackDescription) -> str: ...
    def get_formatted_entry_title(self, track: TrackDescription, format_string: str) -> str: ...


@runtime_checkable
class CoverArtProvider(Protocol):
    def is_cover_image_file_exist(self, track: TrackDescription) -> Optional[str]: ...
    def save_cover_to_file(self, track: TrackDescription, filename: str, cover_width: int = 0, cover_height: int = 0) -> None: ...


@runtime_checkable
class PlaylistEditor(Protocol):
    def add_file_to_playlist(self, path: str, playlist_id: int) -> None: ...
    def add_url_to_playlist(self, url: str, playlist_id: int) -> None: ...
    def remove_track(self, track: TrackDescription, physically: bool = False) -> None: ...
    def create_playlist(self, title: str) -> int: ...


@runtime_checkable
class EntryRatingManager(Protocol):
    def track_rating(self, track: TrackDescription) -> float: ...
    def set_track_rating(self, track: TrackDescription, rating: float) -> None: ...


@runtime_checkable
class PlaylistUpdateManager(Protocol):
    def lock_playlist(self, playlist_id: int) -> None: ...
    def unlock_playlist(self, playlist_id: int) -> None: ...


@runtime_checkable
class SupportedFormatsGetter(Protocol):
    def supported_track_extensions(self) -> str: ...


@runtime_checkable
class EventSource(Protocol):
    def register_listener(self, listener: Callable[[Event], None]) -> int: ...
    def unregister_listener(self, listener_id: int) -> None: ...
