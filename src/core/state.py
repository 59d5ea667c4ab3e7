from __future__ import annotations
from typing import Optional

from PySide6.QtCore import QObject, Signal

from core.models import Event, EventType
from player.capabilities import EventSource


class QtEventBridge(QObject):
    """Re-emits ListenerBus events as Qt signals for Qt hosts."""

    received = Signal(object)           # every Event
    playlist_changed = Signal(int)      # playlist id (added/changed/removed)
    track_changed = Signal(object)      # TrackDescription or None
    state_changed = Signal(object)      # PlaybackState
    status_changed = Signal(object, object)  # Status, value

    def __init__(self, events: EventSource, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._events = events
        self._listener_id: Optional[int] = events.register_listener(self._on_event)

    def detach(self):
        if self._listener_id is not None:
            self._events.unregister_listener(self._listener_id)
            self._listener_id = None

    def _on_event(self, event: Event):
        self.received.emit(event)
        if event.type in (EventType.PLAYLIST_ADDED, EventType.PLAYLIST_CHANGED, EventType.PLAYLIST_REMOVED):
            self.playlist_changed.emit(event.playlist_id)
        elif event.type == EventType.TRACK_CHANGED:
            self.track_changed.emit(event.value)
        elif event.type == EventType.PLAYER_STATE_CHANGED:
            self.state_changed.emit(event.value)
        elif event.type == EventType.STATUS_CHANGED:
            self.status_changed.emit(event.status, event.value)
