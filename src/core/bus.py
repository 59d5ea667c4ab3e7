# core/bus.py
from __future__ import annotations

import itertools
import logging
from typing import Callable

from core.dispatch import Dispatcher
from core.errors import InvalidArgument
from core.models import Event

logger = logging.getLogger(__name__)

Listener = Callable[[Event], None]


class ListenerBus:
    """
    Registry of external subscribers.

    publish() only queues the event; delivery happens on the dispatch
    context, in registration order. Membership is checked right before each
    call, so a listener removed after the event was queued never sees it.
    """

    def __init__(self, dispatcher: Dispatcher):
        self._dispatcher = dispatcher
        self._listeners: dict[int, Listener] = {}
        self._ids = itertools.count(1)

    def subscribe(self, callback: Listener) -> int:
        listener_id = next(self._ids)
        self._listeners[listener_id] = callback
        return listener_id

    def unsubscribe(self, listener_id: int) -> None:
        if self._listeners.pop(listener_id, None) is None:
            raise InvalidArgument(f"Unknown listener id {listener_id}")

    def publish(self, event: Event) -> None:
        self._dispatcher.post(lambda: self._deliver(event))

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def _deliver(self, event: Event) -> None:
        for listener_id in list(self._listeners):
            callback = self._listeners.get(listener_id)
            if callback is None:
                continue
            try:
                callback(event)
            except Exception:
                # Never let a bad listener break delivery to the rest.
                logger.exception("Listener %d failed on %s", listener_id, event.type.name)
