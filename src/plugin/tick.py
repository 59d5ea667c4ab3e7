from __future__ import annotations
from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer


class QtTickDriver(QObject):
    """Calls `on_tick` from the Qt event loop every `interval_ms`."""

    def __init__(self, on_tick: Callable[[], None], interval_ms: int = 100, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._on_tick = on_tick
        self._timer = QTimer(self)
        self._timer.setInterval(int(interval_ms))
        self._timer.timeout.connect(self._tick)

    def start(self):
        self._timer.start()

    def stop(self):
        self._timer.stop()

    def is_active(self) -> bool:
        return self._timer.isActive()

    def interval_ms(self) -> int:
        return self._timer.interval()

    def _tick(self):
        self._on_tick()
