from __future__ import annotations

import logging
import os
import sqlite3
import time
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Optional

from PySide6.QtCore import QCoreApplication, QStandardPaths

from core.errors import ControlError, PersistenceError
from db import database
from db.migrations import connect, initialize_database
from db.models import Config
from player.manager import EngineManager
from plugin.tick import QtTickDriver

logger = logging.getLogger(__name__)

LOG_FILENAME = "mediactl.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_app_data_dir() -> str:
    base = QStandardPaths.writableLocation(QStandardPaths.AppDataLocation)
    os.makedirs(base, exist_ok=True)
    return base


def setup_logging(work_dir: str, level: str = "INFO") -> logging.Handler:
    """Attach a rotating file handler for the whole process; returns it for removal."""
    handler = RotatingFileHandler(
        os.path.join(work_dir, LOG_FILENAME),
        maxBytes=5 * 1024 * 1024,
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    root = logging.getLogger()
    root.addHandler(handler)
    if root.level == logging.NOTSET or root.level > handler.level:
        root.setLevel(handler.level)
    return handler


def load_config(work_dir: str) -> Config:
    try:
        db = connect(initialize_database(work_dir))
        try:
            return database.get_config(db)
        finally:
            db.close()
    except (sqlite3.Error, OSError) as e:
        raise PersistenceError(f"Cannot read configuration in {work_dir}: {e}") from e


class PluginContext:
    """
    The single owned object behind the plugin: one per process, handed to
    collaborators by reference. Nothing works before initialize() and
    nothing after finalize().
    """

    def __init__(self, sdk: Any, work_dir: Optional[str] = None, clock: Callable[[], float] = time.monotonic):
        self.sdk = sdk
        self.work_dir = work_dir
        self.clock = clock
        self.config = Config()
        self.manager: Optional[EngineManager] = None
        self.tick_driver: Optional[QtTickDriver] = None
        self._log_handler: Optional[logging.Handler] = None

    @property
    def initialized(self) -> bool:
        return self.manager is not None

    def initialize(self) -> EngineManager:
        """Raises PersistenceError if the playlist store cannot be opened."""
        if self.manager is not None:
            return self.manager

        if self.work_dir is None:
            self.work_dir = get_app_data_dir()

        self.config = load_config(self.work_dir)
        self._log_handler = setup_logging(self.work_dir, self.config.log_level)
        logger.info("Initializing in %s", self.work_dir)

        try:
            self.manager = EngineManager(
                self.sdk,
                self.work_dir,
                clock=self.clock,
                min_update_interval_s=self.config.min_update_interval_ms / 1000.0,
            )
        except ControlError:
            logger.exception("Initialization failed")
            self.finalize()
            raise
        logger.info("Engine version %s", self.manager.get_version())

        if QCoreApplication.instance() is not None:
            self.tick_driver = QtTickDriver(self.on_tick, self.config.tick_interval_ms)
            self.tick_driver.start()
        return self.manager

    def finalize(self) -> None:
        if self.tick_driver is not None:
            self.tick_driver.stop()
            self.tick_driver = None
        if self.manager is not None:
            self.manager.close()
            self.manager = None
            logger.info("Finalized")
        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    def on_tick(self) -> None:
        if self.manager is None:
            return
        try:
            pump = getattr(self.sdk, "process_events", None)
            if pump is not None:
                pump()
            self.manager.on_tick()
        except (ControlError, OSError) as e:
            logger.critical("Tick failed: %s", e)
        except Exception:
            logger.exception("Tick crashed")
