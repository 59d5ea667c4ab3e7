from __future__ import annotations

import logging
import os
import sqlite3

from db.schema import SCHEMA_V1_SQL, SCHEMA_V2_SQL, SCHEMA_V3_SQL

logger = logging.getLogger(__name__)

CURRENT_DB_VERSION = 3
DB_FILENAME = "playlists.sqlite3"


def connect(sqlite_path: str) -> sqlite3.Connection:
    db = sqlite3.connect(sqlite_path, timeout=5.0, check_same_thread=False)
    db.row_factory = sqlite3.Row
    return db


def initialize_database(work_dir: str) -> str:
    """Create or upgrade the cache database in `work_dir`; returns its path."""
    os.makedirs(work_dir, exist_ok=True)
    sqlite_path = os.path.join(work_dir, DB_FILENAME)
    logger.info("Playlist database file path: %s", sqlite_path)

    db = connect(sqlite_path)
    try:
        existing_version = int(db.execute("PRAGMA user_version").fetchone()[0])
        upgrade_database_if_needed(db, existing_version)
    finally:
        db.close()

    return sqlite_path


def upgrade_database_if_needed(db: sqlite3.Connection, existing_version: int) -> None:
    logger.info("Existing database version: %d", existing_version)

    if existing_version >= CURRENT_DB_VERSION:
        return

    # v1
    if existing_version <= 0:
        logger.info("Migrate database version 1...")
        db.execute("PRAGMA journal_mode=WAL")
        db.execute("PRAGMA user_version=1")
        db.executescript(SCHEMA_V1_SQL)
        db.commit()

    # v2
    if existing_version <= 1:
        logger.info("Migrate database version 2...")
        db.execute("PRAGMA user_version=2")
        db.executescript(SCHEMA_V2_SQL)
        db.commit()

    # v3
    if existing_version <= 2:
        logger.info("Migrate database version 3...")
        db.execute("PRAGMA user_version=3")
        db.executescript(SCHEMA_V3_SQL)
        db.commit()
