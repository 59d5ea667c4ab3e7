import sqlite3
from typing import Any, Iterable, List, Mapping, Optional

from db.models import Config, Entry
from db.schema import ENTRY_COLUMNS

_INSERT_ENTRY_SQL = "INSERT INTO playlist_entries ({}) VALUES ({})".format(
    ", ".join(ENTRY_COLUMNS), ", ".join("?" for _ in ENTRY_COLUMNS)
)

# -------------------------------
# CACHE RESET
# -------------------------------
def clean_cache(db: sqlite3.Connection):
    """Stable IDs only live as long as the process; drop whatever a previous run left."""
    db.execute("DELETE FROM playlist_entries")
    db.execute("DELETE FROM playlists")
    db.commit()

# -------------------------------
# CONFIG
# -------------------------------
def get_config(db: sqlite3.Connection) -> Config:
    row = db.execute("""
        SELECT tick_interval_ms, min_update_interval_ms, log_level
        FROM config_data
        LIMIT 1
    """).fetchone()
    return Config.from_row(row)


def set_config(db: sqlite3.Connection, config: Config):
    db.execute("""
        UPDATE config_data
        SET tick_interval_ms = ?,
            min_update_interval_ms = ?,
            log_level = ?
        WHERE 1
    """, (
        config.tick_interval_ms,
        config.min_update_interval_ms,
        config.log_level,
    ))
    db.commit()

# -------------------------------
# PLAYLISTS
# -------------------------------
def add_playlist(db: sqlite3.Connection, playlist_id: int, title: str):
    db.execute(
        "INSERT OR REPLACE INTO playlists (id, title, crc32) VALUES (?, ?, 0)",
        (playlist_id, title),
    )
    db.commit()


def delete_playlist(db: sqlite3.Connection, playlist_id: int):
    db.execute("DELETE FROM playlists WHERE id = ?", (playlist_id,))
    db.commit()


def delete_playlist_entries(db: sqlite3.Connection, playlist_id: int):
    db.execute("DELETE FROM playlist_entries WHERE playlist_id = ?", (playlist_id,))
    db.commit()


def replace_playlist_entries(
    db: sqlite3.Connection,
    playlist_id: int,
    title: str,
    crc32: int,
    rows: Iterable[Mapping[str, Any]],
):
    """
    Swap the whole content of one playlist in a single transaction.
    Other connections see either the old rows or the new ones.
    """
    with db:
        db.execute("DELETE FROM playlist_entries WHERE playlist_id = ?", (playlist_id,))
        db.executemany(
            _INSERT_ENTRY_SQL,
            [tuple(row.get(col) for col in ENTRY_COLUMNS) for row in rows],
        )
        db.execute(
            "INSERT OR REPLACE INTO playlists (id, title, crc32) VALUES (?, ?, ?)",
            (playlist_id, title, crc32),
        )

# -------------------------------
# ENTRIES
# -------------------------------
def get_entry(db: sqlite3.Connection, playlist_id: int, entry_id: int) -> Optional[Entry]:
    row = db.execute(
        "SELECT * FROM playlist_entries WHERE id = ? AND playlist_id = ? LIMIT 1",
        (entry_id, playlist_id),
    ).fetchone()
    return None if row is None else Entry.from_row(row)


def get_entries(db: sqlite3.Connection, playlist_id: int) -> List[Entry]:
    cursor = db.execute(
        "SELECT * FROM playlist_entries WHERE playlist_id = ? ORDER BY position ASC",
        (playlist_id,),
    )
    return [Entry.from_row(row) for row in cursor.fetchall()]


def get_entry_field(db: sqlite3.Connection, playlist_id: int, entry_id: int, column: str) -> Optional[sqlite3.Row]:
    # `column` must come from ENTRY_COLUMNS; it is interpolated.
    return db.execute(
        f"SELECT {column} AS value FROM playlist_entries WHERE id = ? AND playlist_id = ? LIMIT 1",
        (entry_id, playlist_id),
    ).fetchone()


def get_entry_id_at(db: sqlite3.Connection, playlist_id: int, position: int) -> Optional[int]:
    row = db.execute(
        "SELECT id FROM playlist_entries WHERE playlist_id = ? AND position = ? LIMIT 1",
        (playlist_id, position),
    ).fetchone()
    return None if row is None else row["id"]


def update_entry_rating(db: sqlite3.Connection, entry_id: int, rating: float):
    db.execute("UPDATE playlist_entries SET rating = ? WHERE id = ?", (rating, entry_id))
    db.commit()

# -------------------------------
# RATINGS (engines without native rating)
# -------------------------------
def get_stored_rating(db: sqlite3.Connection, filename: str) -> Optional[float]:
    row = db.execute("SELECT rating FROM ratings WHERE filename = ?", (filename,)).fetchone()
    return None if row is None else float(row["rating"])


def set_stored_rating(db: sqlite3.Connection, filename: str, rating: float):
    db.execute(
        "INSERT OR REPLACE INTO ratings (filename, rating) VALUES (?, ?)",
        (filename, rating),
    )
    db.commit()
