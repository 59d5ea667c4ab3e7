from __future__ import annotations

SCHEMA_V1_SQL = """
CREATE TABLE playlists (
    id INTEGER PRIMARY KEY,
    title TEXT,
    crc32 INTEGER
);

CREATE TABLE playlist_entries (
    id INTEGER PRIMARY KEY,
    playlist_id INTEGER,
    position INTEGER,
    filename TEXT,
    duration INTEGER,
    rating REAL,
    source_type INTEGER,
    title TEXT,
    artist TEXT,
    album TEXT,
    date TEXT,
    genre TEXT,
    bitrate INTEGER,
    channels INTEGER,
    samplerate INTEGER,
    filesize INTEGER,
    FOREIGN KEY(playlist_id) REFERENCES playlists(id)
);

CREATE INDEX idx_playlist_entries_playlist_id ON playlist_entries(playlist_id, position);
"""

# Engines without native rating support keep ratings here, keyed by file.
SCHEMA_V2_SQL = """
CREATE TABLE ratings (
    filename TEXT PRIMARY KEY,
    rating REAL
);
"""

SCHEMA_V3_SQL = """
CREATE TABLE config_data (
    id INTEGER PRIMARY KEY,
    tick_interval_ms INTEGER DEFAULT 100,
    min_update_interval_ms INTEGER DEFAULT 1000,
    log_level TEXT DEFAULT 'INFO'
);

INSERT INTO config_data (tick_interval_ms, min_update_interval_ms, log_level) VALUES (100, 1000, 'INFO');
"""

# Columns a caller may read through the typed field accessors.
ENTRY_COLUMNS = (
    "id", "playlist_id", "position", "filename", "duration", "rating", "source_type",
    "title", "artist", "album", "date", "genre",
    "bitrate", "channels", "samplerate", "filesize",
)
