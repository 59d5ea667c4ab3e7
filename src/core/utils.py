import re
import zlib
from typing import Any, Iterable, Mapping

# %-codes understood by format_entry_title(), mapped to entry fields.
TITLE_FORMAT_FIELDS = {
    "a": "artist",
    "A": "album",
    "T": "title",
    "F": "filename",
    "G": "genre",
    "Y": "date",
    "L": "duration",
    "B": "bitrate",
    "H": "samplerate",
}

_FORMAT_TOKEN = re.compile(r"%(.)")


def format_duration(ms: int) -> str:
    """Milliseconds as m:ss (or h:mm:ss for long tracks)."""
    total = max(0, int(ms or 0)) // 1000
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def format_entry_title(fields: Mapping[str, Any], format_string: str) -> str:
    """
    Expand %-codes in `format_string` with values of one entry.
    Unknown codes are copied verbatim; "%%" is a literal percent sign.
    """
    def repl(m: re.Match) -> str:
        code = m.group(1)
        if code == "%":
            return "%"
        name = TITLE_FORMAT_FIELDS.get(code)
        if name is None:
            return m.group(0)
        value = fields.get(name)
        if name == "duration":
            return format_duration(value or 0)
        return "" if value is None else str(value)

    return _FORMAT_TOKEN.sub(repl, format_string)


def playlist_checksum(title: str, entries: Iterable[Mapping[str, Any]]) -> int:
    """
    CRC32 fingerprint of a playlist title and its entries, in order.
    Equal input gives an equal value; any field change gives a new one.
    """
    crc = zlib.crc32((title or "").encode("utf-8"))
    for entry in entries:
        parts = [f"{key}={entry[key]!r}" for key in sorted(entry)]
        crc = zlib.crc32(("\x1f".join(parts) + "\x1e").encode("utf-8"), crc)
    return crc & 0xFFFFFFFF
