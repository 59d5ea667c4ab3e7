from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from mutagen import File as MutagenFile
from mutagen import MutagenError
from mutagen.flac import FLAC
from mutagen.id3 import ID3, ID3NoHeaderError
from mutagen.mp4 import MP4, MP4Cover

logger = logging.getLogger(__name__)

AUDIO_EXTS = {".mp3", ".m4a", ".flac", ".ogg", ".opus", ".wav"}

# Looked up next to the audio file, in this order.
FOLDER_COVER_NAMES = ("cover", "folder", "front", "album")
FOLDER_COVER_EXTS = (".jpg", ".jpeg", ".png")


def iter_audio_paths(directories: list[str]) -> list[str]:
    paths: list[str] = []
    for root in directories:
        if not root or not os.path.isdir(root):
            continue
        for dirpath, _, filenames in os.walk(root):
            for fn in sorted(filenames):
                ext = os.path.splitext(fn)[1].lower()
                if ext in AUDIO_EXTS:
                    paths.append(os.path.join(dirpath, fn))
    return paths


def _first(easy, key: str) -> str | None:
    v = easy.get(key)
    if not v:
        return None
    if isinstance(v, list):
        return (str(v[0]).strip() if v else None) or None
    s = str(v).strip()
    return s or None


def read_track_info(path: str) -> dict[str, Any]:
    """
    Entry data for one local file, in the shape the engine reports it:
    filename, duration_ms, source and the tag fields. Unreadable files
    still give an entry (title from the file name, no tags).
    """
    info: dict[str, Any] = {
        "filename": path,
        "source": "file",
        "duration_ms": 0,
        "title": os.path.splitext(os.path.basename(path))[0],
    }
    try:
        info["filesize"] = os.path.getsize(path)
    except OSError:
        info["filesize"] = 0

    try:
        audio = MutagenFile(path, easy=True)
    except (MutagenError, OSError) as e:
        logger.warning("Cannot read tags from %s: %s", path, e)
        return info
    if audio is None:
        return info

    for key in ("title", "artist", "album", "date", "genre"):
        value = _first(audio, key)
        if value:
            info[key] = value

    stream = getattr(audio, "info", None)
    if stream is not None:
        length = getattr(stream, "length", None) or 0.0
        info["duration_ms"] = int(float(length) * 1000)
        bitrate = getattr(stream, "bitrate", None)
        if bitrate:
            info["bitrate"] = int(bitrate) // 1000
        channels = getattr(stream, "channels", None)
        if channels:
            info["channels"] = int(channels)
        sample_rate = getattr(stream, "sample_rate", None)
        if sample_rate:
            info["samplerate"] = int(sample_rate)
    return info


def read_embedded_cover(path: str) -> Optional[bytes]:
    """
    First embedded picture of an audio file, as stored.

      - MP3: first ID3 APIC frame
      - FLAC: first METADATA_BLOCK_PICTURE
      - MP4/M4A: first 'covr' atom
    """
    ext = Path(path).suffix.lower()
    try:
        if ext == ".mp3":
            try:
                tags = ID3(path)
            except ID3NoHeaderError:
                return None
            frames = tags.getall("APIC")
            return bytes(frames[0].data) if frames else None

        if ext == ".flac":
            pictures = FLAC(path).pictures
            return bytes(pictures[0].data) if pictures else None

        if ext in {".m4a", ".mp4"}:
            covers = MP4(path).get("covr")
            if covers and isinstance(covers[0], (MP4Cover, bytes)):
                return bytes(covers[0])
            return None
    except (MutagenError, OSError) as e:
        logger.warning("Cannot read embedded cover from %s: %s", path, e)
    return None


def find_folder_cover(path: str) -> Optional[str]:
    folder = os.path.dirname(path)
    if not folder or not os.path.isdir(folder):
        return None
    for name in FOLDER_COVER_NAMES:
        for ext in FOLDER_COVER_EXTS:
            candidate = os.path.join(folder, name + ext)
            if os.path.isfile(candidate):
                return candidate
    return None
