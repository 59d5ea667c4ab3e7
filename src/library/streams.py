from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)

# Shoutcast/Icecast servers answer with these when asked for stream metadata.
ICY_HEADERS = ("icy-name", "icy-metaint", "icy-genre", "icy-br")

PLAYLIST_CONTENT_TYPES = {"audio/x-mpegurl", "audio/mpegurl", "audio/x-scpls", "application/pls+xml"}


class StreamProbe:
    """Tells internet radio apart from plain remote files by asking the server."""

    def __init__(self, user_agent: str = "mediactl/0.1", timeout_s: float = 5.0):
        self.timeout_s = timeout_s
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Icy-MetaData": "1"})

    def classify(self, url: str) -> str:
        """
        "radio" for endless streams, "url" for everything else.
        Network failures are not fatal: the entry is kept as "url".
        """
        scheme = urlparse(url).scheme.lower()
        if scheme in ("icy", "mms", "rtsp", "rtmp"):
            return "radio"
        if scheme not in ("http", "https"):
            return "url"

        try:
            # GET with stream=True: radio servers often reject HEAD.
            with self.session.get(url, stream=True, timeout=self.timeout_s) as r:
                return "radio" if self._looks_like_radio(r.headers) else "url"
        except requests.RequestException as e:
            logger.warning("Probing %s failed, treating as a plain URL: %s", url, e)
            return "url"

    @staticmethod
    def _looks_like_radio(headers) -> bool:
        if any(h in headers for h in ICY_HEADERS):
            return True
        content_type: Optional[str] = headers.get("Content-Type")
        content_type = (content_type or "").split(";")[0].strip().lower()
        if content_type in PLAYLIST_CONTENT_TYPES:
            return True
        # audio without a length never ends
        return content_type.startswith("audio/") and "Content-Length" not in headers

    def close(self) -> None:
        self.session.close()
