import logging
import requests
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from state import PlayerSample

log = logging.getLogger("bluos")

PLAYING_STATES = ("play", "stream")


@dataclass
class BluOSStatus:
    title: str | None
    artist: str | None
    album: str | None
    album_artist: str | None
    duration: int | None  # seconds
    secs: int | None      # elapsed seconds
    state: str | None     # 'play', 'pause', 'stop', 'stream', ...

    @property
    def is_playing(self) -> bool:
        return self.state in PLAYING_STATES


class BluOSClient:
    """
    Minimal BluOS client that fetches and parses /Status (XML).
    Uses recursive lookup + tag fallbacks: name/title1, artist, album, albumArtist, secs, totlen, state.
    Also serves as the scheduler's position sample source.
    """
    def __init__(self, host: str, port: int = 11000, timeout: int = 5):
        self.base = f"http://{host}:{port}"
        self.timeout = timeout

    def _findtext_any(self, root: ET.Element, *tags: str):
        for t in tags:
            el = root.find(f".//{t}")
            if el is not None and el.text:
                return el.text.strip()
        return None

    def _to_int(self, s):
        if s is None: return None
        try:
            return int(float(s))
        except ValueError:
            return None

    def parse_status(self, text: str) -> BluOSStatus | None:
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            log.debug("Unparseable /Status XML: %s", e)
            return None

        # title appears as <name> and also as <title1>
        title  = self._findtext_any(root, "name", "title1", "title", "song")
        artist = self._findtext_any(root, "artist", "title2")
        album  = self._findtext_any(root, "album", "title3")
        album_artist = self._findtext_any(root, "albumArtist", "albumartist")

        secs     = self._findtext_any(root, "secs", "elapsed", "position", "time")
        duration = self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")

        state = self._findtext_any(root, "state", "status", "mode")
        state = state.lower() if state else None

        return BluOSStatus(
            title=title,
            artist=artist,
            album=album,
            album_artist=album_artist,
            duration=self._to_int(duration),
            secs=self._to_int(secs),
            state=state,
        )

    def get_status(self) -> BluOSStatus | None:
        try:
            resp = requests.get(f"{self.base}/Status", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.debug("BluOS status fetch failed: %s", e)
            return None
        return self.parse_status(resp.text)

    def sample(self) -> PlayerSample | None:
        """Position sample for the scheduler's sampling loop."""
        status = self.get_status()
        if status is None:
            return None
        return PlayerSample(
            position=float(status.secs or 0),
            is_playing=status.is_playing,
            duration=float(status.duration or 0),
        )
