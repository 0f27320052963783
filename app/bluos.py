import asyncio
import requests
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass

from records import PlaybackSnapshot

PLAYING_STATES = ("play", "stream")


class PlaybackSourceError(Exception): ...


class PlaybackSource(ABC):
    """Read-only view of whatever is playing. Polled by the coordinator."""

    @abstractmethod
    async def read(self) -> PlaybackSnapshot | None:
        """Current snapshot, or None when nothing is loaded."""


@dataclass
class BluOSStatus:
    song_id: str | None
    title: str | None
    artist: str | None
    album: str | None
    duration: float | None  # seconds
    secs: float | None      # elapsed seconds
    state: str | None       # 'play', 'pause', 'stop', 'stream'

    def to_snapshot(self) -> PlaybackSnapshot:
        if not self.title:
            return PlaybackSnapshot(track_id=None)
        track_id = self.song_id or "|".join(p or "" for p in (self.artist, self.album, self.title))
        return PlaybackSnapshot(
            track_id=track_id,
            title=self.title,
            artist=self.artist,
            album=self.album,
            is_playing=self.state in PLAYING_STATES,
            progress=self.secs or 0.0,
            duration=self.duration,
        )


class BluOSClient(PlaybackSource):
    """
    Minimal BluOS client that fetches and parses /Status (XML).
    Uses recursive lookup + tag fallbacks: name/title1, artist, album, secs, totlen, state.
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

    def _to_float(self, s):
        if s is None: return None
        try:
            return float(s)
        except ValueError:
            return None

    def parse_status(self, text: str) -> BluOSStatus:
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise PlaybackSourceError(f"Unparseable /Status XML: {e}") from e

        # title appears as <name> and also as <title1>; fallbacks included
        title  = self._findtext_any(root, "name", "title1", "title")
        artist = self._findtext_any(root, "artist", "title2")
        album  = self._findtext_any(root, "album", "title3")
        song_id = self._findtext_any(root, "songid", "song")

        secs     = self._findtext_any(root, "secs", "elapsed", "position", "time")
        duration = self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")

        state = self._findtext_any(root, "state", "status", "mode")
        state = state.lower() if state else None

        return BluOSStatus(
            song_id=song_id,
            title=title,
            artist=artist,
            album=album,
            duration=self._to_float(duration),
            secs=self._to_float(secs),
            state=state,
        )

    def get_status(self) -> BluOSStatus:
        try:
            resp = requests.get(f"{self.base}/Status", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise PlaybackSourceError(f"BluOS status fetch failed: {e}") from e
        return self.parse_status(resp.text)

    async def read(self) -> PlaybackSnapshot | None:
        status = await asyncio.to_thread(self.get_status)
        return status.to_snapshot()
