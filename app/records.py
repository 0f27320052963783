"""
Value types shared by the scrobbling bridge.

- TrackRecord: a reportable play (also the now-playing payload).
- ScrobbleResult: one backend's verdict on one submitted record.
- QueueEntry: a TrackRecord as persisted in the scrobble queue.
- PlaybackSnapshot: what the playback source reported on one poll.
- AuthState: a backend's authentication state.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class TrackRecord:
    artist: str
    title: str
    album: str | None
    duration: float | None  # seconds
    timestamp: float        # unix seconds, when playback of this instance began

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist": self.artist,
            "title": self.title,
            "album": self.album,
            "duration": self.duration,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackRecord":
        duration = data.get("duration")
        return cls(
            artist=str(data["artist"]),
            title=str(data["title"]),
            album=data.get("album"),
            duration=float(duration) if duration is not None else None,
            timestamp=float(data["timestamp"]),
        )

    def describe(self) -> str:
        return f"{self.artist} - {self.title}" + (f" [{self.album}]" if self.album else "")


@dataclass(frozen=True)
class ScrobbleResult:
    record: TrackRecord
    accepted: bool
    corrected_artist: str | None = None
    corrected_title: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class QueueEntry:
    id: str
    record: TrackRecord
    enqueued_at: float  # unix seconds

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "enqueued_at": self.enqueued_at, "record": self.record.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntry":
        return cls(
            id=str(data["id"]),
            record=TrackRecord.from_dict(data["record"]),
            enqueued_at=float(data["enqueued_at"]),
        )


@dataclass(frozen=True)
class PlaybackSnapshot:
    track_id: str | None
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    is_playing: bool = False
    progress: float = 0.0
    duration: float | None = None


@dataclass(frozen=True)
class AuthState:
    kind: str  # 'disconnected', 'authenticating', 'connected', 'error'
    username: str | None = None
    message: str | None = None

    @classmethod
    def disconnected(cls) -> "AuthState":
        return cls("disconnected")

    @classmethod
    def authenticating(cls) -> "AuthState":
        return cls("authenticating")

    @classmethod
    def connected(cls, username: str) -> "AuthState":
        return cls("connected", username=username)

    @classmethod
    def error(cls, message: str) -> "AuthState":
        return cls("error", message=message)

    @property
    def is_connected(self) -> bool:
        return self.kind == "connected"
