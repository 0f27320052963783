from dataclasses import dataclass

from records import PlaybackSnapshot, TrackRecord

# Tracks shorter than this are never scrobbled (Last.fm rule)
MIN_TRACK_LENGTH = 30.0
# Only progress steps inside this window count as listening; anything bigger is a seek
MAX_PROGRESS_STEP = 2.0
MAX_WALL_STEP = 2.0
# Backward jump on an already-scrobbled track that counts as a replay
REPLAY_REWIND = 5.0


@dataclass
class TrackSession:
    """Listening state for the track currently being observed.

    Lives from one detected track change to the next. `accumulated` only
    grows from small, in-order progress steps, so seeks and pauses don't
    count as listening time.
    """

    track_id: str
    title: str | None
    artist: str | None
    album: str | None
    duration: float | None
    started_at: float
    accumulated: float = 0.0
    last_progress: float = 0.0
    last_poll_time: float | None = None
    scrobbled: bool = False
    now_playing_sent: bool = False

    @classmethod
    def start(cls, snapshot: PlaybackSnapshot, now: float) -> "TrackSession":
        return cls(
            track_id=snapshot.track_id,
            title=snapshot.title,
            artist=snapshot.artist,
            album=snapshot.album,
            duration=snapshot.duration,
            started_at=now,
            last_progress=snapshot.progress,
            last_poll_time=now,
        )

    def accumulate(self, progress: float, now: float) -> float:
        """Count the progress made since the last poll; return what was added."""
        if self.last_poll_time is None:
            # Just resumed: anchor only
            self.last_progress = progress
            self.last_poll_time = now
            return 0.0

        progress_delta = progress - self.last_progress
        wall_delta = now - self.last_poll_time
        added = 0.0
        if 0 < progress_delta < MAX_PROGRESS_STEP and wall_delta < MAX_WALL_STEP:
            added = progress_delta
            self.accumulated += added

        self.last_progress = progress
        self.last_poll_time = now
        return added

    def pause(self) -> None:
        self.last_poll_time = None

    def qualifies(self, duration: float | None, percent_threshold: float, min_seconds: float) -> bool:
        if not duration or duration < MIN_TRACK_LENGTH:
            return False
        return (self.accumulated >= duration * percent_threshold
                or self.accumulated >= min_seconds)

    def to_record(self, duration: float | None = None) -> TrackRecord:
        return TrackRecord(
            artist=self.artist or "",
            title=self.title or "",
            album=self.album,
            duration=self.duration or duration,
            timestamp=self.started_at,
        )


def detect_change(session: TrackSession | None, snapshot: PlaybackSnapshot) -> bool:
    """True when `snapshot` no longer belongs to `session`.

    The title/artist comparison catches sources whose track id lags behind
    on natural transitions. It also resets the session on a metadata-only
    update of the same track.
    """
    if session is None:
        return snapshot.track_id is not None
    if snapshot.track_id != session.track_id:
        return True
    if snapshot.title != session.title or snapshot.artist != session.artist:
        return True
    if session.scrobbled and snapshot.progress < session.last_progress - REPLAY_REWIND:
        return True
    return False
