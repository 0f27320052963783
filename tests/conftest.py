"""Shared fakes and fixtures for the scrobbler tests."""

import asyncio

import pytest

from backends import ScrobbleBackend
from coordinator import ScrobblingCoordinator
from records import AuthState, PlaybackSnapshot, ScrobbleResult
from scrobble_queue import ScrobbleQueue
from settings import ScrobbleSettings


class FakeClock:
    """Manually advanced stand-in for time.time()."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend(ScrobbleBackend):
    """In-memory backend that records every call."""

    def __init__(self, name: str = "Fake", connected: bool = True):
        super().__init__()
        self.name = name
        if connected:
            self._auth_state = AuthState.connected("tester")
        self.now_playing = []
        self.batches = []
        self.reject_titles = set()
        self.scrobble_error = None
        self.now_playing_error = None
        self.hang_now_playing = False
        self.restored = False

    async def authenticate(self):
        self._auth_state = AuthState.connected("tester")

    def restore_session(self):
        self.restored = True

    async def disconnect(self):
        self._auth_state = AuthState.disconnected()

    async def update_now_playing(self, record):
        if self.hang_now_playing:
            await asyncio.Event().wait()
        if self.now_playing_error:
            raise self.now_playing_error
        self.now_playing.append(record)

    async def scrobble(self, batch):
        self.batches.append(list(batch))
        if self.scrobble_error:
            raise self.scrobble_error
        return [
            ScrobbleResult(record=r, accepted=True) if r.title not in self.reject_titles
            else ScrobbleResult(record=r, accepted=False, error_message="Track ignored")
            for r in batch
        ]

    async def validate_session(self):
        return self._auth_state.is_connected


class FakeSource:
    """Playback source that plays one track steadily, 0.5s per read."""

    def __init__(self, clock: FakeClock, duration: float = 200.0, step: float = 0.5):
        self.clock = clock
        self.duration = duration
        self.step = step
        self.progress = 0.0
        self.fail_next = False
        self.reads = 0

    async def read(self):
        self.reads += 1
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("device unreachable")
        self.clock.advance(self.step)
        self.progress += self.step
        return snapshot(self.progress, duration=self.duration)


def snapshot(progress, *, track_id="t1", title="Song", artist="Artist", album="Album",
             duration=200.0, playing=True):
    return PlaybackSnapshot(
        track_id=track_id,
        title=title,
        artist=artist,
        album=album,
        is_playing=playing,
        progress=progress,
        duration=duration,
    )


class Player:
    """Feeds a coordinator the snapshots of a steadily playing device."""

    def __init__(self, coordinator: ScrobblingCoordinator, clock: FakeClock):
        self.coordinator = coordinator
        self.clock = clock
        self.progress = 0.0
        self.track = {}

    def load(self, progress: float = 0.0, **track):
        """Start observing a (possibly new) track at `progress`."""
        self.track = track
        self.progress = progress
        self.coordinator.poll_once(snapshot(self.progress, **self.track))

    def tick(self, n: int = 1, step: float = 0.5, wall: float | None = None):
        for _ in range(n):
            self.clock.advance(step if wall is None else wall)
            self.progress += step
            self.coordinator.poll_once(snapshot(self.progress, **self.track))

    def jump(self, to: float):
        self.clock.advance(0.5)
        self.progress = to
        self.coordinator.poll_once(snapshot(self.progress, **self.track))

    def pause(self):
        self.clock.advance(0.5)
        self.coordinator.poll_once(snapshot(self.progress, playing=False, **self.track))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(tmp_path, clock):
    return ScrobbleQueue(str(tmp_path / "queue.json"), clock=clock)


@pytest.fixture
def settings():
    return ScrobbleSettings(enabled_backends={"Fake": True, "Other": True})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_coordinator(clock, queue, settings):
    def factory(*backends, source=None, **kwargs):
        return ScrobblingCoordinator(
            source=source or FakeSource(clock),
            settings=settings,
            backends=backends,
            queue=queue,
            clock=clock,
            **kwargs,
        )
    return factory


@pytest.fixture
def coordinator(make_coordinator, backend):
    return make_coordinator(backend)


@pytest.fixture
def player(coordinator, clock):
    return Player(coordinator, clock)
