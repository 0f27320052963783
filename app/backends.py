"""
Backend capability contract for listening-history services.

Every integration (Last.fm, Libre.fm, ...) subclasses ScrobbleBackend. The
coordinator only ever talks to backends through this interface.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List

from records import AuthState, ScrobbleResult, TrackRecord


# Custom error classes so callers can branch
class ScrobbleError(Exception): ...
class AuthError(ScrobbleError): ...
class TransientServiceError(ScrobbleError): ...
class RateLimitedError(TransientServiceError): ...
class MalformedResponseError(ScrobbleError): ...
class RequestError(ScrobbleError): ...
class RejectedError(ScrobbleError): ...  # the service refused this one submission


class ScrobbleBackend(ABC):
    """A listening-history service the coordinator can report plays to."""

    name: str = ""

    def __init__(self):
        self._auth_state = AuthState.disconnected()

    @property
    def auth_state(self) -> AuthState:
        return self._auth_state

    @abstractmethod
    async def authenticate(self) -> None:
        """Run the service's auth flow. Raises AuthError on failure."""

    @abstractmethod
    def restore_session(self) -> None:
        """Load previously persisted credentials, if any."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Forget credentials and go back to disconnected."""

    @abstractmethod
    async def update_now_playing(self, record: TrackRecord) -> None:
        """Push a now-playing update. Callers treat failures as non-fatal."""

    @abstractmethod
    async def scrobble(self, batch: List[TrackRecord]) -> List[ScrobbleResult]:
        """Submit a batch and return one result per record.

        Raise only for whole-request failures (network, session). A record
        accepted by any backend is dropped from the queue, so the same record
        may be resubmitted here after another backend took it. Implementations
        must tolerate that: the service has to de-duplicate on
        artist + title + timestamp, or the user gets duplicate scrobbles.
        """

    @abstractmethod
    async def validate_session(self) -> bool:
        """Return False when the user needs to re-authenticate."""
