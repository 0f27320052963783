import asyncio
import json
import logging
import os
from typing import List

import pylast

from backends import (
    AuthError, MalformedResponseError, RateLimitedError, RejectedError, RequestError,
    ScrobbleBackend, ScrobbleError, TransientServiceError,
)
from records import AuthState, ScrobbleResult, TrackRecord

log = logging.getLogger("lastfm")

# Last.fm error codes (Libre.fm mirrors them)
AUTH_CODES = (4, 9, 14)           # 4=Auth failed, 9=Invalid session, 14=Token not authorized
UNAVAILABLE_CODES = (11, 16, 17)  # 11=Offline, 16=Temporary error, 17=Login required
RATE_LIMIT_CODES = (29,)          # 29=Rate limit exceeded
TOKEN_NOT_AUTHORIZED = 14

AUTH_POLL_INTERVAL = 2.0
AUTH_POLL_ATTEMPTS = 60


def _ws_code(e: pylast.WSError) -> int | None:
    try:
        return int(e.get_id())
    except (TypeError, ValueError):
        return None


def map_error(e: Exception) -> ScrobbleError:
    """Translate a pylast (or transport) exception into our error taxonomy."""
    if isinstance(e, ScrobbleError):
        return e
    if isinstance(e, pylast.WSError):
        code = _ws_code(e)
        msg = str(e)
        if code in AUTH_CODES:
            return AuthError(msg)
        if code in RATE_LIMIT_CODES:
            return RateLimitedError(msg)
        if code in UNAVAILABLE_CODES:
            return TransientServiceError(f"Service unavailable ({code}): {msg}")
        return RejectedError(f"API error {code}: {msg}")
    if isinstance(e, pylast.MalformedResponseError):
        return MalformedResponseError(str(e))
    return RequestError(str(e))


class PylastBackend(ScrobbleBackend):
    """ScrobbleBackend over a pylast network (update-now-playing + scrobbling)."""

    network_class = pylast.LastFMNetwork

    def __init__(self, api_key: str, api_secret: str, session_key: str | None = None,
                 username: str | None = None, password_md5: str | None = None,
                 session_file: str | None = None, poll_interval: float = AUTH_POLL_INTERVAL):
        super().__init__()
        if not api_key or not api_secret:
            raise ValueError(f"Missing {self.name} API credentials")
        self.api_key = api_key
        self.api_secret = api_secret
        self.session_key = session_key
        self.username = username
        self.password_md5 = password_md5
        self.session_file = session_file
        self.poll_interval = poll_interval
        self.network = None

    def _make_network(self, session_key: str = "", username: str = "", password_hash: str = ""):
        return self.network_class(
            api_key=self.api_key,
            api_secret=self.api_secret,
            session_key=session_key,
            username=username,
            password_hash=password_hash,
        )

    # -------- session persistence --------
    def _load_session_file(self):
        if not self.session_file or not os.path.isfile(self.session_file):
            return None
        try:
            with open(self.session_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data["session_key"], data.get("username") or "unknown"
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.error("Failed to read %s session file %s: %s", self.name, self.session_file, e)
            return None

    def _save_session_file(self, session_key: str, username: str) -> None:
        if not self.session_file:
            return
        directory = os.path.dirname(self.session_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = f"{self.session_file}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"session_key": session_key, "username": username}, f)
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.session_file)

    # -------- auth --------
    def restore_session(self) -> None:
        stored = self._load_session_file()
        if stored:
            session_key, username = stored
        elif self.session_key:
            session_key, username = self.session_key, self.username or "unknown"
        else:
            return
        self.network = self._make_network(session_key=session_key)
        self._auth_state = AuthState.connected(username)
        log.info("Restored %s session for user: %s", self.name, username)

    async def authenticate(self) -> None:
        self._auth_state = AuthState.authenticating()
        log.info("Starting %s authentication", self.name)
        try:
            if self.username and self.password_md5:
                log.info("Using %s username + MD5 password auth", self.name)
                network = await asyncio.to_thread(
                    self._make_network, username=self.username, password_hash=self.password_md5
                )
                session_key, username = network.session_key, self.username
            else:
                session_key, username = await self._web_auth()
        except Exception as e:
            err = map_error(e)
            self._auth_state = AuthState.error(str(err))
            log.error("%s authentication failed: %s", self.name, err)
            if err is e and isinstance(e, AuthError):
                raise
            raise AuthError(str(err)) from e

        self.network = self._make_network(session_key=session_key)
        self._save_session_file(session_key, username)
        self._auth_state = AuthState.connected(username)
        log.info("Authenticated with %s as: %s", self.name, username)

    async def _web_auth(self):
        skg = pylast.SessionKeyGenerator(self._make_network())
        url = await asyncio.to_thread(skg.get_web_auth_url)
        log.info("Open this URL to authorize %s access: %s", self.name, url)

        for attempt in range(1, AUTH_POLL_ATTEMPTS + 1):
            await asyncio.sleep(self.poll_interval)
            try:
                return await asyncio.to_thread(skg.get_web_auth_session_key_username, url)
            except pylast.WSError as e:
                if _ws_code(e) == TOKEN_NOT_AUTHORIZED:
                    continue
                raise
            except pylast.NetworkError as e:
                log.debug("Auth polling attempt %s failed: %s", attempt, e)

        log.warning("%s auth polling timed out after %s attempts", self.name, AUTH_POLL_ATTEMPTS)
        raise AuthError("Authorization timed out. Please try again.")

    async def disconnect(self) -> None:
        self.network = None
        if self.session_file and os.path.isfile(self.session_file):
            os.remove(self.session_file)
        self._auth_state = AuthState.disconnected()
        log.info("Disconnected from %s", self.name)

    def _require_network(self):
        if self.network is None:
            raise AuthError(f"Not authenticated with {self.name}")
        return self.network

    def _fail(self, e: Exception) -> ScrobbleError:
        err = map_error(e)
        if isinstance(err, AuthError):
            self._auth_state = AuthState.error(str(err))
            log.warning("%s session rejected: %s", self.name, err)
        return err

    # -------- now playing + scrobbling --------
    async def update_now_playing(self, record: TrackRecord) -> None:
        """Push a Now Playing update."""
        network = self._require_network()
        try:
            await asyncio.to_thread(
                network.update_now_playing,
                artist=record.artist,
                title=record.title,
                album=record.album,
                duration=int(record.duration) if record.duration else None,
            )
        except Exception as e:
            err = self._fail(e)
            if err is e:
                raise
            raise err from e

    async def scrobble(self, batch: List[TrackRecord]) -> List[ScrobbleResult]:
        network = self._require_network()
        if not batch:
            return []
        try:
            results = await asyncio.to_thread(self._submit, network, batch)
        except Exception as e:
            err = self._fail(e)
            if err is e:
                raise
            raise err from e
        log.info("Submitted %s scrobble(s) to %s", len(batch), self.name)
        return results

    def _submit(self, network, batch: List[TrackRecord]) -> List[ScrobbleResult]:
        """One pass over the batch (runs in a worker thread).

        Per-record refusals become rejected results. A session or transport
        failure on the first record fails the whole request; later on, the
        records already accepted are kept and the rest are left for retry.
        """
        results: List[ScrobbleResult] = []
        for i, record in enumerate(batch):
            try:
                network.scrobble(
                    artist=record.artist,
                    title=record.title,
                    album=record.album,
                    duration=int(record.duration) if record.duration else None,
                    timestamp=int(record.timestamp),
                )
            except Exception as e:
                err = map_error(e)
                if isinstance(err, RejectedError):
                    results.append(ScrobbleResult(record=record, accepted=False, error_message=str(err)))
                    continue
                if i == 0 or isinstance(err, AuthError):
                    if err is e:
                        raise
                    raise err from e
                reason = f"Not submitted: {err}"
                results.extend(
                    ScrobbleResult(record=r, accepted=False, error_message=reason) for r in batch[i:]
                )
                return results
            results.append(ScrobbleResult(record=record, accepted=True))
        return results

    async def validate_session(self) -> bool:
        """Check the session key with an authenticated user.getInfo call.

        Only a refused session counts as invalid. When the service can't be
        reached the restored session is kept and the flush loop finds out later.
        """
        network = self.network
        if network is None:
            return False
        try:
            username = await asyncio.to_thread(
                lambda: network.get_authenticated_user().get_name(properly_capitalized=True)
            )
        except Exception as e:
            err = self._fail(e)
            if isinstance(err, AuthError):
                return False
            log.warning("Could not validate %s session, keeping it: %s", self.name, err)
            return True
        if username:
            self._auth_state = AuthState.connected(username)
        return True


class LastFMBackend(PylastBackend):
    name = "Last.fm"
    network_class = pylast.LastFMNetwork


class LibreFMBackend(PylastBackend):
    name = "Libre.fm"
    network_class = pylast.LibreFMNetwork
