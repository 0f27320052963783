"""
Scrobbling coordinator: bridges a playback source to the scrobbling backends.

- Poll loop (every 0.5s): follows the current track, accumulates real listening
  time, sends Now Playing once per track and enqueues a scrobble once the
  threshold is met.
- Flush loop (every 30s): submits queued scrobbles to every enabled + connected
  backend. A queued scrobble is done as soon as ANY backend accepts it.

Everything here runs on one asyncio event loop; blocking I/O happens inside the
source/backends via asyncio.to_thread, so session and queue state need no locks.
"""

from __future__ import annotations
import asyncio
import logging
import time
from contextlib import suppress
from typing import Callable, Dict, List, Sequence, Set

from backends import (
    AuthError, MalformedResponseError, RequestError, ScrobbleBackend, TransientServiceError,
)
from bluos import PlaybackSource
from records import PlaybackSnapshot, TrackRecord
from scrobble_queue import ScrobbleQueue
from settings import ScrobbleSettings
from state import TrackSession, detect_change

log = logging.getLogger("scrobbler")

POLL_INTERVAL = 0.5
FLUSH_INTERVAL = 30.0
FLUSH_BATCH_SIZE = 50


class ScrobblingCoordinator:
    def __init__(
        self,
        source: PlaybackSource,
        settings: ScrobbleSettings,
        backends: Sequence[ScrobbleBackend],
        queue: ScrobbleQueue,
        *,
        clock: Callable[[], float] = time.time,
        poll_interval: float = POLL_INTERVAL,
        flush_interval: float = FLUSH_INTERVAL,
        batch_size: int = FLUSH_BATCH_SIZE,
    ):
        self.source = source
        self.settings = settings
        self.backends = list(backends)
        self.queue = queue
        self.poll_interval = poll_interval
        self.flush_interval = flush_interval
        self.batch_size = batch_size
        self._clock = clock

        self.session: TrackSession | None = None
        self._poll_task: asyncio.Task | None = None
        self._flush_task: asyncio.Task | None = None
        # Now Playing calls for the current session only
        self._now_playing_tasks: Set[asyncio.Task] = set()

    # -------- backends --------
    def active_backends(self) -> List[ScrobbleBackend]:
        """Backends that are enabled in settings and currently authenticated."""
        return [
            b for b in self.backends
            if self.settings.is_backend_enabled(b.name) and b.auth_state.is_connected
        ]

    def restore_auth_state(self) -> None:
        for backend in self.backends:
            backend.restore_session()

    # -------- lifecycle --------
    @property
    def is_monitoring(self) -> bool:
        return self._poll_task is not None

    def start(self) -> None:
        """Start both background loops. Must be called from a running event loop."""
        if self.is_monitoring:
            return
        self._poll_task = asyncio.create_task(self._poll_loop(), name="scrobbler-poll")
        self._flush_task = asyncio.create_task(self._flush_loop(), name="scrobbler-flush")
        log.info("Scrobbling coordinator started monitoring (queue size=%s)", self.queue.size())

    async def stop(self) -> None:
        tasks = [t for t in (self._poll_task, self._flush_task) if t is not None]
        self._poll_task = None
        self._flush_task = None
        tasks.extend(self._cancel_now_playing())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        log.info("Scrobbling coordinator stopped monitoring")

    # -------- polling --------
    async def _poll_loop(self) -> None:
        while True:
            if self.active_backends():
                try:
                    snapshot = await self.source.read()
                except Exception as e:
                    log.warning("Playback status fetch failed: %s", e)
                else:
                    try:
                        self.poll_once(snapshot)
                    except OSError as e:
                        log.error("Failed to persist scrobble queue: %s", e)
                    except Exception:
                        log.exception("Unexpected error while tracking playback")
            await asyncio.sleep(self.poll_interval)

    def poll_once(self, snapshot: PlaybackSnapshot | None) -> None:
        """One poll step against the latest playback snapshot."""
        # Nobody could receive a scrobble; don't track anything
        if not self.active_backends():
            return

        if snapshot is None or snapshot.track_id is None:
            if self.session is not None:
                self._finalize(None)
                self._cancel_now_playing()
            return

        now = self._clock()
        if detect_change(self.session, snapshot):
            self._finalize(snapshot.duration)
            self._begin(snapshot, now)

        session = self.session
        if snapshot.is_playing:
            session.accumulate(snapshot.progress, now)
            if not session.now_playing_sent:
                self._send_now_playing(session)
        else:
            session.pause()

        if not session.scrobbled:
            self._check_threshold(session, snapshot.duration or session.duration)

    def _begin(self, snapshot: PlaybackSnapshot, now: float) -> None:
        self._cancel_now_playing()
        self.session = TrackSession.start(snapshot, now)
        log.debug("Started tracking: %s by %s", snapshot.title, snapshot.artist)

    def _finalize(self, live_duration: float | None) -> None:
        session = self.session
        if session is None:
            return
        # Last chance for a track that ended/skipped between polls
        if not session.scrobbled:
            self._check_threshold(session, session.duration or live_duration)
        log.debug("Finalized track: %s (accumulated: %.1fs, scrobbled: %s)",
                  session.title, session.accumulated, session.scrobbled)
        self.session = None

    def _check_threshold(self, session: TrackSession, duration: float | None) -> None:
        if not session.qualifies(duration, self.settings.percent_threshold,
                                 self.settings.min_seconds_threshold):
            return
        session.scrobbled = True
        record = session.to_record(duration)
        self.queue.enqueue(record)
        log.info("Scrobble threshold met for: %s (accumulated: %.1fs)",
                 record.describe(), session.accumulated)

    # -------- now playing --------
    def _cancel_now_playing(self) -> List[asyncio.Task]:
        tasks = list(self._now_playing_tasks)
        self._now_playing_tasks.clear()
        for task in tasks:
            task.cancel()
        return tasks

    def _send_now_playing(self, session: TrackSession) -> None:
        session.now_playing_sent = True
        record = session.to_record()
        for backend in self.active_backends():
            task = asyncio.create_task(self._now_playing(backend, record))
            self._now_playing_tasks.add(task)
            task.add_done_callback(self._now_playing_tasks.discard)

    async def _now_playing(self, backend: ScrobbleBackend, record: TrackRecord) -> None:
        # Best-effort: never retried, never escalated
        try:
            await backend.update_now_playing(record)
            log.debug("Now playing on %s: %s", backend.name, record.describe())
        except Exception as e:
            log.debug("Now playing update failed for %s (non-critical): %s", backend.name, e)

    # -------- flushing --------
    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush_queue()
            except OSError as e:
                log.error("Scrobble queue flush failed: %s", e)
            except Exception:
                log.exception("Unexpected error while flushing scrobble queue")

    async def flush_queue(self) -> int:
        """Submit one batch to every active backend; return how many entries completed."""
        backends = self.active_backends()
        if not backends or self.queue.is_empty:
            return 0

        self.queue.prune_expired()
        batch = self.queue.dequeue(self.batch_size)
        if not batch:
            return 0
        log.debug("Flushing %s scrobbles from queue", len(batch))

        # Equal records are duplicate plays of the same scrobble; one acceptance covers them all
        ids_by_record: Dict[TrackRecord, List[str]] = {}
        for entry in batch:
            ids_by_record.setdefault(entry.record, []).append(entry.id)
        records = [entry.record for entry in batch]

        accepted_ids: Set[str] = set()
        for backend in backends:
            try:
                results = await backend.scrobble(records)
            except AuthError as e:
                log.warning("%s session expired during flush, scrobbles kept in queue: %s", backend.name, e)
                continue
            except TransientServiceError as e:
                log.warning("%s unavailable during flush, will retry next cycle: %s", backend.name, e)
                continue
            except (MalformedResponseError, RequestError) as e:
                log.error("%s flush failed: %s", backend.name, e)
                continue
            except Exception as e:
                log.error("%s flush failed with unexpected error: %s", backend.name, e)
                continue

            accepted = [r for r in results if r.accepted]
            for result in accepted:
                accepted_ids.update(ids_by_record.get(result.record, ()))
            if accepted:
                log.info("Flushed %s/%s scrobbles to %s", len(accepted), len(batch), backend.name)
            for result in results:
                if not result.accepted:
                    log.warning("Scrobble rejected by %s: %s - %s", backend.name,
                                result.record.title, result.error_message or "unknown reason")
                elif result.corrected_artist or result.corrected_title:
                    log.debug("%s corrected %s to %s - %s", backend.name, result.record.describe(),
                              result.corrected_artist or result.record.artist,
                              result.corrected_title or result.record.title)

        if not accepted_ids:
            return 0
        return self.queue.mark_completed(accepted_ids)
