"""
Persistent scrobble queue.

- Stores pending scrobbles on disk (JSON file), so we don't lose plays on network errors
  or restarts. Every mutation rewrites the file atomically.
- Entries are only removed once a backend accepted them (mark_completed) or they expired
  (prune_expired, 14 days: services reject older timestamps anyway).
- dequeue() peeks; it never removes.
"""

from __future__ import annotations
import json
import logging
import os
import threading
import time
import uuid
from typing import Callable, Iterable, List

from records import QueueEntry, TrackRecord

log = logging.getLogger("scrobble_queue")

MAX_AGE = 14 * 24 * 60 * 60


class ScrobbleQueue:
    def __init__(self, path: str, clock: Callable[[], float] = time.time):
        self.path = path
        self._clock = clock
        self._lock = threading.Lock()
        self._items: List[QueueEntry] = []
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.isfile(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # Corrupt or unreadable file? Start fresh.
            log.error("Failed to load scrobble queue from %s: %s", self.path, e)
            return
        if not isinstance(data, list):
            log.error("Scrobble queue file %s is not a list; ignoring it", self.path)
            return
        for item in data:
            try:
                self._items.append(QueueEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("Skipping malformed queue entry %r: %s", item, e)
        log.info("Loaded %s pending scrobbles from %s", len(self._items), self.path)

    def _save(self) -> None:
        # Write atomically to avoid corruption
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump([e.to_dict() for e in self._items], f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    # -------- public API --------
    def enqueue(self, record: TrackRecord) -> QueueEntry:
        entry = QueueEntry(id=uuid.uuid4().hex, record=record, enqueued_at=self._clock())
        with self._lock:
            self._items.append(entry)
            self._save()
            size = len(self._items)
        log.debug("Enqueued scrobble: %s (queue size: %s)", record.describe(), size)
        return entry

    def dequeue(self, limit: int) -> List[QueueEntry]:
        """Oldest `limit` entries, left in place until mark_completed()."""
        with self._lock:
            return list(self._items[:max(0, limit)])

    def mark_completed(self, ids: Iterable[str]) -> int:
        done = set(ids)
        with self._lock:
            before = len(self._items)
            self._items = [e for e in self._items if e.id not in done]
            removed = before - len(self._items)
            if removed:
                self._save()
            size = len(self._items)
        if removed:
            log.debug("Marked %s scrobbles as completed (queue size: %s)", removed, size)
        return removed

    def prune_expired(self) -> int:
        cutoff = self._clock() - MAX_AGE
        with self._lock:
            before = len(self._items)
            self._items = [e for e in self._items if e.enqueued_at >= cutoff]
            pruned = before - len(self._items)
            if pruned:
                self._save()
            size = len(self._items)
        if pruned:
            log.info("Pruned %s expired scrobbles (queue size: %s)", pruned, size)
        return pruned

    def clear(self) -> None:
        with self._lock:
            self._items = []
            self._save()
        log.info("Scrobble queue cleared")

    @property
    def pending(self) -> List[QueueEntry]:
        with self._lock:
            return list(self._items)

    @property
    def is_empty(self) -> bool:
        return self.size() == 0

    def size(self) -> int:
        with self._lock:
            return len(self._items)
