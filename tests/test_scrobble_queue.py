"""Tests for the persistent scrobble queue."""

import json
import logging

import pytest

from records import TrackRecord
from scrobble_queue import MAX_AGE, ScrobbleQueue


def make_record(title="Song", timestamp=1_700_000_000.0, **kwargs):
    fields = dict(artist="Artist", title=title, album="Album", duration=210.0, timestamp=timestamp)
    fields.update(kwargs)
    return TrackRecord(**fields)


@pytest.fixture
def path(tmp_path):
    return str(tmp_path / "state" / "queue.json")


class TestQueueOperations:
    def test_dequeue_does_not_remove(self, queue):
        queue.enqueue(make_record("One"))
        queue.enqueue(make_record("Two"))

        assert [e.record.title for e in queue.dequeue(50)] == ["One", "Two"]
        assert queue.size() == 2

    def test_dequeue_returns_oldest_first_up_to_limit(self, queue):
        for title in ("One", "Two", "Three"):
            queue.enqueue(make_record(title))
        assert [e.record.title for e in queue.dequeue(2)] == ["One", "Two"]

    def test_enqueue_assigns_fresh_ids_without_dedup(self, queue, clock):
        record = make_record()
        first = queue.enqueue(record)
        second = queue.enqueue(record)

        assert first.id != second.id
        assert first.enqueued_at == clock()
        assert queue.size() == 2

    def test_mark_completed_removes_only_given_ids(self, queue):
        one = queue.enqueue(make_record("One"))
        queue.enqueue(make_record("Two"))

        assert queue.mark_completed({one.id, "unknown"}) == 1
        assert [e.record.title for e in queue.pending] == ["Two"]

    def test_prune_expired_uses_enqueue_time(self, queue, clock):
        queue.enqueue(make_record("Old"))
        clock.advance(MAX_AGE - 1)
        queue.enqueue(make_record("Recent"))
        clock.advance(2)

        assert queue.prune_expired() == 1
        assert [e.record.title for e in queue.pending] == ["Recent"]

    def test_clear(self, queue):
        queue.enqueue(make_record())
        queue.clear()
        assert queue.is_empty


class TestPersistence:
    def test_entries_survive_restart(self, path, clock):
        original = ScrobbleQueue(path, clock=clock)
        entries = [original.enqueue(make_record("One", album=None, duration=None)),
                   original.enqueue(make_record("Two"))]

        reloaded = ScrobbleQueue(path, clock=clock)

        assert reloaded.pending == entries

    def test_every_mutation_is_written(self, path, clock):
        queue = ScrobbleQueue(path, clock=clock)
        entry = queue.enqueue(make_record())
        with open(path, encoding="utf-8") as f:
            assert [e["id"] for e in json.load(f)] == [entry.id]

        queue.mark_completed([entry.id])
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == []

    def test_missing_file_is_empty_queue(self, path):
        assert ScrobbleQueue(path).is_empty

    def test_corrupt_file_starts_fresh(self, path, caplog):
        ScrobbleQueue(path)  # creates the directory
        with open(path, "w", encoding="utf-8") as f:
            f.write("{not json")

        with caplog.at_level(logging.ERROR, logger="scrobble_queue"):
            queue = ScrobbleQueue(path)

        assert queue.is_empty
        assert any("Failed to load" in r.getMessage() for r in caplog.records)

    def test_malformed_entries_are_skipped(self, path, clock):
        good = ScrobbleQueue(path, clock=clock).enqueue(make_record())
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        data.append({"id": "broken", "record": {"title": "No artist"}})
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f)

        assert ScrobbleQueue(path).pending == [good]
