"""Tests for the persistent scrobble history."""

import json
from datetime import datetime, timedelta, timezone

from history import HistoryStore
from state import ScrobbleRecord, ScrobbleStatus, Track

BASE = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def record(i, status=ScrobbleStatus.SUCCESS):
    track = Track(title=f"Song {i}", artist="Artist", album="Album", duration=180, artwork_url=f"http://img/{i}.jpg")
    return ScrobbleRecord(track=track, timestamp=BASE + timedelta(minutes=i), status=status)


def test_append_recent_count_in_memory():
    store = HistoryStore(None)
    for i in range(5):
        store.append(record(i))

    assert store.count() == 5
    assert [r.track.title for r in store.recent(3)] == ["Song 4", "Song 3", "Song 2"]


def test_recent_sorted_by_timestamp_not_insertion():
    store = HistoryStore(None)
    store.append(record(5))
    store.append(record(1))
    store.append(record(3))

    assert [r.track.title for r in store.recent(10)] == ["Song 5", "Song 3", "Song 1"]


def test_cap_drops_oldest():
    store = HistoryStore(None, maxlen=3)
    for i in range(5):
        store.append(record(i))

    assert store.count() == 3
    assert [r.track.title for r in store.recent(10)] == ["Song 4", "Song 3", "Song 2"]


def test_persists_across_instances(tmp_path):
    path = str(tmp_path / "data" / "history.json")
    store = HistoryStore(path)
    store.append(record(1, ScrobbleStatus.QUEUED))
    store.append(record(2))

    reloaded = HistoryStore(path)
    assert reloaded.count() == 2
    newest = reloaded.recent(1)[0]
    assert newest.track.title == "Song 2"
    assert newest.track.artwork_url == "http://img/2.jpg"
    assert newest.timestamp == BASE + timedelta(minutes=2)
    assert reloaded.recent(2)[1].status == ScrobbleStatus.QUEUED


def test_corrupt_file_starts_fresh(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("[{broken", encoding="utf-8")

    store = HistoryStore(str(path))
    assert store.count() == 0
    store.append(record(1))
    assert len(json.loads(path.read_text(encoding="utf-8"))) == 1
