import sqlite3

import pytest

from podcut.models import TranscriptSegment
from podcut.storage import StorageError, TranscriptStore

URL = "https://example.com/episodes/42.mp3"


@pytest.fixture
def store(tmp_path):
    return TranscriptStore(db_path=tmp_path / "store.db")


def test_save_and_load_transcript(store):
    segments = [TranscriptSegment("Hello there.", 0.0, 0), TranscriptSegment("Welcome.", 4.5, 1)]
    store.save(URL, "Hello there. Welcome.", summary="- [0:00] Greeting", segments=segments)

    record = store.load(URL)
    assert record is not None
    assert record.transcript == "Hello there. Welcome."
    assert record.summary == "- [0:00] Greeting"
    assert list(record.segments) == segments


def test_load_missing_returns_none(store):
    assert store.load("https://example.com/missing.mp3") is None


def test_save_twice_keeps_one_record(store, tmp_path):
    first = store.save(URL, "T1")
    second = store.save(URL, "T1")

    assert second.saved_at >= first.saved_at
    assert len(list(store.list_records())) == 1
    with sqlite3.connect(tmp_path / "store.db") as conn:
        (count,) = conn.execute("SELECT COUNT(*) FROM transcripts").fetchone()
    assert count == 1


def test_empty_summary_does_not_overwrite(store):
    store.save(URL, "T1", summary="Original summary")
    store.save(URL, "T2", summary="")

    record = store.load(URL)
    assert record.transcript == "T2"
    assert record.summary == "Original summary"


def test_empty_segments_do_not_overwrite(store):
    segments = [TranscriptSegment("Intro", 0.0, 0)]
    store.save(URL, "Intro", segments=segments)
    store.save(URL, "Intro again", segments=[])

    record = store.load(URL)
    assert record.transcript == "Intro again"
    assert list(record.segments) == segments


def test_new_summary_replaces_old(store):
    store.save(URL, "T1", summary="Old")
    store.save(URL, "T1", summary="New")
    assert store.load(URL).summary == "New"


def test_delete_record(store):
    store.save(URL, "Content")
    store.delete(URL)

    assert store.load(URL) is None
    with pytest.raises(StorageError):
        store.delete(URL)


def test_database_errors_are_wrapped(store, tmp_path):
    store.save(URL, "Content")
    conn = sqlite3.connect(tmp_path / "store.db")
    conn.execute("DROP TABLE transcripts")
    conn.commit()
    conn.close()

    with pytest.raises(StorageError, match="list"):
        list(store.list_records())
    with pytest.raises(StorageError, match="delete"):
        store.delete(URL)
