"""SQLite backed persistence for episode transcripts and summaries."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .models import TranscriptRecord, TranscriptSegment

APP_DIR = Path.home() / ".podcut"
DB_PATH = APP_DIR / "transcripts.db"
SCHEMA_VERSION = 1


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


class TranscriptStore:
    """Keep exactly one transcript record per media locator."""

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._ensure_initialised()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transcripts (
                    media_url TEXT PRIMARY KEY,
                    transcript TEXT NOT NULL,
                    summary TEXT,
                    segments TEXT,
                    saved_at TEXT NOT NULL,
                    metadata TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            if cur.fetchone() is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    def save(
        self,
        media_url: str,
        transcript: str,
        summary: Optional[str] = None,
        segments: Optional[Iterable[TranscriptSegment]] = None,
        metadata: Optional[dict] = None,
    ) -> TranscriptRecord:
        """Insert or update the record for ``media_url``.

        The transcript is always replaced. Summary and segments are only
        replaced by non-empty values so a later save without them keeps what
        was stored before. ``saved_at`` never moves backwards.
        """

        key = canonical_key(media_url)
        segment_list = list(segments or [])
        segments_json = json.dumps([s.to_dict() for s in segment_list]) if segment_list else None
        now = datetime.now(timezone.utc)

        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM transcripts WHERE media_url = ?", (key,)
                ).fetchone()
                if row is None:
                    conn.execute(
                        """
                        INSERT INTO transcripts(media_url, transcript, summary, segments, saved_at, metadata)
                        VALUES(?, ?, ?, ?, ?, ?)
                        """,
                        (
                            key,
                            transcript,
                            summary or None,
                            segments_json,
                            now.isoformat(),
                            json.dumps(metadata or {}),
                        ),
                    )
                else:
                    previous = datetime.fromisoformat(row["saved_at"])
                    saved_at = max(now, previous)
                    merged_metadata = json.loads(row["metadata"] or "{}")
                    merged_metadata.update(metadata or {})
                    conn.execute(
                        """
                        UPDATE transcripts
                        SET transcript = ?, summary = ?, segments = ?, saved_at = ?, metadata = ?
                        WHERE media_url = ?
                        """,
                        (
                            transcript,
                            summary or row["summary"],
                            segments_json or row["segments"],
                            saved_at.isoformat(),
                            json.dumps(merged_metadata),
                            key,
                        ),
                    )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save transcript for {key}: {exc}") from exc

        record = self.load(key)
        if record is None:  # pragma: no cover - the row was just written
            raise StorageError(f"Transcript for {key} vanished after saving")
        return record

    def load(self, media_url: str) -> Optional[TranscriptRecord]:
        """Return the record for ``media_url`` or ``None`` when nothing is stored."""

        key = canonical_key(media_url)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM transcripts WHERE media_url = ?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load transcript for {key}: {exc}") from exc
        return _row_to_record(row) if row is not None else None

    def list_records(self) -> Iterator[TranscriptRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM transcripts ORDER BY saved_at DESC").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list transcripts: {exc}") from exc
        for row in rows:
            yield _row_to_record(row)

    def delete(self, media_url: str) -> None:
        key = canonical_key(media_url)
        try:
            with self._connect() as conn:
                cur = conn.execute("DELETE FROM transcripts WHERE media_url = ?", (key,))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete transcript for {key}: {exc}") from exc
        if cur.rowcount == 0:
            raise StorageError(f"No transcript stored for {key}")


def canonical_key(media_url: str) -> str:
    return str(media_url).strip()


def _row_to_record(row: sqlite3.Row) -> TranscriptRecord:
    segments = tuple(
        TranscriptSegment.from_dict(item) for item in json.loads(row["segments"] or "[]")
    )
    return TranscriptRecord(
        media_url=row["media_url"],
        transcript=row["transcript"],
        summary=row["summary"],
        segments=segments,
        saved_at=datetime.fromisoformat(row["saved_at"]),
        metadata=json.loads(row["metadata"] or "{}"),
    )
