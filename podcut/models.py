"""Dataclasses describing episodes, playback, transcription runs and stored records."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True, slots=True)
class Episode:
    """An episode as delivered by a feed parser."""

    id: str
    title: str
    description: str = ""
    media_url: Optional[str] = None
    published: str = ""
    duration_label: str = ""
    artwork_url: Optional[str] = None

    @property
    def is_playable(self) -> bool:
        return bool(self.media_url)


class TransportPhase(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True, slots=True)
class PlaybackState:
    """Snapshot of the playback engine.

    A ``duration`` of ``0`` means the duration is not known yet.
    """

    episode: Optional[Episode] = None
    phase: TransportPhase = TransportPhase.IDLE
    position: float = 0.0
    duration: float = 0.0

    @property
    def progress(self) -> float:
        if self.duration <= 0:
            return 0.0
        return min(max(self.position / self.duration, 0.0), 1.0)

    @property
    def is_playing(self) -> bool:
        return self.phase is TransportPhase.PLAYING


@dataclass(frozen=True, slots=True)
class TranscriptSegment:
    """A piece of recognised speech and where it starts in the episode."""

    text: str
    start: float
    ordinal: int

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "start": self.start, "ordinal": self.ordinal}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TranscriptSegment":
        return cls(
            text=str(payload.get("text", "")),
            start=float(payload.get("start", 0.0)),
            ordinal=int(payload.get("ordinal", 0)),
        )


class RunStatus(str, enum.Enum):
    PREPARING = "preparing"
    DOWNLOADING = "downloading"
    INSTALLING_MODEL = "installing_model"
    TRANSCRIBING = "transcribing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.DONE, RunStatus.FAILED)


@dataclass(frozen=True, slots=True)
class TranscriptionRun:
    """Immutable snapshot of one transcription run.

    ``error`` holds the human readable reason once ``status`` is ``FAILED``.
    Partial ``text`` and ``segments`` are kept on failure.
    """

    media_url: str
    status: RunStatus = RunStatus.PREPARING
    fraction_complete: float = 0.0
    progress_text: str = "Preparing…"
    text: str = ""
    segments: Tuple[TranscriptSegment, ...] = ()
    error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return not self.status.is_terminal


@dataclass(slots=True)
class TranscriptRecord:
    """Represents a stored transcript entry keyed by its media locator."""

    media_url: str
    transcript: str
    summary: Optional[str]
    segments: Tuple[TranscriptSegment, ...]
    saved_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    backend: str = "auto"
    whisper_model: str = "base"
    whisper_device: str = "auto"
    openai_model: str = "whisper-1"
    openai_api_key: Optional[str] = None
    summary_backend: str = "extractive"
    summary_model: str = "gpt-4o-mini"
    fallback_locale: str = "en-US"
    skip_forward_seconds: float = 30.0
    skip_backward_seconds: float = 15.0
    position_interval: float = 0.5
    ready_poll_interval: float = 0.2
    ready_timeout: float = 30.0
    asset_install_timeout: float = 900.0
    download_timeout: float = 60.0
    db_path: Optional[str] = None
