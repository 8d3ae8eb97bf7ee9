"""Tie one episode to playback, transcription, summaries and saved state."""

from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from .models import Episode, TranscriptionRun, TranscriptSegment, TransportPhase
from .pipeline import TranscriptionPipeline
from .player import PlaybackEngine
from .storage import StorageError, TranscriptStore
from .summarizer import Summarizer, SummaryService
from .timecodes import TimecodeToken, Token, first_timecode, parse_lines


class EpisodeSession:
    """Everything the episode page shows, plus the actions behind it.

    Timecodes found in the summary and segment start offsets seek the shared
    :class:`PlaybackEngine`, starting the episode first when needed.
    """

    def __init__(
        self,
        episode: Episode,
        engine: PlaybackEngine,
        pipeline: TranscriptionPipeline,
        store: Optional[TranscriptStore] = None,
        summarizer: Optional[SummaryService] = None,
    ) -> None:
        self.episode = episode
        self.engine = engine
        self.pipeline = pipeline
        self.store = store
        self.summarizer = summarizer or Summarizer()

        self.run: Optional[TranscriptionRun] = None
        self.transcript = ""
        self.segments: Tuple[TranscriptSegment, ...] = ()
        self.summary = ""
        self.summary_error: Optional[str] = None
        self.is_summarizing = False
        self.is_saved = False

    # Persistence

    def load_saved(self) -> bool:
        """Restore a previously saved transcript, segments and summary."""

        if self.store is None or not self.episode.media_url:
            return False
        try:
            record = self.store.load(self.episode.media_url)
        except StorageError as exc:
            logging.warning("Could not load saved transcript: %s", exc)
            return False
        if record is None:
            return False
        self.transcript = record.transcript
        self.segments = record.segments
        self.summary = record.summary or ""
        self.is_saved = True
        return True

    def save(self) -> bool:
        """Best-effort save of the current transcript state."""

        if self.store is None or not self.episode.media_url or not self.transcript:
            return False
        try:
            self.store.save(
                self.episode.media_url,
                self.transcript,
                summary=self.summary or None,
                segments=self.segments,
            )
        except StorageError as exc:
            logging.warning("Could not save transcript for %s: %s", self.episode.title, exc)
            return False
        self.is_saved = True
        return True

    # Transcription

    async def transcribe(self) -> AsyncIterator[TranscriptionRun]:
        """Run the pipeline for this episode, mirroring each snapshot.

        Once the run ends, whatever text was recognised is saved, including
        the partial output of a failed run.
        """

        if not self.episode.media_url:
            return
        async for run in self.pipeline.transcribe(self.episode.media_url):
            if run is not self.pipeline.run:
                continue
            self.run = run
            self.transcript = run.text
            self.segments = run.segments
            yield run
        if self.run is not None and self.run is self.pipeline.run and self.run.status.is_terminal:
            self.save()

    async def run_transcription(self) -> Optional[TranscriptionRun]:
        async for _run in self.transcribe():
            pass
        return self.run

    # Summary

    async def summarize(self) -> str:
        """Generate a summary, from timestamped segments when available.

        Errors from the summary service propagate after being recorded in
        ``summary_error``.
        """

        if not self.transcript:
            return ""
        self.is_summarizing = True
        self.summary_error = None
        try:
            if self.segments:
                summary = await self.summarizer.summarise_segments(self.segments)
            else:
                summary = await self.summarizer.summarise(self.transcript)
        except Exception as exc:
            self.summary_error = str(exc)
            raise
        finally:
            self.is_summarizing = False
        self.summary = summary
        self.save()
        return summary

    def summary_lines(self) -> List[List[Token]]:
        return parse_lines(self.summary)

    def summary_timecodes(self) -> List[TimecodeToken]:
        return [t for line in self.summary_lines() for t in line if isinstance(t, TimecodeToken)]

    # Seeking

    async def seek_to(self, seconds: float) -> bool:
        """Seek to ``seconds``, loading this episode first if it is not active."""

        state = self.engine.state
        active = state.episode is not None and state.episode.id == self.episode.id
        if not active or state.duration <= 0:
            if not await self.engine.play(self.episode):
                return False
            if not await self.engine.wait_for_duration():
                logging.debug("Duration unknown for %s; cannot seek", self.episode.title)
                return False
        if not self.engine.seek_to_seconds(seconds):
            return False
        if self.engine.state.phase is TransportPhase.PAUSED:
            self.engine.resume()
        return True

    async def activate_timecode(self, token: TimecodeToken) -> bool:
        return await self.seek_to(token.seconds)

    async def activate_line(self, tokens: Sequence[Token]) -> bool:
        """A summary line seeks to its first timecode; lines without one do nothing."""

        token = first_timecode(list(tokens))
        if token is None:
            return False
        return await self.seek_to(token.seconds)

    async def activate_segment(self, segment: TranscriptSegment) -> bool:
        return await self.seek_to(segment.start)
