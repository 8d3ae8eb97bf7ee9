"""Download an episode and transcribe it incrementally.

``TranscriptionPipeline.transcribe`` is an async generator of
:class:`~podcut.models.TranscriptionRun` snapshots. Every call starts a fresh
run; starting a new run supersedes the previous one, whose generator stops at
its next step without publishing anything further.
"""

from __future__ import annotations

import asyncio
import locale as locale_mod
import logging
import os
import tempfile
from contextlib import aclosing
from dataclasses import replace
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Protocol
from urllib.parse import urlparse

import httpx
import mutagen

from .models import Config, RunStatus, TranscriptionRun, TranscriptSegment
from .transcriber import (
    AssetInstallation,
    AssetInstallError,
    IncrementalTranscriber,
    LocaleUnsupportedError,
    RecognitionError,
    TranscriptionError,
)

NO_LANGUAGE_MESSAGE = (
    "No supported speech language is available. Install a language for the "
    "selected recognition backend."
)


class DownloadError(TranscriptionError):
    """Raised when the episode audio cannot be fetched."""


class ContentFetcher(Protocol):
    async def fetch(self, url: str, destination: Path) -> None:
        """Write the full payload behind ``url`` to ``destination``."""


class HttpFetcher:
    """Stream remote audio to disk with httpx."""

    def __init__(self, timeout: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, url: str, destination: Path) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self._transport
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with destination.open("wb") as output:
                        async for chunk in response.aiter_bytes():
                            output.write(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download audio: {exc}") from exc
        except OSError as exc:
            raise DownloadError(f"Failed to store downloaded audio: {exc}") from exc


def probe_duration(path: Path) -> float:
    """Return the audio length in seconds, ``0`` when it cannot be read."""

    try:
        audio = mutagen.File(path)
    except Exception as exc:  # noqa: BLE001 - mutagen raises many unrelated types
        logging.debug("Could not probe duration of %s: %s", path, exc)
        return 0.0
    if audio is None or getattr(audio, "info", None) is None:
        return 0.0
    return max(float(getattr(audio.info, "length", 0.0) or 0.0), 0.0)


def device_locale() -> Optional[str]:
    try:
        current = locale_mod.getlocale()[0]
    except ValueError as exc:
        logging.debug("Could not read the device locale: %s", exc)
        current = None
    if current:
        return current
    for name in ("LC_ALL", "LC_MESSAGES", "LANG"):
        value = os.environ.get(name)
        if value and value not in {"C", "POSIX"}:
            return value
    return None


def _temp_audio_path(media_url: str) -> Path:
    suffix = Path(urlparse(media_url).path).suffix or ".mp3"
    fd, filename = tempfile.mkstemp(suffix=suffix, prefix="podcut-")
    os.close(fd)
    return Path(filename)


class TranscriptionPipeline:
    """Orchestrate download, locale resolution, model install and recognition."""

    def __init__(
        self,
        transcriber: IncrementalTranscriber,
        fetcher: Optional[ContentFetcher] = None,
        *,
        config: Optional[Config] = None,
        locale_provider: Callable[[], Optional[str]] = device_locale,
        duration_probe: Callable[[Path], float] = probe_duration,
    ) -> None:
        self.config = config or Config()
        self.transcriber = transcriber
        self.fetcher = fetcher or HttpFetcher(timeout=self.config.download_timeout)
        self._locale_provider = locale_provider
        self._duration_probe = duration_probe
        self._generation = 0
        self._run: Optional[TranscriptionRun] = None

    @property
    def run(self) -> Optional[TranscriptionRun]:
        """The latest snapshot of the current run."""
        return self._run

    def cancel(self) -> None:
        """Supersede the active run without starting a new one."""
        self._generation += 1

    def _publish(self, generation: int, run: TranscriptionRun) -> TranscriptionRun:
        if generation == self._generation:
            self._run = run
            logging.debug("Run %s: %s %.2f", run.media_url, run.status.value, run.fraction_complete)
        return run

    async def resolve_locale(self) -> str:
        """Try the device locale, then the fallback locale, then anything installed."""

        try:
            device = self._locale_provider()
        except ValueError as exc:
            logging.debug("Device locale unavailable: %s", exc)
            device = None
        for candidate in (device, self.config.fallback_locale):
            if not candidate:
                continue
            resolved = await self.transcriber.supported_locale(candidate)
            if resolved:
                return resolved
        installed = await self.transcriber.installed_locales()
        if installed:
            return installed[0]
        raise LocaleUnsupportedError(NO_LANGUAGE_MESSAGE)

    async def _install_assets(self, installation: AssetInstallation) -> None:
        try:
            await asyncio.wait_for(
                installation.download_and_install(), timeout=self.config.asset_install_timeout
            )
        except asyncio.TimeoutError as exc:
            raise AssetInstallError(
                f"Timed out after {self.config.asset_install_timeout:g}s installing the speech model."
            ) from exc
        except TranscriptionError:
            raise
        except Exception as exc:
            raise AssetInstallError(f"Failed to install the speech model: {exc}") from exc

    async def transcribe(self, media_url: str) -> AsyncIterator[TranscriptionRun]:
        """Yield a snapshot after every state change of a new run for ``media_url``."""

        self._generation += 1
        generation = self._generation
        run = TranscriptionRun(media_url=media_url)
        yield self._publish(generation, run)

        audio_path: Optional[Path] = None
        try:
            if not self.transcriber.is_available():
                raise RecognitionError("Speech transcription is not available on this device.")

            run = replace(run, status=RunStatus.DOWNLOADING, progress_text="Downloading audio…")
            yield self._publish(generation, run)
            audio_path = _temp_audio_path(media_url)
            await self.fetcher.fetch(media_url, audio_path)
            if generation != self._generation:
                return

            run = replace(run, progress_text="Setting up transcriber…")
            yield self._publish(generation, run)
            locale = await self.resolve_locale()

            installation = await self.transcriber.asset_installation(locale)
            if installation is not None:
                run = replace(
                    run, status=RunStatus.INSTALLING_MODEL, progress_text="Downloading speech model…"
                )
                yield self._publish(generation, run)
                await self._install_assets(installation)
            if generation != self._generation:
                return

            total = await asyncio.to_thread(self._duration_probe, audio_path)
            run = replace(run, status=RunStatus.TRANSCRIBING, progress_text="Transcribing…")
            yield self._publish(generation, run)

            processed = 0.0

            def on_progress(seconds: float) -> None:
                nonlocal processed
                processed = max(processed, float(seconds))

            boundary = 0.0
            session = self.transcriber.open_session(audio_path, locale, on_progress)
            async with aclosing(session) as results:
                async for result in results:
                    if generation != self._generation:
                        logging.debug("Dropping results of superseded run for %s", media_url)
                        return
                    start = result.start if result.start is not None else boundary
                    if run.segments:
                        start = max(start, run.segments[-1].start)
                    boundary = max(processed, result.end or 0.0)
                    text = result.text.strip()
                    if text:
                        segment = TranscriptSegment(text=text, start=start, ordinal=len(run.segments))
                        run = replace(
                            run,
                            text=f"{run.text} {text}" if run.text else text,
                            segments=run.segments + (segment,),
                        )
                    if total > 0:
                        fraction = min(max(processed / total, 0.0), 1.0)
                        run = replace(run, fraction_complete=max(run.fraction_complete, fraction))
                    run = replace(
                        run, progress_text=f"Transcribing… {int(run.fraction_complete * 100)}%"
                    )
                    yield self._publish(generation, run)

            if generation != self._generation:
                return
            run = replace(run, status=RunStatus.DONE, fraction_complete=1.0, progress_text="Done")
            logging.info("Transcribed %s into %d segments", media_url, len(run.segments))
            yield self._publish(generation, run)

        except TranscriptionError as exc:
            yield self._fail(generation, run, str(exc))
        except Exception as exc:
            logging.exception("Transcription of %s failed", media_url)
            yield self._fail(generation, run, f"Transcription failed: {exc}")
        finally:
            if audio_path is not None:
                try:
                    audio_path.unlink(missing_ok=True)
                except OSError as exc:
                    logging.warning("Could not remove temporary audio %s: %s", audio_path, exc)

    def _fail(self, generation: int, run: TranscriptionRun, reason: str) -> TranscriptionRun:
        logging.warning("Transcription of %s failed: %s", run.media_url, reason)
        failed = replace(run, status=RunStatus.FAILED, progress_text="Failed", error=reason)
        return self._publish(generation, failed)
