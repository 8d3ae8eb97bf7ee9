"""Incremental speech recognition backends."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Protocol

from .config import load_config
from .models import Config

# Language codes understood by Whisper models, local and hosted alike.
WHISPER_LANGUAGES = (
    "en", "zh", "de", "es", "ru", "ko", "fr", "ja", "pt", "tr", "pl", "ca", "nl", "ar",
    "sv", "it", "id", "hi", "fi", "vi", "he", "uk", "el", "ms", "cs", "ro", "da", "hu",
    "ta", "no", "th", "ur", "hr", "bg", "lt", "la", "mi", "ml", "cy", "sk", "te", "fa",
    "lv", "bn", "sr", "az", "sl", "kn", "et", "mk", "br", "eu", "is", "hy", "ne", "mn",
    "bs", "kk", "sq", "sw", "gl", "mr", "pa", "si", "km", "sn", "yo", "so", "af", "oc",
    "ka", "be", "tg", "sd", "gu", "am", "yi", "lo", "uz", "fo", "ht", "ps", "tk", "nn",
    "mt", "sa", "lb", "my", "bo", "tl", "mg", "as", "tt", "haw", "ln", "ha", "ba", "jw",
    "su", "yue",
)

ProgressCallback = Callable[[float], None]


class TranscriptionError(RuntimeError):
    """Base class for failures that end a transcription run."""


class LocaleUnsupportedError(TranscriptionError):
    """Raised when no recognition language can be resolved."""


class AssetInstallError(TranscriptionError):
    """Raised when model assets cannot be installed."""


class RecognitionError(TranscriptionError):
    """Raised when the recogniser fails while processing audio."""


@dataclass(frozen=True, slots=True)
class RecognitionResult:
    """One speech delimited result.

    ``start`` may be ``None`` for recognisers that only report timing through
    the processed-range progress callback.
    """

    text: str
    start: Optional[float] = None
    end: Optional[float] = None


class AssetInstallation(Protocol):
    async def download_and_install(self) -> None:
        """Fetch whatever the recogniser needs before it can run."""


class IncrementalTranscriber(Protocol):
    """Capability consumed by the transcription pipeline."""

    name: str

    def is_available(self) -> bool:
        ...

    async def supported_locale(self, locale: str) -> Optional[str]:
        """Return the recogniser's equivalent of ``locale`` or ``None``."""

    async def installed_locales(self) -> List[str]:
        ...

    async def asset_installation(self, locale: str) -> Optional[AssetInstallation]:
        """Return a pending installation, or ``None`` when assets are present."""

    def open_session(
        self, audio_path: Path, locale: str, on_progress: ProgressCallback
    ) -> AsyncIterator[RecognitionResult]:
        """Yield results as they are recognised.

        ``on_progress`` receives the number of seconds of audio processed so far.
        """


def language_code(locale: str) -> str:
    """Reduce ``en_US.UTF-8`` or ``en-US`` to ``en``."""

    base = locale.split(".", 1)[0].replace("_", "-")
    return base.split("-", 1)[0].lower()


class _ModelDownload:
    def __init__(self, model_name: str) -> None:
        self.model_name = model_name

    async def download_and_install(self) -> None:
        from faster_whisper import download_model

        await asyncio.to_thread(download_model, self.model_name)


class FasterWhisperTranscriber:
    """Local incremental transcription using the `faster-whisper` package."""

    name = "faster"

    def __init__(self, model_name: str, device: str = "auto") -> None:
        self.model_name = model_name
        self.device = device
        try:
            import faster_whisper  # noqa: F401
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `faster-whisper` package is required for local transcription."
            ) from exc
        self._model = None

    @property
    def _languages(self) -> List[str]:
        if self.model_name.endswith(".en"):
            return ["en"]
        return list(WHISPER_LANGUAGES)

    def is_available(self) -> bool:
        return True

    async def supported_locale(self, locale: str) -> Optional[str]:
        code = language_code(locale)
        return code if code in self._languages else None

    async def installed_locales(self) -> List[str]:
        if not await self._is_cached():
            return []
        return self._languages

    async def asset_installation(self, locale: str) -> Optional[AssetInstallation]:
        if await self._is_cached():
            return None
        return _ModelDownload(self.model_name)

    async def _is_cached(self) -> bool:
        from faster_whisper import download_model

        try:
            await asyncio.to_thread(download_model, self.model_name, local_files_only=True)
        except Exception:  # noqa: BLE001 - any lookup failure means "not downloaded"
            return False
        return True

    def _load_model(self):
        if self._model is None:
            from faster_whisper import WhisperModel

            self._model = WhisperModel(self.model_name, device=self.device, compute_type="default")
        return self._model

    async def open_session(
        self, audio_path: Path, locale: str, on_progress: ProgressCallback
    ) -> AsyncIterator[RecognitionResult]:
        model = await asyncio.to_thread(self._load_model)
        segments, _info = await asyncio.to_thread(
            model.transcribe, str(audio_path), language=locale, vad_filter=True
        )
        iterator = iter(segments)
        while True:
            segment = await asyncio.to_thread(next, iterator, None)
            if segment is None:
                break
            on_progress(float(segment.end))
            yield RecognitionResult(
                text=segment.text.strip(), start=float(segment.start), end=float(segment.end)
            )


class OpenAITranscriber:
    """Hosted transcription using the OpenAI API, replayed segment by segment."""

    name = "openai"

    def __init__(self, model: str, api_key: Optional[str]) -> None:
        if api_key is None:
            raise RuntimeError("An OpenAI API key is required for this backend.")
        try:
            from openai import AsyncOpenAI
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("The `openai` package is required for this backend.") from exc
        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model

    def is_available(self) -> bool:
        return True

    async def supported_locale(self, locale: str) -> Optional[str]:
        code = language_code(locale)
        return code if code in WHISPER_LANGUAGES else None

    async def installed_locales(self) -> List[str]:
        return list(WHISPER_LANGUAGES)

    async def asset_installation(self, locale: str) -> Optional[AssetInstallation]:
        return None

    async def open_session(
        self, audio_path: Path, locale: str, on_progress: ProgressCallback
    ) -> AsyncIterator[RecognitionResult]:  # pragma: no cover - network call
        with audio_path.open("rb") as fh:
            response = await self._client.audio.transcriptions.create(
                model=self._model,
                file=fh,
                language=locale,
                response_format="verbose_json",
                timestamp_granularities=["segment"],
            )
        segments = getattr(response, "segments", None) or []
        if not segments:
            on_progress(float(getattr(response, "duration", 0.0) or 0.0))
            yield RecognitionResult(text=response.text.strip(), start=0.0)
            return
        for segment in segments:
            on_progress(float(segment.end))
            yield RecognitionResult(
                text=segment.text.strip(), start=float(segment.start), end=float(segment.end)
            )


class UnavailableTranscriber:
    """Fallback used when no recognition engine is available."""

    name = "unavailable"

    def __init__(self) -> None:
        self._notice = (
            "Speech transcription is not available. Install `faster-whisper` for offline "
            "usage or configure an OpenAI API key to use the hosted service."
        )

    def is_available(self) -> bool:
        return False

    async def supported_locale(self, locale: str) -> Optional[str]:
        return None

    async def installed_locales(self) -> List[str]:
        return []

    async def asset_installation(self, locale: str) -> Optional[AssetInstallation]:
        return None

    async def open_session(
        self, audio_path: Path, locale: str, on_progress: ProgressCallback
    ) -> AsyncIterator[RecognitionResult]:
        raise RecognitionError(self._notice)
        yield  # pragma: no cover


def get_transcriber(
    preferred: Optional[str] = None, config: Optional[Config] = None
) -> IncrementalTranscriber:
    """Return the best available incremental transcriber."""

    config = config or load_config()
    backend_name = preferred or config.backend

    if backend_name in {"faster", "auto"}:
        try:
            return FasterWhisperTranscriber(config.whisper_model, device=config.whisper_device)
        except Exception as exc:
            if backend_name == "faster":
                raise RuntimeError(
                    f"Failed to initialise faster-whisper backend: {exc}. "
                    "Ensure `faster-whisper` is installed."
                ) from exc

    if backend_name in {"openai", "auto"}:
        try:
            return OpenAITranscriber(config.openai_model, config.openai_api_key)
        except Exception as exc:
            if backend_name == "openai":
                raise RuntimeError(
                    f"Failed to initialise OpenAI backend: {exc}. Check your API key."
                ) from exc

    return UnavailableTranscriber()
