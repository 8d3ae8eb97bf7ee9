"""Summaries of episode transcripts, optionally anchored with ``[M:SS]`` timecodes."""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Iterable, List, Optional, Protocol, Sequence

from .config import load_config
from .models import Config, TranscriptSegment
from .timecodes import format_timestamp

_WORD_RE = re.compile(r"[\w']+")

SUMMARY_PROMPT = (
    "You are an expert podcast analyst. Summarize the following podcast transcript into "
    "a concise, well-structured summary. Include the key topics discussed, main takeaways, "
    "and any notable quotes or insights. Use bullet points for clarity."
)

TIMESTAMPED_PROMPT = (
    SUMMARY_PROMPT + " Each transcript line starts with a [M:SS] or [H:MM:SS] timestamp. "
    "Start every bullet point with the timestamp, in square brackets, of the moment it refers to."
)


class EmptySummaryError(RuntimeError):
    """Raised when the summary backend returns no text."""


class SummaryService(Protocol):
    async def summarise(self, transcript: str) -> str:
        ...

    async def summarise_segments(self, segments: Sequence[TranscriptSegment]) -> str:
        ...


def format_segments(segments: Iterable[TranscriptSegment]) -> str:
    """Render segments as ``[M:SS] text`` lines."""

    return "\n".join(f"[{format_timestamp(s.start)}] {s.text}" for s in segments)


class Summarizer:
    """A naive frequency based summariser.

    Sentences are ranked by TF-IDF inspired word importance scoring and the
    highest ranking ones are returned in their original order. For timestamped
    input each segment counts as a sentence and keeps its ``[M:SS]`` anchor, so
    the summary can be used to seek in the episode.
    """

    def __init__(self, max_sentences: int = 3) -> None:
        self.max_sentences = max_sentences

    async def summarise(self, transcript: str) -> str:
        sentences = _split_sentences(transcript)
        if not sentences:
            raise EmptySummaryError("There is nothing to summarise.")
        return " ".join(sentences[i] for i in self._select(sentences))

    async def summarise_segments(self, segments: Sequence[TranscriptSegment]) -> str:
        usable = [s for s in segments if s.text.strip()]
        if not usable:
            raise EmptySummaryError("There is nothing to summarise.")
        chosen = self._select([s.text for s in usable])
        return "\n".join(f"- [{format_timestamp(usable[i].start)}] {usable[i].text}" for i in chosen)

    def _select(self, sentences: List[str]) -> List[int]:
        if len(sentences) <= self.max_sentences:
            return list(range(len(sentences)))
        scores = self._score_sentences(sentences)
        ranked = sorted(range(len(sentences)), key=lambda i: scores[i], reverse=True)
        return sorted(ranked[: self.max_sentences])

    def _score_sentences(self, sentences: List[str]) -> List[float]:
        words_per_sentence = [_tokenize(sentence) for sentence in sentences]
        tf_scores = [_term_frequency(words) for words in words_per_sentence]
        idf_scores = _inverse_document_frequency(words_per_sentence)

        sentence_scores = []
        for words, tf in zip(words_per_sentence, tf_scores):
            score = 0.0
            for word in words:
                score += tf.get(word, 0.0) * idf_scores.get(word, 0.0)
            sentence_scores.append(score)
        return sentence_scores


class OpenAISummarizer:
    """Hosted summaries through the OpenAI chat completions API."""

    def __init__(self, model: str, api_key: Optional[str]) -> None:
        if api_key is None:
            raise RuntimeError("An OpenAI API key is required for hosted summaries.")
        try:
            from openai import AsyncOpenAI
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("The `openai` package is required for hosted summaries.") from exc
        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model

    async def summarise(self, transcript: str) -> str:
        return await self._complete(SUMMARY_PROMPT, f"TRANSCRIPT:\n{transcript}")

    async def summarise_segments(self, segments: Sequence[TranscriptSegment]) -> str:
        return await self._complete(TIMESTAMPED_PROMPT, f"TRANSCRIPT:\n{format_segments(segments)}")

    async def _complete(self, instructions: str, content: str) -> str:  # pragma: no cover - network call
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": instructions},
                {"role": "user", "content": content},
            ],
        )
        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            raise EmptySummaryError("The summary service returned an empty response.")
        return text.strip()


def get_summarizer(preferred: Optional[str] = None, config: Optional[Config] = None) -> SummaryService:
    config = config or load_config()
    backend_name = preferred or config.summary_backend
    if backend_name == "openai":
        return OpenAISummarizer(config.summary_model, config.openai_api_key)
    return Summarizer()


def _split_sentences(text: str) -> List[str]:
    text = text.strip()
    if not text:
        return []
    sentences = re.split(r"(?<=[.!?])\s+", text)
    return [s.strip() for s in sentences if s.strip()]


def _tokenize(sentence: str) -> List[str]:
    return [match.group(0).lower() for match in _WORD_RE.finditer(sentence)]


def _term_frequency(words: Iterable[str]) -> Counter:
    counter: Counter[str] = Counter(words)
    total = sum(counter.values()) or 1
    return Counter({word: count / total for word, count in counter.items()})


def _inverse_document_frequency(docs: List[List[str]]) -> Counter:
    doc_count = len(docs)
    counter: Counter[str] = Counter()
    for doc in docs:
        counter.update(set(doc))
    return Counter({word: math.log(doc_count / (1 + count)) + 1 for word, count in counter.items()})
