"""Parse bracketed ``[MM:SS]`` / ``[H:MM:SS]`` timecodes out of generated text.

The parser never fails: anything that is not a well formed timecode is kept as
literal text, and concatenating the ``raw`` value of every token reproduces the
input exactly.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Optional, Union

_TIMECODE_RE = re.compile(r"\[(\d{1,2}:\d{2}(?::\d{2})?)\]")


@dataclass(frozen=True, slots=True)
class TextToken:
    text: str

    @property
    def raw(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class TimecodeToken:
    display: str
    seconds: float

    @property
    def raw(self) -> str:
        return self.display


Token = Union[TextToken, TimecodeToken]


def clock_to_seconds(clock: str) -> Optional[float]:
    """Convert ``MM:SS`` or ``H:MM:SS`` to seconds, ``None`` for other shapes."""

    parts = clock.split(":")
    if not all(part.isdigit() for part in parts):
        return None
    values = [int(part) for part in parts]
    if len(values) == 2:
        return float(values[0] * 60 + values[1])
    if len(values) == 3:
        return float(values[0] * 3600 + values[1] * 60 + values[2])
    return None


def parse(text: str) -> List[Token]:
    """Split ``text`` into literal text and timecode tokens, in order."""

    tokens: List[Token] = []
    last_end = 0
    for match in _TIMECODE_RE.finditer(text):
        seconds = clock_to_seconds(match.group(1))
        if seconds is None:  # pragma: no cover - the pattern only admits two or three groups
            continue
        if match.start() > last_end:
            tokens.append(TextToken(text[last_end : match.start()]))
        tokens.append(TimecodeToken(display=match.group(0), seconds=seconds))
        last_end = match.end()

    if last_end < len(text):
        tokens.append(TextToken(text[last_end:]))
    return tokens


def parse_lines(text: str) -> List[List[Token]]:
    """Tokenise each line separately; blank lines yield an empty token list."""

    return [parse(line) if line.strip() else [] for line in text.split("\n")]


def first_timecode(tokens: List[Token]) -> Optional[TimecodeToken]:
    for token in tokens:
        if isinstance(token, TimecodeToken):
            return token
    return None


def format_timestamp(seconds: float) -> str:
    """Render seconds as ``M:SS`` (or ``H:MM:SS`` from one hour on)."""

    if math.isnan(seconds) or math.isinf(seconds):
        return "--:--"
    total = max(int(seconds), 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
