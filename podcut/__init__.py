"""Top-level package for podcut."""

from . import config, pipeline, player, session, storage, summarizer, timecodes, transcriber

__all__ = [
    "config",
    "pipeline",
    "player",
    "session",
    "storage",
    "summarizer",
    "timecodes",
    "transcriber",
]
