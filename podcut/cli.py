"""Command line interface for podcut."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TextColumn

from . import config as config_mod
from .config import ConfigError
from .models import Config, RunStatus
from .pipeline import HttpFetcher, TranscriptionPipeline
from .storage import DB_PATH, StorageError, TranscriptStore
from .summarizer import EmptySummaryError, get_summarizer
from .timecodes import TimecodeToken, format_timestamp, parse_lines
from .transcriber import get_transcriber

app = typer.Typer(add_completion=False, help="Transcribe podcast episodes and summarise them with timecodes.")
console = Console()


def _store(cfg: Config) -> TranscriptStore:
    return TranscriptStore(db_path=Path(cfg.db_path) if cfg.db_path else DB_PATH)


def _load_config() -> Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _print_summary(summary: str) -> None:
    for tokens in parse_lines(summary):
        line = "".join(
            f"[bold magenta]{escape(t.display)}[/bold magenta]" if isinstance(t, TimecodeToken) else escape(t.raw)
            for t in tokens
        )
        console.print(line)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


@app.command()
def transcribe(
    url: str = typer.Argument(..., help="Address of the episode audio."),
    backend: Optional[str] = typer.Option(None, "--backend", help="Force a recognition backend (faster, openai)."),
    save: bool = typer.Option(True, "--save/--no-save", help="Persist the transcript to the library."),
    summarise: bool = typer.Option(False, "--summarise/--no-summarise", help="Create a timestamped summary."),
) -> None:
    """Download and transcribe an episode, showing progress as it goes."""

    cfg = _load_config()
    try:
        transcriber = get_transcriber(backend, config=cfg)
    except RuntimeError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    pipeline = TranscriptionPipeline(
        transcriber, HttpFetcher(timeout=cfg.download_timeout), config=cfg
    )

    async def _run():
        final = None
        with Progress(
            TextColumn("{task.description}"), BarColumn(), TextColumn("{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task("Preparing…", total=1.0)
            async for run in pipeline.transcribe(url):
                progress.update(task, completed=run.fraction_complete, description=run.progress_text)
                final = run
        return final

    run = asyncio.run(_run())
    if run is None:
        raise typer.Exit(code=1)

    if run.segments:
        for segment in run.segments:
            typer.echo(f"[{format_timestamp(segment.start)}] {segment.text}")
    elif run.text:
        typer.echo(run.text)

    summary = None
    if summarise and run.text:
        try:
            summarizer = get_summarizer(config=cfg)
            if run.segments:
                summary = asyncio.run(summarizer.summarise_segments(run.segments))
            else:
                summary = asyncio.run(summarizer.summarise(run.text))
        except (EmptySummaryError, RuntimeError) as exc:
            typer.secho(f"Summary failed: {exc}", fg=typer.colors.RED, err=True)
        else:
            typer.secho("\nSummary:", fg=typer.colors.GREEN)
            _print_summary(summary)

    if save and run.text:
        try:
            _store(cfg).save(url, run.text, summary=summary, segments=run.segments)
        except StorageError as exc:
            typer.secho(str(exc), fg=typer.colors.RED, err=True)
        else:
            typer.secho("\nSaved transcript.", fg=typer.colors.BLUE)

    if run.status is RunStatus.FAILED:
        typer.secho(run.error or "Transcription failed.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command("list")
def list_command() -> None:
    """List stored transcripts."""

    rows = list(_store(_load_config()).list_records())
    if not rows:
        typer.echo("No transcripts found. Use `podcut transcribe` to create one.")
        return
    header = f"{'Saved':<17}  {'Summary':<7}  {'Media'}"
    typer.echo(header)
    typer.echo("-" * len(header))
    for record in rows:
        saved = record.saved_at.strftime("%Y-%m-%d %H:%M")
        typer.echo(f"{saved:<17}  {'yes' if record.summary else 'no':<7}  {record.media_url}")


@app.command()
def show(url: str = typer.Argument(..., help="Address of the episode audio.")) -> None:
    """Show a stored transcript and its summary."""

    record = _store(_load_config()).load(url)
    if record is None:
        typer.secho(f"No transcript stored for {url}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.secho(f"Media: {record.media_url}", fg=typer.colors.BLUE)
    typer.echo(f"Saved: {record.saved_at:%Y-%m-%d %H:%M}")
    if record.summary:
        typer.secho("\nSummary:", fg=typer.colors.GREEN)
        _print_summary(record.summary)
    typer.echo("\nTranscript:")
    if record.segments:
        for segment in record.segments:
            typer.echo(f"[{format_timestamp(segment.start)}] {segment.text}")
    else:
        typer.echo(record.transcript)


@app.command()
def timecodes(url: str = typer.Argument(..., help="Address of the episode audio.")) -> None:
    """List the timecodes of a stored summary with their offsets in seconds."""

    record = _store(_load_config()).load(url)
    if record is None or not record.summary:
        typer.secho(f"No summary stored for {url}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    for tokens in parse_lines(record.summary):
        for token in tokens:
            if isinstance(token, TimecodeToken):
                typer.echo(f"{token.display:<10} {token.seconds:>8.0f}s")


@app.command()
def delete(url: str = typer.Argument(..., help="Address of the episode audio.")) -> None:
    """Delete a stored transcript."""

    try:
        _store(_load_config()).delete(url)
    except StorageError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho("Transcript deleted.", fg=typer.colors.BLUE)


@app.command()
def summarise(
    url: str = typer.Argument(..., help="Address of the episode audio."),
    backend: Optional[str] = typer.Option(None, "--backend", help="Summary backend (extractive, openai)."),
) -> None:
    """Generate or refresh the summary for a stored transcript."""

    cfg = _load_config()
    store = _store(cfg)
    record = store.load(url)
    if record is None:
        typer.secho(f"No transcript stored for {url}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        summarizer = get_summarizer(backend, config=cfg)
        if record.segments:
            summary = asyncio.run(summarizer.summarise_segments(record.segments))
        else:
            summary = asyncio.run(summarizer.summarise(record.transcript))
    except (EmptySummaryError, RuntimeError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    try:
        store.save(url, record.transcript, summary=summary)
    except StorageError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
    typer.secho("Summary updated:", fg=typer.colors.GREEN)
    _print_summary(summary)


@app.command()
def config(
    backend: Optional[str] = typer.Option(None, help="Recognition backend (auto, faster, openai)."),
    whisper_model: Optional[str] = typer.Option(None, help="Whisper model name for local transcription."),
    openai_model: Optional[str] = typer.Option(None, help="OpenAI model id for hosted transcription."),
    openai_api_key: Optional[str] = typer.Option(None, help="API key for the OpenAI backends."),
    summary_backend: Optional[str] = typer.Option(None, help="Summary backend (extractive, openai)."),
    fallback_locale: Optional[str] = typer.Option(None, help="Locale tried after the device locale."),
    skip_forward_seconds: Optional[float] = typer.Option(None, help="Skip forward interval in seconds."),
    skip_backward_seconds: Optional[float] = typer.Option(None, help="Skip backward interval in seconds."),
    download_timeout: Optional[float] = typer.Option(None, help="HTTP timeout (seconds) for audio downloads."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "backend": backend,
            "whisper_model": whisper_model,
            "openai_model": openai_model,
            "openai_api_key": openai_api_key,
            "summary_backend": summary_backend,
            "fallback_locale": fallback_locale,
            "skip_forward_seconds": skip_forward_seconds,
            "skip_backward_seconds": skip_backward_seconds,
            "download_timeout": download_timeout,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        typer.echo(json.dumps(asdict(cfg), indent=2, default=str))
        return

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def backends() -> None:
    """List available recognition backends on this system."""

    cfg = _load_config()
    available = []
    for name in ("faster", "openai"):
        try:
            get_transcriber(name, config=cfg)
        except Exception:
            continue
        else:
            available.append(name)

    if not available:
        typer.echo("No recognition backends available. Configure one via `podcut config`.")
    else:
        typer.echo("Available backends: " + ", ".join(available))


if __name__ == "__main__":  # pragma: no cover
    app()
