from typer.testing import CliRunner

from fakes import FakeFetcher, FakeTranscriber
from podcut import cli, config
from podcut.cli import app
from podcut.models import Config, TranscriptSegment
from podcut.storage import TranscriptStore

runner = CliRunner()
URL = "https://cdn.example.com/ep1.mp3"


def _configure(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "config.json")
    db_path = tmp_path / "library.db"
    config.save_config(Config(db_path=str(db_path)))
    return TranscriptStore(db_path=db_path)


def test_show_prints_summary_and_segments(tmp_path, monkeypatch):
    store = _configure(tmp_path, monkeypatch)
    store.save(
        URL,
        "Hello. Bye.",
        summary="- [0:00] Hello\n- [1:05] Bye",
        segments=[TranscriptSegment("Hello.", 0.0, 0), TranscriptSegment("Bye.", 65.0, 1)],
    )

    result = runner.invoke(app, ["show", URL])

    assert result.exit_code == 0
    assert "[1:05] Bye." in result.output
    assert "Summary:" in result.output


def test_timecodes_lists_offsets(tmp_path, monkeypatch):
    store = _configure(tmp_path, monkeypatch)
    store.save(URL, "Text", summary="- [2:15] a [1:02:03] b")

    result = runner.invoke(app, ["timecodes", URL])

    assert result.exit_code == 0
    assert "135s" in result.output
    assert "3723s" in result.output


def test_show_missing_transcript_fails(tmp_path, monkeypatch):
    _configure(tmp_path, monkeypatch)

    result = runner.invoke(app, ["show", URL])

    assert result.exit_code == 1


def test_list_and_delete(tmp_path, monkeypatch):
    store = _configure(tmp_path, monkeypatch)
    store.save(URL, "Text")

    listed = runner.invoke(app, ["list"])
    assert URL in listed.output

    deleted = runner.invoke(app, ["delete", URL])
    assert deleted.exit_code == 0
    assert store.load(URL) is None


def _offline_transcription(monkeypatch):
    monkeypatch.setattr(cli, "get_transcriber", lambda backend, config: FakeTranscriber())
    monkeypatch.setattr(cli, "HttpFetcher", lambda timeout: FakeFetcher())


def test_transcribe_prints_segments_and_saves(tmp_path, monkeypatch):
    store = _configure(tmp_path, monkeypatch)
    _offline_transcription(monkeypatch)

    result = runner.invoke(app, ["transcribe", URL, "--summarise"])

    assert result.exit_code == 0, result.output
    assert "[0:00] Hello" in result.output
    assert "[0:10] world" in result.output
    assert "Summary:" in result.output
    record = store.load(URL)
    assert record.transcript == "Hello world"
    assert record.summary == "- [0:00] Hello\n- [0:10] world"
    assert [s.start for s in record.segments] == [0.0, 10.0]


def test_transcribe_failure_exits_with_error(tmp_path, monkeypatch):
    store = _configure(tmp_path, monkeypatch)
    monkeypatch.setattr(
        cli, "get_transcriber", lambda backend, config: FakeTranscriber(available=False)
    )
    monkeypatch.setattr(cli, "HttpFetcher", lambda timeout: FakeFetcher())

    result = runner.invoke(app, ["transcribe", URL])

    assert result.exit_code == 1
    assert store.load(URL) is None


def test_summarise_refreshes_stored_summary(tmp_path, monkeypatch):
    store = _configure(tmp_path, monkeypatch)
    store.save(
        URL,
        "Intro. Outro.",
        segments=[TranscriptSegment("Intro.", 0.0, 0), TranscriptSegment("Outro.", 95.0, 1)],
    )

    result = runner.invoke(app, ["summarise", URL])

    assert result.exit_code == 0, result.output
    assert "Summary updated:" in result.output
    record = store.load(URL)
    assert record.summary == "- [0:00] Intro.\n- [1:35] Outro."
    assert len(record.segments) == 2
