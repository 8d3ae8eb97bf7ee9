import pytest

from fakes import FakeSurface, PlayerFactory
from podcut.models import Config, Episode, PlaybackState, TransportPhase
from podcut.player import PlaybackEngine, RemoteCommand

EPISODE = Episode(id="ep-1", title="Volcanoes", media_url="https://cdn.example.com/ep1.mp3")
OTHER = Episode(id="ep-2", title="Glaciers", media_url="https://cdn.example.com/ep2.mp3")


def make_engine(factory=None, surface=None, **config):
    factory = factory or PlayerFactory()
    settings = Config(**{"ready_poll_interval": 0.01, "ready_timeout": 0.5, **config})
    return PlaybackEngine(factory, surface, config=settings), factory


def test_progress_is_position_over_duration():
    assert PlaybackState(position=60.0, duration=120.0).progress == 0.5
    assert PlaybackState(position=60.0, duration=0.0).progress == 0.0
    assert PlaybackState(position=500.0, duration=120.0).progress == 1.0


@pytest.mark.asyncio
async def test_play_loads_then_plays_with_resolved_duration():
    engine, factory = make_engine()

    assert await engine.play(EPISODE)
    assert engine.state.phase is TransportPhase.LOADING
    assert engine.state.duration == 0.0
    assert factory.last.url == EPISODE.media_url
    assert factory.last.playing

    assert await engine.wait_for_duration(timeout=1.0)
    assert engine.state.phase is TransportPhase.PLAYING
    assert engine.state.duration == 120.0

    factory.last.tick(60.0)
    assert engine.state.position == 60.0
    assert engine.progress == 0.5


@pytest.mark.asyncio
async def test_position_observer_uses_configured_cadence():
    engine, factory = make_engine(position_interval=0.5)
    await engine.play(EPISODE)
    assert factory.last.intervals == [0.5]


@pytest.mark.asyncio
async def test_position_is_clamped_to_duration():
    engine, factory = make_engine()
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)

    factory.last.tick(500.0)
    assert engine.state.position == 120.0


@pytest.mark.asyncio
async def test_unknown_duration_gives_zero_progress():
    engine, factory = make_engine(factory=PlayerFactory(duration=0.0))
    await engine.play(EPISODE)

    assert not await engine.wait_for_duration(timeout=1.0)
    factory.last.tick(30.0)
    assert engine.state.position == 30.0
    assert engine.progress == 0.0


@pytest.mark.asyncio
async def test_seek_requests_absolute_target():
    engine, factory = make_engine(factory=PlayerFactory(duration=200.0))
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)

    assert engine.seek(0.25)
    assert factory.last.seeks == [50.0]
    assert engine.state.position == 0.0


@pytest.mark.asyncio
async def test_seek_is_noop_without_duration():
    engine, factory = make_engine(factory=PlayerFactory(duration=0.0))
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)

    assert not engine.seek(0.5)
    assert factory.last.seeks == []


@pytest.mark.asyncio
async def test_skips_are_relative_and_clamped():
    engine, factory = make_engine()
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)
    player = factory.last

    player.time = 10.0
    engine.skip_forward()
    assert player.seeks[-1] == 40.0
    engine.skip_backward()
    assert player.seeks[-1] == 25.0
    engine.skip_backward(60)
    assert player.seeks[-1] == 0.0
    player.time = 110.0
    engine.skip_forward()
    assert player.seeks[-1] == 120.0


def test_transport_is_noop_without_episode():
    engine, factory = make_engine()

    assert not engine.pause()
    assert not engine.resume()
    assert not engine.toggle_play_pause()
    assert not engine.seek(0.5)
    assert not engine.skip_forward()
    assert engine.state.phase is TransportPhase.IDLE
    assert factory.created == []


@pytest.mark.asyncio
async def test_pause_resume_and_toggle():
    engine, factory = make_engine()
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)

    engine.pause()
    assert engine.state.phase is TransportPhase.PAUSED
    assert not factory.last.playing
    engine.resume()
    assert engine.state.phase is TransportPhase.PLAYING
    engine.toggle_play_pause()
    assert engine.state.phase is TransportPhase.PAUSED
    engine.toggle_play_pause()
    assert engine.state.phase is TransportPhase.PLAYING


@pytest.mark.asyncio
async def test_pause_while_loading_is_kept_after_ready():
    engine, _ = make_engine()
    await engine.play(EPISODE)
    engine.pause()

    await engine.wait_for_duration(timeout=1.0)
    assert engine.state.phase is TransportPhase.PAUSED


@pytest.mark.asyncio
async def test_playing_same_episode_resumes_in_place():
    engine, factory = make_engine()
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)
    engine.pause()

    assert await engine.play(EPISODE)
    assert len(factory.created) == 1
    assert engine.state.phase is TransportPhase.PLAYING


@pytest.mark.asyncio
async def test_episode_without_media_is_ignored():
    engine, factory = make_engine()

    assert not await engine.play(Episode(id="x", title="No audio"))
    assert factory.created == []
    assert engine.state.phase is TransportPhase.IDLE


@pytest.mark.asyncio
async def test_unloadable_media_keeps_current_session():
    engine, factory = make_engine()
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)

    factory.kwargs["fail"] = True
    assert not await engine.play(OTHER)
    assert engine.state.episode == EPISODE
    assert engine.state.phase is TransportPhase.PLAYING
    assert not factory.created[0].unloaded


@pytest.mark.asyncio
async def test_replacing_session_ignores_stale_callbacks():
    engine, factory = make_engine()
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)
    first = factory.last
    stale_callback = next(iter(first.observers.values()))

    await engine.play(OTHER)
    assert first.unloaded
    assert first.observers == {}
    assert engine.state.episode == OTHER
    assert engine.state.position == 0.0
    assert engine.state.duration == 0.0

    stale_callback(99.0)
    assert engine.state.position == 0.0

    await engine.wait_for_duration(timeout=1.0)
    factory.last.tick(12.0)
    assert engine.state.position == 12.0


@pytest.mark.asyncio
async def test_ready_timeout_falls_back_to_unknown_duration():
    engine, factory = make_engine(factory=PlayerFactory(ready=False), ready_timeout=0.05)
    await engine.play(EPISODE)

    assert not await engine.wait_for_duration(timeout=1.0)
    assert engine.state.duration == 0.0
    assert engine.state.phase is TransportPhase.PLAYING


@pytest.mark.asyncio
async def test_failed_readiness_check_falls_back_to_unknown_duration():
    engine, _ = make_engine(factory=PlayerFactory(broken=True))
    await engine.play(EPISODE)

    assert not await engine.wait_for_duration(timeout=1.0)
    assert engine.state.duration == 0.0
    assert engine.state.phase is TransportPhase.PLAYING
    assert engine.seek_to_seconds(10.0) is False


@pytest.mark.asyncio
async def test_now_playing_is_published_on_every_change():
    surface = FakeSurface()
    engine, _ = make_engine(surface=surface)
    assert surface.intervals == (30.0, 15.0)

    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)
    latest = surface.published[-1]
    assert latest.title == "Volcanoes"
    assert latest.duration == 120.0
    assert latest.rate == 1.0

    count = len(surface.published)
    engine.pause()
    assert len(surface.published) == count + 1
    assert surface.published[-1].rate == 0.0
    engine.seek(0.5)
    engine.skip_forward()
    assert len(surface.published) == count + 3


@pytest.mark.asyncio
async def test_remote_commands_route_through_engine():
    surface = FakeSurface()
    engine, factory = make_engine(surface=surface)
    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)
    player = factory.last

    assert surface.handler(RemoteCommand.PAUSE, None)
    assert engine.state.phase is TransportPhase.PAUSED
    assert surface.handler(RemoteCommand.PLAY, None)
    assert engine.state.phase is TransportPhase.PLAYING
    assert surface.handler(RemoteCommand.TOGGLE_PLAY_PAUSE, None)
    assert engine.state.phase is TransportPhase.PAUSED

    assert surface.handler(RemoteCommand.CHANGE_POSITION, 30.0)
    assert player.seeks[-1] == 30.0
    assert surface.handler(RemoteCommand.SKIP_FORWARD, None)
    assert player.seeks[-1] == 60.0
    assert surface.handler(RemoteCommand.SKIP_BACKWARD, 10.0)
    assert player.seeks[-1] == 50.0
    assert not surface.handler(RemoteCommand.CHANGE_POSITION, None)


@pytest.mark.asyncio
async def test_subscribers_receive_snapshots():
    engine, factory = make_engine()
    seen = []
    unsubscribe = engine.subscribe(seen.append)

    await engine.play(EPISODE)
    await engine.wait_for_duration(timeout=1.0)
    assert [s.phase for s in seen[:2]] == [TransportPhase.LOADING, TransportPhase.PLAYING]

    unsubscribe()
    count = len(seen)
    factory.last.tick(5.0)
    assert len(seen) == count


@pytest.mark.asyncio
async def test_close_tears_down_session():
    engine, factory = make_engine()
    await engine.play(EPISODE)
    engine.close()

    assert factory.last.unloaded
    assert engine.state.phase is TransportPhase.IDLE
    assert engine.state.episode is None
    assert not await engine.wait_for_duration(timeout=0.1)
