"""Playback engine: the single source of truth for what is playing and where.

The engine drives an abstract :class:`MediaPlayer`, keeps a
:class:`~podcut.models.PlaybackState` snapshot that listeners can subscribe
to, and mirrors every change onto an optional :class:`TransportSurface`
(lock screen or remote control style integration). Commands coming back
from the surface go through the same operations as local calls.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Protocol

from .models import Config, Episode, PlaybackState, TransportPhase


class MediaUnavailableError(RuntimeError):
    """Raised by media players when a locator cannot be loaded."""


class MediaPlayer(Protocol):
    """One media session. A new player is created for every loaded episode."""

    def load(self, url: str) -> None:
        ...

    def play(self) -> None:
        ...

    def pause(self) -> None:
        ...

    def seek(self, seconds: float) -> None:
        """Move to an absolute position; the player clamps to its bounds."""

    def current_time(self) -> float:
        ...

    def is_ready(self) -> bool:
        ...

    async def load_duration(self) -> float:
        ...

    def add_periodic_observer(self, interval: float, callback: Callable[[float], None]) -> Any:
        """Call ``callback`` with the current time every ``interval`` seconds."""

    def remove_observer(self, token: Any) -> None:
        ...

    def unload(self) -> None:
        ...


class RemoteCommand(str, enum.Enum):
    PLAY = "play"
    PAUSE = "pause"
    TOGGLE_PLAY_PAUSE = "toggle_play_pause"
    SKIP_FORWARD = "skip_forward"
    SKIP_BACKWARD = "skip_backward"
    CHANGE_POSITION = "change_position"


@dataclass(frozen=True, slots=True)
class NowPlayingInfo:
    title: str
    elapsed: float
    duration: float
    rate: float


CommandHandler = Callable[[RemoteCommand, Optional[float]], bool]


class TransportSurface(Protocol):
    """External now-playing display that can also send transport commands."""

    def publish(self, info: NowPlayingInfo) -> None:
        ...

    def bind(self, handler: CommandHandler, skip_forward: float, skip_backward: float) -> None:
        """Route commands to ``handler``; the intervals are advertised to the user."""


PlayerFactory = Callable[[], MediaPlayer]
StateListener = Callable[[PlaybackState], None]


class PlaybackEngine:
    def __init__(
        self,
        player_factory: PlayerFactory,
        surface: Optional[TransportSurface] = None,
        *,
        config: Optional[Config] = None,
    ) -> None:
        self.config = config or Config()
        self._player_factory = player_factory
        self._surface = surface
        self._state = PlaybackState()
        self._listeners: List[StateListener] = []
        self._player: Optional[MediaPlayer] = None
        self._observer: Any = None
        self._session = 0
        self._ready = False
        self._duration_task: Optional[asyncio.Task] = None
        self._duration_event: Optional[asyncio.Event] = None

        if surface is not None:
            surface.bind(
                self.handle_remote_command,
                self.config.skip_forward_seconds,
                self.config.skip_backward_seconds,
            )

    # State

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def progress(self) -> float:
        return self._state.progress

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for state snapshots; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)

    def _publish_now_playing(self) -> None:
        if self._surface is None:
            return
        state = self._state
        self._surface.publish(
            NowPlayingInfo(
                title=state.episode.title if state.episode else "Podcut",
                elapsed=state.position,
                duration=state.duration,
                rate=1.0 if state.is_playing else 0.0,
            )
        )

    # Transport

    async def play(self, episode: Episode) -> bool:
        """Start ``episode``, or resume it when it is already loaded.

        Returns ``False`` without touching the current session when the
        episode has no media locator or the player cannot load it.
        """

        if not episode.media_url:
            logging.debug("Episode %s has no media locator; ignoring play", episode.id)
            return False

        current = self._state.episode
        if current is not None and current.id == episode.id and self._player is not None:
            return self.resume()

        player = self._player_factory()
        try:
            player.load(episode.media_url)
        except MediaUnavailableError as exc:
            logging.warning("Cannot play %s: %s", episode.media_url, exc)
            return False

        self._teardown()
        session = self._session
        self._player = player
        self._ready = False
        self._duration_event = asyncio.Event()
        self._update(episode=episode, phase=TransportPhase.LOADING, position=0.0, duration=0.0)

        player.play()
        self._observer = player.add_periodic_observer(
            self.config.position_interval, lambda seconds: self._on_tick(session, seconds)
        )
        self._duration_task = asyncio.get_running_loop().create_task(
            self._resolve_duration(session, player, self._duration_event)
        )
        self._publish_now_playing()
        return True

    def pause(self) -> bool:
        if self._player is None:
            return False
        self._player.pause()
        self._update(phase=TransportPhase.PAUSED)
        self._publish_now_playing()
        return True

    def resume(self) -> bool:
        if self._player is None:
            return False
        self._player.play()
        self._update(phase=TransportPhase.PLAYING if self._ready else TransportPhase.LOADING)
        self._publish_now_playing()
        return True

    def toggle_play_pause(self) -> bool:
        if self._state.phase in (TransportPhase.PLAYING, TransportPhase.LOADING):
            return self.pause()
        return self.resume()

    def seek(self, progress: float) -> bool:
        """Seek to ``progress`` (0..1) of the known duration.

        The position snapshot follows once the player reports the new time.
        """

        duration = self._state.duration
        if self._player is None or duration <= 0:
            return False
        fraction = min(max(progress, 0.0), 1.0)
        self._player.seek(fraction * duration)
        self._publish_now_playing()
        return True

    def seek_to_seconds(self, seconds: float) -> bool:
        return self.seek(seconds / max(self._state.duration, 1.0))

    def skip_forward(self, seconds: Optional[float] = None) -> bool:
        interval = self.config.skip_forward_seconds if seconds is None else seconds
        return self._skip(interval)

    def skip_backward(self, seconds: Optional[float] = None) -> bool:
        interval = self.config.skip_backward_seconds if seconds is None else seconds
        return self._skip(-interval)

    def _skip(self, delta: float) -> bool:
        if self._player is None:
            return False
        target = max(self._player.current_time() + delta, 0.0)
        if self._state.duration > 0:
            target = min(target, self._state.duration)
        self._player.seek(target)
        self._publish_now_playing()
        return True

    async def wait_for_duration(self, timeout: Optional[float] = None) -> bool:
        """Wait until the current session has resolved its duration.

        Returns ``True`` only when a non-zero duration is known.
        """

        event = self._duration_event
        if event is None:
            return False
        limit = self.config.ready_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(event.wait(), timeout=limit)
        except asyncio.TimeoutError:
            return False
        return self._state.duration > 0

    def handle_remote_command(self, command: RemoteCommand, value: Optional[float] = None) -> bool:
        """Entry point for commands coming from the transport surface."""

        if command is RemoteCommand.PLAY:
            return self.resume()
        if command is RemoteCommand.PAUSE:
            return self.pause()
        if command is RemoteCommand.TOGGLE_PLAY_PAUSE:
            return self.toggle_play_pause()
        if command is RemoteCommand.SKIP_FORWARD:
            return self.skip_forward(value)
        if command is RemoteCommand.SKIP_BACKWARD:
            return self.skip_backward(value)
        if command is RemoteCommand.CHANGE_POSITION:
            if value is None:
                return False
            return self.seek_to_seconds(value)
        return False

    def close(self) -> None:
        """Tear down the media session and return to idle."""

        self._teardown()
        self._update(episode=None, phase=TransportPhase.IDLE, position=0.0, duration=0.0)
        self._publish_now_playing()

    # Session plumbing

    def _teardown(self) -> None:
        self._session += 1
        if self._duration_task is not None:
            self._duration_task.cancel()
            self._duration_task = None
        if self._player is not None:
            if self._observer is not None:
                self._player.remove_observer(self._observer)
            self._player.unload()
            logging.debug("Media session for %s torn down", self._state.episode and self._state.episode.id)
        self._observer = None
        self._player = None
        self._ready = False
        self._duration_event = None

    def _on_tick(self, session: int, seconds: float) -> None:
        if session != self._session:
            logging.debug("Ignoring position update from a superseded session")
            return
        position = max(float(seconds), 0.0)
        if self._state.duration > 0:
            position = min(position, self._state.duration)
        self._update(position=position)

    async def _resolve_duration(self, session: int, player: MediaPlayer, event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.ready_timeout
        duration = 0.0
        try:
            ready = player.is_ready()
            while not ready and loop.time() < deadline:
                await asyncio.sleep(self.config.ready_poll_interval)
                ready = player.is_ready()

            if ready:
                duration = float(
                    await asyncio.wait_for(
                        player.load_duration(),
                        timeout=max(deadline - loop.time(), self.config.ready_poll_interval),
                    )
                )
            else:
                logging.warning(
                    "Media was not ready after %.1fs; duration unknown", self.config.ready_timeout
                )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - duration falls back to unknown
            logging.warning("Could not resolve media duration: %s", exc)
            duration = 0.0

        if session != self._session:
            return
        if math.isnan(duration) or math.isinf(duration) or duration < 0:
            duration = 0.0

        self._ready = True
        changes: dict = {"duration": duration}
        if self._state.phase is TransportPhase.LOADING:
            changes["phase"] = TransportPhase.PLAYING
        if duration > 0:
            changes["position"] = min(self._state.position, duration)
        self._update(**changes)
        event.set()
        self._publish_now_playing()
