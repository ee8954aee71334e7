"""
Bounded-segment playback.

Plays a media handle from the start of a trim window and pauses it once
the playhead reaches the window's end. Position checks happen on the
host's playback clock ticks, so playback stops at the first tick at or
past the end, never before it.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from ..errors import error_handler, InvalidRange
from .handle import MediaHandle


logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    """Lifecycle of one bounded playback."""
    IDLE = "idle"
    PLAYING = "playing"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


class PlaybackController:
    """
    Drives a media handle through the window [start_sec, end_sec).

    Each start() begins a fresh run; a run that is still playing is
    cancelled first. Once a run is stopped or cancelled its monitor
    never touches the handle again.
    """

    def __init__(self, on_finished: Optional[Callable[[PlaybackState], None]] = None):
        """
        Initialize the controller.

        Args:
            on_finished: Called with the terminal state when a run ends
        """
        self.on_finished = on_finished
        self.state = PlaybackState.IDLE
        self.start_sec: Optional[float] = None
        self.end_sec: Optional[float] = None
        self._handle: Optional[MediaHandle] = None
        self._token: Optional[int] = None
        self._generation = 0

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING

    def start(self, handle: MediaHandle, start_sec: float, end_sec: float) -> None:
        """
        Seek to `start_sec`, play, and stop once the playhead reaches `end_sec`.

        Raises:
            InvalidRange: If the window is empty, reversed or starts before 0.
                The handle is left untouched.
        """
        if start_sec < 0 or end_sec <= start_sec:
            raise InvalidRange(error_handler.invalid_range(start_sec, end_sec))

        if self.is_playing:
            self.cancel()

        self._generation += 1
        generation = self._generation
        self._handle = handle
        self.start_sec = start_sec
        self.end_sec = end_sec
        self.state = PlaybackState.PLAYING

        try:
            handle.seek(start_sec)
            handle.play()
            self._token = handle.subscribe(lambda: self._on_tick(generation))
        except Exception as e:
            error_handler.add_error(error_handler.handle_playback_error(
                e, during_start=True, context={'start_sec': start_sec, 'end_sec': end_sec}
            ))
            self._finish(PlaybackState.CANCELLED)
            raise

        logger.debug(f"Playing window [{start_sec:.2f}, {end_sec:.2f})")

    def cancel(self) -> None:
        """
        Stop monitoring without pausing or moving the playhead.

        No-op unless a run is playing.
        """
        if not self.is_playing:
            return
        self._finish(PlaybackState.CANCELLED)
        logger.debug("Playback monitor cancelled")

    def _on_tick(self, generation: int) -> None:
        # Late ticks from a finished or replaced run are ignored
        if generation != self._generation or not self.is_playing:
            return

        handle = self._handle
        try:
            position = handle.position
            if position >= self.end_sec:
                handle.pause()
                logger.info(f"Playback stopped at {position:.2f}s (end {self.end_sec:.2f}s)")
                self._finish(PlaybackState.STOPPED)
        except Exception as e:
            error_handler.add_error(error_handler.handle_playback_error(
                e, context={'start_sec': self.start_sec, 'end_sec': self.end_sec}
            ))
            self._finish(PlaybackState.CANCELLED)

    def _finish(self, state: PlaybackState) -> None:
        handle, token = self._handle, self._token
        self._handle = None
        self._token = None
        self.state = state

        if handle is not None and token is not None:
            try:
                handle.unsubscribe(token)
            except Exception as e:
                logger.warning(f"Could not unsubscribe playback monitor: {e}")

        if self.on_finished is not None:
            try:
                self.on_finished(state)
            except Exception as e:
                logger.error(f"Playback finished callback failed: {e}")
