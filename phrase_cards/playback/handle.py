"""
Media handle contract used by the playback controller.

The UI layer owns the real audio element or decoder and wraps it in a
MediaHandle. ClipMediaHandle is an in-process handle over decoded
samples with a manually driven playhead, useful headless and in tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional
import numpy as np

from ..audio.loader import AudioLoader


logger = logging.getLogger(__name__)

PositionCallback = Callable[[], None]


class MediaHandle(ABC):
    """Playable audio asset with a seekable playhead."""

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def seek(self, seconds: float) -> None:
        """Move the playhead to `seconds`."""
        pass

    @property
    @abstractmethod
    def position(self) -> float:
        """Current playhead position in seconds."""
        pass

    @property
    @abstractmethod
    def duration(self) -> float:
        pass

    @abstractmethod
    def subscribe(self, callback: PositionCallback) -> int:
        """
        Call `callback` on every position update of the playback clock.

        Returns:
            Token to pass to unsubscribe()
        """
        pass

    @abstractmethod
    def unsubscribe(self, token: int) -> None:
        pass


class ClipMediaHandle(MediaHandle):
    """
    Handle over decoded mono samples.

    Produces no sound. The playhead moves only through advance(), which
    plays the role of the host engine's clock tick.
    """

    def __init__(self, audio_data: np.ndarray, sample_rate: int):
        """
        Initialize the handle.

        Args:
            audio_data: Mono samples
            sample_rate: Sample rate in Hz
        """
        self.audio_data = audio_data
        self.sample_rate = sample_rate
        self._position = 0.0
        self._playing = False
        self._subscribers: Dict[int, PositionCallback] = {}
        self._next_token = 1

    @classmethod
    def from_payload(cls, payload: bytes, loader: Optional[AudioLoader] = None) -> 'ClipMediaHandle':
        """Decode a stored payload into a handle."""
        loader = loader or AudioLoader()
        audio_data, sample_rate = loader.decode(payload)
        return cls(audio_data, sample_rate)

    @property
    def duration(self) -> float:
        return len(self.audio_data) / self.sample_rate

    @property
    def position(self) -> float:
        return self._position

    @property
    def playing(self) -> bool:
        return self._playing

    def play(self) -> None:
        if self._position >= self.duration:
            self._position = 0.0
        self._playing = True

    def pause(self) -> None:
        self._playing = False

    def seek(self, seconds: float) -> None:
        self._position = min(max(0.0, float(seconds)), self.duration)

    def subscribe(self, callback: PositionCallback) -> int:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._subscribers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def advance(self, seconds: float) -> float:
        """
        Move the playhead forward by `seconds` if playing, then notify subscribers.

        Playback ends at the end of the clip.

        Returns:
            The new position
        """
        if self._playing:
            self._position = min(self._position + seconds, self.duration)
            if self._position >= self.duration:
                self._playing = False
        # Callbacks may unsubscribe while we iterate
        for callback in list(self._subscribers.values()):
            callback()
        return self._position

    def trimmed_samples(self, start_sec: float, end_sec: float) -> np.ndarray:
        """Copy of the samples inside [start_sec, end_sec)."""
        start_sample = max(0, int(start_sec * self.sample_rate))
        end_sample = min(len(self.audio_data), int(end_sec * self.sample_rate))
        return self.audio_data[start_sample:end_sample].copy()
