"""
Pytest configuration and shared fixtures.

Provides a temporary store, sample cards, synthetic audio payloads
and a recording media handle for playback tests.
"""

import io
from typing import Callable, Dict, List, Optional

import numpy as np
import pytest
import pytest_asyncio
import soundfile as sf
from hypothesis import settings, Verbosity

from phrase_cards.models import Mastery, MasteryStatus, new_card
from phrase_cards.playback.handle import MediaHandle
from phrase_cards.store import CardRepository, StoreManager


settings.register_profile("phrase_cards",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None
)
settings.load_profile("phrase_cards")


def make_wav_payload(duration: float = 5.0, sample_rate: int = 8000, frequency: float = 440.0) -> bytes:
    """Encode a sine tone as WAV bytes."""
    t = np.arange(int(duration * sample_rate)) / sample_rate
    audio = 0.5 * np.sin(2 * np.pi * frequency * t)
    buffer = io.BytesIO()
    sf.write(buffer, audio.astype(np.float32), sample_rate, format='WAV')
    return buffer.getvalue()


class RecordingHandle(MediaHandle):
    """Media handle that records every call and lets tests drive position updates."""

    def __init__(self, duration: float = 10.0):
        self._duration = duration
        self._position = 0.0
        self.playing = False
        self.calls: List[str] = []
        self.subscribers: Dict[int, Callable[[], None]] = {}
        self._next_token = 1
        self.detached = False

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def position(self) -> float:
        if self.detached:
            raise RuntimeError("media element detached")
        return self._position

    def play(self) -> None:
        self.calls.append('play')
        self.playing = True

    def pause(self) -> None:
        self.calls.append('pause')
        self.playing = False

    def seek(self, seconds: float) -> None:
        self.calls.append(f'seek:{seconds}')
        self._position = seconds

    def subscribe(self, callback: Callable[[], None]) -> int:
        self.calls.append('subscribe')
        token = self._next_token
        self._next_token += 1
        self.subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self.calls.append('unsubscribe')
        self.subscribers.pop(token, None)

    def emit(self, position: float) -> None:
        """Simulate one clock tick at `position`."""
        self._position = position
        for callback in list(self.subscribers.values()):
            callback()


@pytest.fixture
def db_path(tmp_path):
    """Path of a fresh database file."""
    return str(tmp_path / "cards.db")


@pytest_asyncio.fixture
async def store_handle(db_path):
    """Initialized store, closed after the test."""
    manager = StoreManager(db_path)
    handle = await manager.initialize()
    yield handle
    await handle.close()


@pytest_asyncio.fixture
async def repository(store_handle):
    """Repository over the temporary store, with a session cap of 3."""
    return CardRepository(store_handle, session_limit=3)


@pytest.fixture
def wav_payload():
    """Five seconds of tone as WAV bytes."""
    return make_wav_payload()


@pytest.fixture
def sample_card():
    """A new card that has not been saved yet."""
    return new_card(
        "Donna Lee opening",
        0.0, 5.0,
        source="Charlie Parker",
        comments="Watch the chromatic run",
        tags=["bebop", "parker"],
        bpm_target=180,
        mastery=Mastery(MasteryStatus.IN_PROGRESS, MasteryStatus.NOT_STARTED)
    )


@pytest.fixture
def recording_handle():
    return RecordingHandle()
