"""
Audio payload decoding and probing.

Payloads are stored as raw bytes in whatever container the user
uploaded. This module decodes them to mono samples and derives the
clip duration used to default and check trim windows.
"""

import io
import logging
import os
import tempfile
from typing import Tuple
import numpy as np
import librosa
import soundfile as sf

from ..errors import error_handler, InvalidRange
from ..models import Trim


logger = logging.getLogger(__name__)


class AudioValidationError(Exception):
    """Raised when an audio payload cannot be decoded."""
    pass


class AudioLoader:
    """Decodes audio payloads and checks trim windows against them."""

    # Trim ends are entered with two decimals, so allow half a hundredth of overshoot
    DURATION_TOLERANCE = 0.005

    def __init__(self, target_sample_rate: int = None):
        """
        Initialize AudioLoader.

        Args:
            target_sample_rate: Resample to this rate, or keep the native rate if None
        """
        self.target_sample_rate = target_sample_rate

    def decode(self, payload: bytes) -> Tuple[np.ndarray, int]:
        """
        Decode a payload to mono float samples.

        Args:
            payload: Raw audio bytes

        Returns:
            Tuple of (audio_data, sample_rate)

        Raises:
            AudioValidationError: If the payload is empty or cannot be decoded
        """
        if not payload:
            raise AudioValidationError("Audio payload is empty")

        try:
            audio_data, sample_rate = sf.read(io.BytesIO(payload), dtype='float32')
            if audio_data.ndim > 1:
                audio_data = np.mean(audio_data, axis=1)
        except RuntimeError as e:
            # libsndfile can't read every container (m4a); let librosa try its backends
            logger.debug(f"soundfile could not decode payload ({e}), falling back to librosa")
            audio_data, sample_rate = self._decode_with_librosa(payload)

        if self.target_sample_rate and sample_rate != self.target_sample_rate:
            audio_data = librosa.resample(
                audio_data, orig_sr=sample_rate, target_sr=self.target_sample_rate
            )
            sample_rate = self.target_sample_rate

        if len(audio_data) == 0:
            raise AudioValidationError("Audio payload contains no samples")

        return np.asarray(audio_data, dtype=np.float32), int(sample_rate)

    def _decode_with_librosa(self, payload: bytes) -> Tuple[np.ndarray, int]:
        fd, path = tempfile.mkstemp(suffix='.audio')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(payload)
            return librosa.load(path, sr=None, mono=True)
        except Exception as e:
            raise AudioValidationError(f"Failed to decode audio payload: {str(e)}")
        finally:
            os.unlink(path)

    def probe_duration(self, payload: bytes) -> float:
        """
        Get the clip duration in seconds.

        Reads only the header when soundfile understands the container.
        """
        if not payload:
            raise AudioValidationError("Audio payload is empty")

        try:
            with sf.SoundFile(io.BytesIO(payload)) as f:
                duration = f.frames / f.samplerate
        except RuntimeError:
            audio_data, sample_rate = self.decode(payload)
            duration = float(librosa.get_duration(y=audio_data, sr=sample_rate))

        if duration <= 0:
            raise AudioValidationError("Audio payload contains no samples")
        return duration

    def default_trim(self, payload: bytes) -> Trim:
        """Trim window covering the whole clip, end rounded to hundredths."""
        duration = self.probe_duration(payload)
        logger.debug(f"Probed payload duration: {duration:.3f}s")
        return Trim(0.0, round(duration, 2))

    def validate_trim(self, trim: Trim, duration: float) -> None:
        """
        Check that a trim window lies inside the clip.

        Raises:
            InvalidRange: If the window ends past the clip
        """
        if trim.end_sec > duration + self.DURATION_TOLERANCE:
            raise InvalidRange(error_handler.invalid_range(
                trim.start_sec, trim.end_sec,
                reason=f"clip is only {duration:.2f}s long"
            ))
