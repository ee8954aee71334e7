"""
Audio payload decoding for trim defaults and playback handles.
"""

from .loader import AudioLoader, AudioValidationError

__all__ = [
    'AudioLoader',
    'AudioValidationError'
]
