"""Trim-window playback over a caller-supplied media handle."""

from .handle import MediaHandle, ClipMediaHandle
from .controller import PlaybackController, PlaybackState

__all__ = [
    'MediaHandle',
    'ClipMediaHandle',
    'PlaybackController',
    'PlaybackState'
]
