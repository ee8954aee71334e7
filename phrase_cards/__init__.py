"""
Phrase Cards: local-first audio phrase flashcards.

Card and payload storage with cross-table atomic writes, and
trim-window playback over a caller-supplied media handle.
"""

from .app import PhraseCardsApp, setup_logging
from .errors import (
    PhraseCardsError,
    StoreUnavailable,
    TransactionAborted,
    InputValidationError,
    InvalidRange
)
from .models import (
    Card,
    Session,
    Trim,
    Mastery,
    MasteryStatus,
    PracticeMode,
    max_tempo
)

__all__ = [
    'PhraseCardsApp',
    'setup_logging',
    'PhraseCardsError',
    'StoreUnavailable',
    'TransactionAborted',
    'InputValidationError',
    'InvalidRange',
    'Card',
    'Session',
    'Trim',
    'Mastery',
    'MasteryStatus',
    'PracticeMode',
    'max_tempo'
]
