"""
Configuration settings for Phrase Cards.
"""

import os
from pathlib import Path


class Config:
    """Configuration class for application settings."""

    # Project paths
    PROJECT_ROOT = Path(__file__).parent.parent
    DATA_DIR = PROJECT_ROOT / "data"

    # Local store settings
    DB_FILE = os.environ.get("PHRASE_CARDS_DB", str(DATA_DIR / "phrasecards.db"))
    CARDS_TABLE = "cards"
    BLOBS_TABLE = "blobs"
    ARCHIVE_TABLE = "session_archive"

    # Session history cap per card (0 disables the cap)
    SESSION_HISTORY_LIMIT = int(os.environ.get("PHRASE_CARDS_SESSION_LIMIT", "500"))

    # Practice settings
    TEMPO_MIN = 40  # BPM
    TEMPO_MAX = 240  # BPM
    TEMPO_STEP = 10

    @classmethod
    def db_path(cls) -> Path:
        """Resolved path of the SQLite database file."""
        return Path(cls.DB_FILE).resolve()

    @classmethod
    def session_limit(cls):
        """Session cap to apply, or None when unlimited."""
        return cls.SESSION_HISTORY_LIMIT or None
