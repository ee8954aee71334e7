"""
Application facade for the UI layer.

Opens the local store once, and exposes card CRUD, session logging and
trim-window playback as the only operations the UI needs.
"""

import asyncio
import logging
import sys
from typing import List, Optional

from .audio.loader import AudioLoader
from .errors import error_handler, StoreUnavailable
from .models import Card, Mastery, Session, max_tempo, new_card
from .playback import ClipMediaHandle, MediaHandle, PlaybackController
from .store import CardRepository, StoreManager


logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


class PhraseCardsApp:
    """
    Entry point used by the UI layer.

    Usage:
        async with PhraseCardsApp() as app:
            cards = await app.list_all()
    """

    def __init__(self, db_path: Optional[str] = None, session_limit: Optional[int] = None):
        """
        Initialize the app. Nothing is opened until open().

        Args:
            db_path: SQLite database file, defaults to Config.DB_FILE
            session_limit: Per-card session cap, defaults to Config.session_limit()
        """
        self.store_manager = StoreManager(db_path)
        self.session_limit = session_limit
        self.playback = PlaybackController()
        self.audio_loader = AudioLoader()
        self._repository: Optional[CardRepository] = None

    async def open(self) -> None:
        """
        Open the local store.

        Raises:
            StoreUnavailable: If persistence is not available; the app cannot run
        """
        handle = await self.store_manager.initialize()
        if self._repository is None:
            self._repository = CardRepository(handle, session_limit=self.session_limit)

    async def close(self) -> None:
        """Cancel playback and release the store."""
        self.playback.cancel()
        handle = self.store_manager.handle
        if handle is not None:
            await handle.close()
        self._repository = None

    async def __aenter__(self) -> 'PhraseCardsApp':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def repository(self) -> CardRepository:
        if self._repository is None:
            raise StoreUnavailable(error_handler.handle_store_error(
                RuntimeError("store is not open; call open() first")
            ))
        return self._repository

    # ==================== Cards ====================

    async def list_all(self) -> List[Card]:
        return await self.repository.list_all()

    async def get(self, card_id: str) -> Optional[Card]:
        return await self.repository.get(card_id)

    async def get_payload(self, card_id: str) -> Optional[bytes]:
        return await self.repository.get_payload(card_id)

    async def save(self, card: Card, payload: Optional[bytes] = None) -> Card:
        return await self.repository.save(card, payload)

    async def delete(self, card_id: str) -> None:
        await self.repository.delete(card_id)

    async def append_session(self, card: Card, session: Session) -> Card:
        return await self.repository.append_session(card, session)

    async def create_card(
        self,
        payload: bytes,
        title: str,
        start_sec: Optional[float] = None,
        end_sec: Optional[float] = None,
        source: Optional[str] = None,
        comments: Optional[str] = None,
        tags: Optional[List[str]] = None,
        bpm_target: Optional[int] = None,
        mastery: Optional[Mastery] = None
    ) -> Card:
        """
        Create and save a card from an uploaded clip.

        The trim window defaults to the whole clip and must end inside it.

        Raises:
            AudioValidationError: If the payload cannot be decoded
            InvalidRange: If the trim window is malformed or past the clip end
            TransactionAborted: If the save did not commit
        """
        duration = await asyncio.to_thread(self.audio_loader.probe_duration, payload)
        if start_sec is None:
            start_sec = 0.0
        if end_sec is None:
            end_sec = round(duration, 2)

        card = new_card(
            title, start_sec, end_sec,
            source=source, comments=comments, tags=tags,
            bpm_target=bpm_target, mastery=mastery
        )
        self.audio_loader.validate_trim(card.trim, duration)
        return await self.save(card, payload)

    @staticmethod
    def max_tempo(card: Card) -> int:
        return max_tempo(card)

    # ==================== Playback ====================

    def start_playback(self, handle: MediaHandle, start_sec: float, end_sec: float) -> None:
        self.playback.start(handle, start_sec, end_sec)

    def cancel_playback(self) -> None:
        self.playback.cancel()

    async def open_clip(self, card: Card) -> Optional[ClipMediaHandle]:
        """Decode a card's stored payload into a handle, or None if it has none."""
        payload = await self.get_payload(card.id)
        if payload is None:
            return None
        return await asyncio.to_thread(ClipMediaHandle.from_payload, payload, self.audio_loader)

    async def play_card(self, card: Card, handle: Optional[MediaHandle] = None) -> Optional[MediaHandle]:
        """
        Play a card's trimmed section.

        Args:
            card: Card whose trim window to play
            handle: Handle to drive; decoded from the stored payload if omitted

        Returns:
            The handle being played, or None if the card has no audio
        """
        if handle is None:
            handle = await self.open_clip(card)
            if handle is None:
                logger.warning(f"Card {card.id} has no stored audio")
                return None
        self.start_playback(handle, card.trim.start_sec, card.trim.end_sec)
        return handle
