"""
Card repository: CRUD over cards, their audio payloads and session logs.

A card record and its payload live in separate tables. Every write that
touches both runs in one transaction, so a card never points at a
missing payload and a payload never outlives its card.

Concurrency policy is last-write-wins per card: two in-memory copies of
the same card are not merged, the later save replaces the whole record.
"""

import json
import logging
import sqlite3
from typing import List, Optional, Tuple

from ..config import Config
from ..errors import (
    error_handler,
    InputValidationError,
    PhraseCardsError,
    StoreUnavailable,
    TransactionAborted,
)
from ..models import Card, Session, now_ms
from .manager import StoreHandle


logger = logging.getLogger(__name__)

CARDS = Config.CARDS_TABLE
BLOBS = Config.BLOBS_TABLE
ARCHIVE = Config.ARCHIVE_TABLE


class MissingPayloadError(sqlite3.DatabaseError):
    """The payload a card refers to is gone (the card was deleted elsewhere)."""
    pass


class CardRepository:
    """
    Async access to stored cards.

    Every operation resolves exactly once, with a result or an exception.
    Absence is reported as None, never raised.
    """

    def __init__(self, handle: StoreHandle, session_limit: Optional[int] = None):
        """
        Initialize the repository.

        Args:
            handle: Store handle returned by StoreManager.initialize()
            session_limit: Maximum sessions embedded per card; older ones are
                archived. Defaults to Config.session_limit(); 0 disables the cap.
        """
        self._handle = handle
        if session_limit is None:
            session_limit = Config.session_limit()
        self.session_limit = session_limit or None

    # ==================== Reads ====================

    async def list_all(self) -> List[Card]:
        """All stored cards, in no particular order."""
        rows = await self._read(self._fetch_all_records)
        return [self._decode(Card.from_json, record, 'list_all') for record in rows]

    async def get(self, card_id: str) -> Optional[Card]:
        """The card with `card_id`, or None."""
        record = await self._read(self._fetch_record, card_id)
        return self._decode(Card.from_json, record, 'get') if record is not None else None

    async def get_payload(self, card_id: str) -> Optional[bytes]:
        """The audio bytes stored for `card_id`, or None."""
        return await self._read(self._fetch_payload, card_id)

    async def get_archived_sessions(self, card_id: str) -> List[Session]:
        """Sessions moved out of the card by the history cap, oldest first."""
        rows = await self._read(self._fetch_archive, card_id)
        return [self._decode(self._session_from_json, record, 'get_archived_sessions') for record in rows]

    async def count(self) -> int:
        """Number of stored cards."""
        return await self._read(self._count)

    # ==================== Writes ====================

    async def save(self, card: Card, payload: Optional[bytes] = None) -> Card:
        """
        Insert or replace a card, and its payload when one is given.

        The payload write, the card write and any session archiving commit
        together. On success `card.updated_at` is refreshed and, when a payload
        was supplied, `card.audio_blob_id` is set to `card.id`.

        Args:
            card: The card to persist (updated in place)
            payload: New audio bytes, or None to keep the stored payload

        Returns:
            The saved card

        Raises:
            InputValidationError: If a first save has no payload, or a session
                belongs to another card
            TransactionAborted: If the write did not commit; nothing was written
        """
        if payload is not None:
            payload = bytes(payload)
            if not payload:
                raise InputValidationError(
                    error_handler.invalid_value('payload', payload, "non-empty audio bytes")
                )
        elif not card.has_payload:
            raise InputValidationError(
                error_handler.invalid_value(
                    'payload', None, "audio bytes on the first save of a card"
                )
            )

        for session in card.sessions:
            if session.card_id != card.id:
                raise InputValidationError(
                    error_handler.invalid_value('session.cardId', session.card_id, f"'{card.id}'")
                )

        previous = (card.updated_at, card.audio_blob_id, card.sessions, card.archived_max_tempo)

        if payload is not None:
            card.audio_blob_id = card.id
        card.updated_at = now_ms()
        card.sessions, archived = self._split_overflow(card.sessions)
        # The card record keeps the best tempo of everything it archived
        card.archived_max_tempo = max(
            [card.archived_max_tempo] + [tempo for s in archived for tempo in s.tempos_achieved]
        )

        try:
            await self._handle.run(self._write_card, card, payload, archived)
        except sqlite3.Error as e:
            card.updated_at, card.audio_blob_id, card.sessions, card.archived_max_tempo = previous
            raise self._aborted(e, 'save', card.id) from e

        if archived:
            logger.info(f"Archived {len(archived)} old sessions of card {card.id}")
        logger.info(f"Saved card {card.id}" + (" with new audio" if payload is not None else ""))
        return card

    async def delete(self, card_id: str) -> None:
        """
        Remove a card together with its payload and archived sessions.

        Deleting an unknown id succeeds without doing anything.

        Raises:
            TransactionAborted: If the delete did not commit; nothing was removed
        """
        try:
            removed = await self._handle.run(self._delete_card, card_id)
        except sqlite3.Error as e:
            raise self._aborted(e, 'delete', card_id) from e

        if removed:
            logger.info(f"Deleted card {card_id}")
        else:
            logger.debug(f"Delete of unknown card {card_id} ignored")

    async def append_session(self, card: Card, session: Session) -> Card:
        """
        Append a session to the card and persist the whole card.

        Raises:
            InputValidationError: If the session belongs to another card
            TransactionAborted: If the save failed; the in-memory append is undone
        """
        if session.card_id != card.id:
            raise InputValidationError(
                error_handler.invalid_value('session.cardId', session.card_id, f"'{card.id}'")
            )

        card.sessions.append(session)
        try:
            return await self.save(card)
        except TransactionAborted:
            if card.sessions and card.sessions[-1] is session:
                card.sessions.pop()
            raise

    # ==================== Worker-side helpers ====================

    def _split_overflow(self, sessions: List[Session]) -> Tuple[List[Session], List[Session]]:
        """Split sessions into (kept, archived) under the history cap."""
        if not self.session_limit or len(sessions) <= self.session_limit:
            return sessions, []

        overflow = len(sessions) - self.session_limit
        oldest = sorted(sessions, key=lambda s: s.date or 0)[:overflow]
        archived_ids = {id(s) for s in oldest}
        kept = [s for s in sessions if id(s) not in archived_ids]
        return kept, oldest

    def _write_card(self, conn: sqlite3.Connection, card: Card,
                    payload: Optional[bytes], archived: List[Session]) -> None:
        with self._handle.transaction(conn):
            if payload is not None:
                conn.execute(
                    f"INSERT INTO {BLOBS} (card_id, payload) VALUES (?, ?) "
                    f"ON CONFLICT(card_id) DO UPDATE SET payload = excluded.payload",
                    (card.id, sqlite3.Binary(payload))
                )
            else:
                row = conn.execute(f"SELECT 1 FROM {BLOBS} WHERE card_id = ?", (card.id,)).fetchone()
                if row is None:
                    raise MissingPayloadError(f"payload for card {card.id} no longer exists")

            for session in archived:
                conn.execute(
                    f"INSERT OR REPLACE INTO {ARCHIVE} (id, card_id, date, record) VALUES (?, ?, ?, ?)",
                    (session.id, card.id, session.date, json.dumps(session.to_dict()))
                )

            conn.execute(
                f"INSERT INTO {CARDS} (id, record) VALUES (?, ?) "
                f"ON CONFLICT(id) DO UPDATE SET record = excluded.record",
                (card.id, card.to_json())
            )

    def _delete_card(self, conn: sqlite3.Connection, card_id: str) -> bool:
        with self._handle.transaction(conn):
            removed = conn.execute(f"DELETE FROM {CARDS} WHERE id = ?", (card_id,)).rowcount
            conn.execute(f"DELETE FROM {BLOBS} WHERE card_id = ?", (card_id,))
            conn.execute(f"DELETE FROM {ARCHIVE} WHERE card_id = ?", (card_id,))
        return removed > 0

    @staticmethod
    def _fetch_all_records(conn: sqlite3.Connection) -> List[str]:
        return [row[0] for row in conn.execute(f"SELECT record FROM {CARDS}")]

    @staticmethod
    def _fetch_record(conn: sqlite3.Connection, card_id: str) -> Optional[str]:
        row = conn.execute(f"SELECT record FROM {CARDS} WHERE id = ?", (card_id,)).fetchone()
        return row[0] if row else None

    @staticmethod
    def _fetch_payload(conn: sqlite3.Connection, card_id: str) -> Optional[bytes]:
        row = conn.execute(f"SELECT payload FROM {BLOBS} WHERE card_id = ?", (card_id,)).fetchone()
        return bytes(row[0]) if row else None

    @staticmethod
    def _fetch_archive(conn: sqlite3.Connection, card_id: str) -> List[str]:
        return [
            row[0] for row in conn.execute(
                f"SELECT record FROM {ARCHIVE} WHERE card_id = ? ORDER BY date ASC", (card_id,)
            )
        ]

    @staticmethod
    def _count(conn: sqlite3.Connection) -> int:
        return conn.execute(f"SELECT COUNT(*) FROM {CARDS}").fetchone()[0]

    # ==================== Error mapping ====================

    async def _read(self, fn, *args):
        try:
            return await self._handle.run(fn, *args)
        except sqlite3.Error as e:
            processing_error = error_handler.handle_store_error(e, context={'operation': fn.__name__})
            error_handler.add_error(processing_error)
            raise StoreUnavailable(processing_error) from e

    @staticmethod
    def _session_from_json(record: str) -> Session:
        return Session.from_dict(json.loads(record))

    @staticmethod
    def _decode(decode, record: str, operation: str):
        """Build a model from a stored record; a damaged record is a store failure."""
        try:
            return decode(record)
        except (ValueError, KeyError, TypeError, PhraseCardsError) as e:
            processing_error = error_handler.handle_store_error(
                ValueError(f"corrupt record: {e}"), context={'operation': operation}
            )
            error_handler.add_error(processing_error)
            raise StoreUnavailable(processing_error) from e

    @staticmethod
    def _aborted(error: Exception, operation: str, card_id: str) -> TransactionAborted:
        processing_error = error_handler.handle_transaction_error(
            error, operation, context={'card_id': card_id}
        )
        error_handler.add_error(processing_error)
        return TransactionAborted(processing_error)
