"""
Store manager for the local card database.

Owns the single SQLite connection shared by the app and makes sure the
schema exists before any repository call. All database work is run on
one dedicated worker thread, so transactions are serialized.
"""

import asyncio
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Optional

from ..config import Config
from ..errors import error_handler, StoreUnavailable


logger = logging.getLogger(__name__)


SCHEMA: Dict[str, str] = {
    Config.CARDS_TABLE: f"""
        CREATE TABLE {Config.CARDS_TABLE} (
            id TEXT PRIMARY KEY,
            record TEXT NOT NULL
        )
    """,
    Config.BLOBS_TABLE: f"""
        CREATE TABLE {Config.BLOBS_TABLE} (
            card_id TEXT PRIMARY KEY,
            payload BLOB NOT NULL
        )
    """,
    Config.ARCHIVE_TABLE: f"""
        CREATE TABLE {Config.ARCHIVE_TABLE} (
            id TEXT PRIMARY KEY,
            card_id TEXT NOT NULL,
            date REAL,
            record TEXT NOT NULL
        )
    """,
}

INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_archive_card ON {Config.ARCHIVE_TABLE}(card_id)",
]


class StoreHandle:
    """
    Live handle to the initialized store.

    Created once by StoreManager and injected into the repository.
    """

    def __init__(self, connection: sqlite3.Connection, executor: ThreadPoolExecutor, db_path: Path):
        self.connection = connection
        self.db_path = db_path
        self._executor = executor
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run `fn(connection, *args)` on the store worker.

        Resolves exactly once with the result or the raised exception.
        """
        if self._closed:
            processing_error = error_handler.handle_store_error(
                RuntimeError("store handle is closed"), context={'db_path': str(self.db_path)}
            )
            raise StoreUnavailable(processing_error)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, self.connection, *args)

    @contextmanager
    def transaction(self, connection: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
        """
        All-or-nothing write spanning any number of tables.

        Must be entered on the store worker (inside a function passed to run).
        """
        connection.execute("BEGIN IMMEDIATE")
        try:
            yield connection
            connection.execute("COMMIT")
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK")
            raise

    def _close(self, connection: sqlite3.Connection) -> None:
        connection.close()

    async def close(self) -> None:
        """Close the connection and stop the worker."""
        if self._closed:
            return
        await self.run(self._close)
        self._closed = True
        self._executor.shutdown(wait=True)
        logger.info(f"Closed local store: {self.db_path}")


class StoreManager:
    """
    Opens the local store and ensures its schema, exactly once.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the StoreManager.

        Args:
            db_path: Path of the SQLite database file. Defaults to Config.DB_FILE.
        """
        self.db_path = Path(db_path) if db_path else Config.db_path()
        self._handle: Optional[StoreHandle] = None
        self._opening: Optional[asyncio.Task] = None

    @property
    def handle(self) -> Optional[StoreHandle]:
        """The live handle, or None before initialize()."""
        return self._handle

    async def initialize(self) -> StoreHandle:
        """
        Open the database, creating it and its tables if absent.

        Returns:
            The shared StoreHandle. Later and concurrent calls return the same handle.

        Raises:
            StoreUnavailable: If the store cannot be opened
        """
        if self._handle is not None and not self._handle.closed:
            return self._handle

        # Overlapping callers share the open already in flight
        if self._opening is None or self._opening.done():
            self._opening = asyncio.ensure_future(self._open_handle())
        opening = self._opening
        try:
            return await asyncio.shield(opening)
        finally:
            if opening.done() and self._opening is opening:
                self._opening = None

    async def _open_handle(self) -> StoreHandle:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="phrase-cards-store")
        loop = asyncio.get_running_loop()
        try:
            connection = await loop.run_in_executor(executor, self._open)
        except (sqlite3.Error, OSError) as e:
            executor.shutdown(wait=False)
            processing_error = error_handler.handle_store_error(e, context={'db_path': str(self.db_path)})
            error_handler.add_error(processing_error)
            raise StoreUnavailable(processing_error) from e

        self._handle = StoreHandle(connection, executor, self.db_path)
        logger.info(f"Opened local store: {self.db_path}")
        return self._handle

    def _open(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Transactions are managed explicitly by StoreHandle.transaction
        connection = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        try:
            self._ensure_schema(connection)
        except sqlite3.Error:
            connection.close()
            raise
        return connection

    def _ensure_schema(self, connection: sqlite3.Connection) -> None:
        """Create missing tables by name; existing ones are left alone."""
        existing = {
            row[0] for row in
            connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        missing = [name for name in SCHEMA if name not in existing]

        connection.execute("BEGIN IMMEDIATE")
        try:
            for name in missing:
                connection.execute(SCHEMA[name])
                logger.info(f"Created table '{name}'")
            for statement in INDEXES:
                connection.execute(statement)
            connection.execute("COMMIT")
        except sqlite3.Error:
            if connection.in_transaction:
                connection.execute("ROLLBACK")
            raise
