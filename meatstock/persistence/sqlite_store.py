"""
SQLite-backed store.

Every unit of work runs on the single writer connection inside
BEGIN IMMEDIATE ... COMMIT; any exception rolls the whole unit back.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from ..db import (
    ConnectionFactory,
    apply_migrations,
    close_connection,
    open_connection,
    retry_on_locked,
    transaction,
    verify_schema,
)
from ..domain.errors import StorageFailure
from ..repositories import SqliteUnitOfWork
from ..utils.paths import get_db_path
from .base import StockStore

logger = logging.getLogger(__name__)


class SqliteStore(StockStore):
    """
    Store over one SQLite database file.

    Pending migrations are applied when the store is opened.
    """

    def __init__(self, db_path: Optional[Path] = None, writer_timeout: float = 10.0):
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        self.writer_timeout = writer_timeout
        self._factory = ConnectionFactory(self.db_path)
        self._prepare()

    @retry_on_locked()
    def _prepare(self) -> None:
        conn = open_connection(self.db_path)
        try:
            applied = apply_migrations(conn, db_path=self.db_path)
            if applied:
                logger.info(f"Applied {applied} migration(s) to {self.db_path}")
            if not verify_schema(conn):
                raise StorageFailure(f"Schema verification failed for {self.db_path}")
        finally:
            close_connection(conn)

    @contextmanager
    def _begin(self):
        with self._factory.writer(timeout=self.writer_timeout) as conn:
            with transaction(conn, isolation_level="IMMEDIATE"):
                yield SqliteUnitOfWork(conn)

    @contextmanager
    def _read(self):
        with self._factory.reader() as conn:
            yield SqliteUnitOfWork(conn)
