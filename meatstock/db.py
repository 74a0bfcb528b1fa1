"""
Database connection manager and migration utilities for SQLite storage.

- Connection management with PRAGMA configuration
- Transaction context manager (commit/rollback, error mapping)
- Single-writer connection factory
- Migration runner with backup automation
- Schema verification and integrity checks

Design Principles:
- WAL journal mode for concurrent read/write
- Writes are serialized (one writer connection at a time)
- Automatic backups before migrations
- Idempotent migration application
"""

import argparse
import functools
import logging
import shutil
import sqlite3
import sys
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .domain.errors import DuplicateKeyError, StockError, StorageFailure
from .utils.error_formatting import ErrorFormatter
from .utils.logging_config import setup_logging
from .utils.paths import get_backup_dir, get_db_path, get_migrations_dir

logger = logging.getLogger(__name__)


# ============================================================
# Configuration Constants
# ============================================================

MIGRATIONS_DIR: Path = get_migrations_dir()

# Connection PRAGMAs
PRAGMA_CONFIG = {
    "foreign_keys": "ON",
    "journal_mode": "WAL",          # Write-Ahead Logging for concurrency
    "synchronous": "NORMAL",        # Balance safety/performance (FULL for max safety)
    "temp_store": "MEMORY",
    "cache_size": -16000,           # 16MB cache (negative = KB)
    "busy_timeout": 5000,           # Wait 5s for lock (milliseconds)
}

EXPECTED_TABLES = {"schema_version", "stock_lots", "stock_movements", "product_inventory"}

# Connection tracking (leak detection)
_connection_lock = threading.Lock()
_active_connections = 0

# Retry configuration for locked database
RETRY_MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.5  # seconds
RETRY_MAX_DELAY = 5.0   # seconds


# ============================================================
# Retry Logic
# ============================================================

def exponential_backoff(attempt: int, base_delay: float = RETRY_BASE_DELAY, max_delay: float = RETRY_MAX_DELAY) -> float:
    """
    Calculate exponential backoff delay.

    Formula: min(base_delay * (2 ** attempt), max_delay)
    Example: 0.5, 1.0, 2.0, 4.0, 5.0 (capped)
    """
    delay = base_delay * (2 ** attempt)
    return min(delay, max_delay)


def retry_on_locked(max_attempts: int = RETRY_MAX_ATTEMPTS):
    """
    Decorator for retrying READ operations when the database is locked.

    Do not use for non-idempotent writes (appending movements): a retried
    append could record a movement twice.

    Error Handling:
    - sqlite3.OperationalError with "locked" → retry with backoff
    - Other exceptions → immediate re-raise
    - After max_attempts → StorageFailure
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)

                except sqlite3.OperationalError as e:
                    if "locked" not in str(e).lower():
                        raise

                    last_exception = e

                    if attempt < max_attempts - 1:
                        delay = exponential_backoff(attempt)
                        logger.warning(
                            f"Database locked, retrying in {delay:.1f}s (attempt {attempt + 1}/{max_attempts})"
                        )
                        time.sleep(delay)

            raise StorageFailure(
                f"Database locked after {max_attempts} attempts. Original error: {last_exception}"
            ) from last_exception

        return wrapper
    return decorator


# ============================================================
# Connection Management
# ============================================================

def open_connection(db_path: Optional[Path] = None, track_connection: bool = True) -> sqlite3.Connection:
    """
    Open SQLite connection with PRAGMA configuration.

    Args:
        db_path: Path to database file (default: data/meatstock.db)
        track_connection: If True, track connection in global counter (for monitoring)

    Returns:
        Configured sqlite3.Connection (rows accessible by column name)

    Raises:
        StorageFailure: Database locked, inaccessible or corrupted
    """
    global _active_connections

    if db_path is None:
        db_path = get_db_path()

    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(
            str(db_path),
            timeout=30.0,
            check_same_thread=False,  # Connections are handed between threads by the factory
        )
        conn.row_factory = sqlite3.Row

        cursor = conn.cursor()
        for pragma, value in PRAGMA_CONFIG.items():
            cursor.execute(f"PRAGMA {pragma}={value}")

    except sqlite3.OperationalError as e:
        if "locked" in str(e).lower():
            raise StorageFailure(
                f"Database {db_path} is locked. Close other connections and retry."
            ) from e
        raise StorageFailure(f"Cannot open database {db_path}: {e}") from e

    except sqlite3.DatabaseError as e:
        raise StorageFailure(
            f"Database {db_path} is corrupted. Restore from backup (see data/backups/) "
            f"or run: python -m meatstock.db verify"
        ) from e

    if track_connection:
        with _connection_lock:
            _active_connections += 1

    return conn


def close_connection(conn: sqlite3.Connection, tracked: bool = True) -> None:
    """Close database connection and update tracking."""
    global _active_connections

    if conn:
        conn.close()

        if tracked:
            with _connection_lock:
                _active_connections = max(0, _active_connections - 1)


def get_active_connections_count() -> int:
    """Number of tracked open connections."""
    with _connection_lock:
        return _active_connections


class ConnectionFactory:
    """
    Connection factory with single-writer discipline.

    - WAL mode allows N readers + 1 writer simultaneously
    - writer() hands out one write connection at a time across threads
    - reader() connections are not limited

    Usage:
        >>> factory = ConnectionFactory(db_path)
        >>> with factory.reader() as conn:
        ...     rows = conn.execute("SELECT * FROM stock_lots").fetchall()
        >>> with factory.writer() as conn:
        ...     with transaction(conn, "IMMEDIATE") as cur:
        ...         cur.execute("UPDATE stock_lots SET ...")
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        self._writer_lock = threading.Lock()

    @contextmanager
    def reader(self):
        conn = open_connection(self.db_path, track_connection=True)
        try:
            yield conn
        finally:
            close_connection(conn, tracked=True)

    @contextmanager
    def writer(self, timeout: float = 10.0):
        """
        Write connection (single writer discipline).

        Raises:
            StorageFailure: If the writer lock cannot be acquired within timeout
        """
        acquired = self._writer_lock.acquire(timeout=timeout)
        if not acquired:
            raise StorageFailure(
                f"Could not acquire writer lock after {timeout}s. "
                f"Another write operation is in progress."
            )

        conn = None
        try:
            conn = open_connection(self.db_path, track_connection=True)
            yield conn
        finally:
            if conn:
                close_connection(conn, tracked=True)
            self._writer_lock.release()


@contextmanager
def transaction(conn: sqlite3.Connection, isolation_level: str = "DEFERRED"):
    """
    Transaction context manager with automatic commit/rollback.

    Args:
        conn: SQLite connection
        isolation_level: DEFERRED (default), IMMEDIATE, or EXCLUSIVE

    Yields:
        sqlite3.Cursor

    Error mapping (after ROLLBACK):
    - sqlite3.IntegrityError on a UNIQUE key → DuplicateKeyError
    - any other sqlite3.Error → StorageFailure
    - everything else (domain errors) is re-raised unchanged
    """
    cursor = conn.cursor()

    try:
        cursor.execute(f"BEGIN {isolation_level}")
    except sqlite3.Error as e:
        raise StorageFailure(f"Could not begin transaction: {e}") from e

    try:
        yield cursor
        conn.commit()

    except sqlite3.IntegrityError as e:
        conn.rollback()
        if "unique" in str(e).lower():
            raise DuplicateKeyError(str(e)) from e
        raise StorageFailure(f"Transaction failed and rolled back: {e}") from e

    except sqlite3.Error as e:
        conn.rollback()
        raise StorageFailure(f"Transaction failed and rolled back: {e}") from e

    except BaseException:
        conn.rollback()
        raise


# ============================================================
# Migration Management
# ============================================================

def get_current_schema_version(conn: sqlite3.Connection) -> int:
    """
    Current schema version (0 if schema_version table doesn't exist).
    """
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT MAX(version) FROM schema_version")
        result = cursor.fetchone()
        return result[0] if result[0] is not None else 0

    except sqlite3.OperationalError:
        return 0


def get_pending_migrations(conn: sqlite3.Connection, migrations_dir: Optional[Path] = None) -> List[Tuple[int, Path]]:
    """
    Pending migration scripts as (version, filepath), sorted by version.

    Naming convention: NNN_description.sql (e.g. 001_initial_schema.sql)
    """
    migrations_dir = migrations_dir or MIGRATIONS_DIR
    current_version = get_current_schema_version(conn)

    if not migrations_dir.exists():
        return []

    pending = []
    for migration_file in sorted(migrations_dir.glob("*.sql")):
        version_str = migration_file.stem.split("_")[0]

        try:
            version = int(version_str)
        except ValueError:
            logger.warning(f"Skipping invalid migration filename: {migration_file.name}")
            continue

        if version > current_version:
            pending.append((version, migration_file))

    return sorted(pending, key=lambda x: x[0])


def backup_database(db_path: Path, backup_reason: str = "manual", backup_dir: Optional[Path] = None) -> Path:
    """
    Create timestamped backup of database (WAL and SHM files included).

    Backup naming: <stem>_YYYYMMDD_HHMMSS_{reason}.db
    """
    db_path = Path(db_path)
    if not db_path.exists():
        raise FileNotFoundError(f"Database {db_path} does not exist")

    if backup_dir is None:
        backup_dir = get_backup_dir()

    backup_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = backup_dir / f"{db_path.stem}_{timestamp}_{backup_reason}.db"

    shutil.copy2(db_path, backup_path)

    for suffix in ("-wal", "-shm"):
        sidecar = Path(str(db_path) + suffix)
        if sidecar.exists():
            shutil.copy2(sidecar, Path(str(backup_path) + suffix))

    logger.info(f"Backup created: {backup_path}")
    return backup_path


def cleanup_old_backups(max_backups: int = 10, backup_dir: Optional[Path] = None) -> int:
    """
    Keep only the most recent max_backups backups.

    Returns:
        Number of backups deleted
    """
    backup_dir = backup_dir or get_backup_dir()
    if not backup_dir.exists():
        return 0

    backup_files = sorted(
        backup_dir.glob("*.db"),
        key=lambda f: f.stat().st_mtime,
        reverse=True,
    )

    deleted_count = 0
    for backup_file in backup_files[max_backups:]:
        try:
            backup_file.unlink()
            deleted_count += 1
            for suffix in ("-wal", "-shm"):
                sidecar = Path(str(backup_file) + suffix)
                if sidecar.exists():
                    sidecar.unlink()
        except OSError as e:
            logger.warning(f"Could not delete {backup_file.name}: {e}")

    return deleted_count


def apply_migrations(
    conn: sqlite3.Connection,
    dry_run: bool = False,
    migrations_dir: Optional[Path] = None,
    db_path: Optional[Path] = None,
) -> int:
    """
    Apply all pending migrations.

    Each script wraps its statements in BEGIN...COMMIT and records its
    version in schema_version. An existing database file is backed up
    before each script.

    Returns:
        Number of migrations applied
    """
    current_version = get_current_schema_version(conn)
    pending = get_pending_migrations(conn, migrations_dir)

    if not pending:
        logger.debug(f"Database schema is up-to-date (version {current_version})")
        return 0

    if dry_run:
        for version, filepath in pending:
            logger.info(f"Pending migration [{version}] {filepath.name}")
        return 0

    applied_count = 0
    for version, migration_path in pending:
        logger.info(f"Applying migration {version}: {migration_path.name}")

        if db_path is not None and Path(db_path).exists() and current_version > 0:
            backup_database(Path(db_path), f"v{version - 1}_pre_migration")

        with open(migration_path, "r", encoding="utf-8") as f:
            migration_sql = f.read()

        try:
            conn.executescript(migration_sql)
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            raise StorageFailure(f"Migration {version} failed. Database unchanged.") from e

        applied_count += 1

    logger.info(
        f"Schema version: {current_version} → {get_current_schema_version(conn)} "
        f"({applied_count} migration(s) applied)"
    )
    return applied_count


# ============================================================
# Health Checks
# ============================================================

def verify_schema(conn: sqlite3.Connection) -> bool:
    """
    Verify that all expected tables exist and a schema version is recorded.
    """
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    actual_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = EXPECTED_TABLES - actual_tables
    if missing_tables:
        logger.error(f"Missing tables: {', '.join(sorted(missing_tables))}")
        return False

    if get_current_schema_version(conn) == 0:
        logger.error("Schema version is 0 (no migrations applied)")
        return False

    return True


def integrity_check(conn: sqlite3.Connection) -> bool:
    """
    Run SQLite structural and referential integrity checks.
    """
    cursor = conn.cursor()

    cursor.execute("PRAGMA integrity_check")
    integrity_result = cursor.fetchall()
    if len(integrity_result) != 1 or integrity_result[0][0] != "ok":
        for row in integrity_result:
            logger.error(f"Integrity check: {row[0]}")
        return False

    cursor.execute("PRAGMA foreign_key_check")
    fk_violations = cursor.fetchall()
    if fk_violations:
        logger.error(f"Foreign key violations found ({len(fk_violations)})")
        return False

    return True


def get_database_stats(conn: sqlite3.Connection) -> Dict[str, Any]:
    """Table counts, schema version and row counts."""
    cursor = conn.cursor()
    stats: Dict[str, Any] = {"schema_version": get_current_schema_version(conn)}

    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = [row[0] for row in cursor.fetchall() if row[0] != "sqlite_sequence"]
    stats["tables_count"] = len(tables)

    row_counts = {}
    for table_name in tables:
        cursor.execute(f"SELECT COUNT(*) FROM {table_name}")
        row_counts[table_name] = cursor.fetchone()[0]
    stats["row_counts"] = row_counts

    return stats


def initialize_database(db_path: Optional[Path] = None, force: bool = False) -> sqlite3.Connection:
    """
    Create or open the database, apply pending migrations and return a connection.

    Args:
        db_path: Database file (default: data/meatstock.db)
        force: If True, delete existing database and reinitialize
    """
    db_path = Path(db_path) if db_path is not None else get_db_path()

    if force and db_path.exists():
        logger.warning(f"Deleting existing database: {db_path}")
        db_path.unlink()
        for suffix in ("-wal", "-shm"):
            sidecar = Path(str(db_path) + suffix)
            if sidecar.exists():
                sidecar.unlink()

    conn = open_connection(db_path)
    apply_migrations(conn, db_path=db_path)

    if not verify_schema(conn):
        close_connection(conn)
        raise StorageFailure(f"Schema verification failed for {db_path}")

    return conn


# ============================================================
# CLI Interface
# ============================================================

def _run_command(args: argparse.Namespace, db_path: Path) -> int:
    if args.command == "init":
        conn = initialize_database(db_path, force=args.force)
        stats = get_database_stats(conn)
        close_connection(conn)
        print(f"✓ Database initialized: {db_path} (schema version {stats['schema_version']})")
        return 0

    if args.command == "migrate":
        conn = open_connection(db_path)
        try:
            applied = apply_migrations(conn, dry_run=args.dry_run, db_path=db_path)
        finally:
            close_connection(conn)
        print(f"✓ {applied} migration(s) applied")
        return 0

    if args.command == "verify":
        conn = open_connection(db_path)
        try:
            healthy = verify_schema(conn) and integrity_check(conn)
        finally:
            close_connection(conn)
        print("✓ Database is healthy" if healthy else "✗ Database has issues")
        return 0 if healthy else 1

    if args.command == "stats":
        conn = open_connection(db_path)
        try:
            stats = get_database_stats(conn)
        finally:
            close_connection(conn)
        print(f"Schema version: {stats['schema_version']}")
        for table, count in sorted(stats["row_counts"].items()):
            print(f"  {table}: {count:,}")
        return 0

    if args.command == "backup":
        backup_path = backup_database(db_path, args.reason)
        print(f"✓ Backup created: {backup_path}")
        return 0

    # sweep / reconcile need the full engine
    from .persistence.sqlite_store import SqliteStore  # noqa: PLC0415
    from .workflows.engine import InventoryEngine  # noqa: PLC0415

    store = SqliteStore(db_path)
    engine = InventoryEngine(store)

    if args.command == "sweep":
        count = engine.sweep(args.today)
        print(f"✓ {count} lot(s) marked expired")
        return 0

    reports = engine.reconcile_all()
    inconsistent = [r for r in reports if not r.consistent]
    for r in inconsistent:
        print(
            f"✗ product {r.product_id}: stock {r.projected_stock} vs ledger {r.ledger_balance} "
            f"(diff {r.difference})"
        )
    print(f"{len(reports) - len(inconsistent)}/{len(reports)} product(s) consistent")
    return 1 if inconsistent else 0


def main(argv: Optional[List[str]] = None) -> int:
    """python -m meatstock.db [init|migrate|verify|stats|backup|sweep|reconcile]"""
    parser = argparse.ArgumentParser(prog="python -m meatstock.db", description="meatstock database tools")
    parser.add_argument("--db", type=Path, default=None, help="Database file (default: data/meatstock.db)")
    parser.add_argument("--log-dir", type=Path, default=None, help="Log directory (default: logs/)")
    sub = parser.add_subparsers(dest="command", required=True)

    init_p = sub.add_parser("init", help="Initialize database with schema")
    init_p.add_argument("--force", action="store_true", help="Recreate database from scratch")

    migrate_p = sub.add_parser("migrate", help="Apply pending migrations")
    migrate_p.add_argument("--dry-run", action="store_true")

    sub.add_parser("verify", help="Verify schema and integrity")
    sub.add_parser("stats", help="Show database statistics")

    backup_p = sub.add_parser("backup", help="Create manual backup")
    backup_p.add_argument("reason", nargs="?", default="manual")

    sweep_p = sub.add_parser("sweep", help="Mark lots past their expiry date as expired")
    sweep_p.add_argument("--today", type=date.fromisoformat, default=None, help="YYYY-MM-DD")

    sub.add_parser("reconcile", help="Compare current stock with the movement ledger")

    args = parser.parse_args(argv)
    setup_logging(log_dir=args.log_dir)
    db_path = args.db or get_db_path()

    try:
        return _run_command(args, db_path)
    except (StockError, sqlite3.Error) as e:
        ctx = ErrorFormatter.format_stock_error(e, args.command, additional_context={"Database": str(db_path)})
        logger.error(ctx.format_for_log())
        print(ctx.format_for_display(include_technical=True), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
