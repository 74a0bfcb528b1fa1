"""
Path resolver for meatstock.

Provides stable paths whether the library runs from the source tree or
from an installed package.

Rules
-----
* base_dir   → project root (parent of the meatstock package)
* data_dir   → $MEATSTOCK_DATA_DIR if set, else base_dir/data;
               fallback ~/.meatstock/data if base_dir is read-only
* logs_dir   → data_dir/../logs  (same fallback rules)
* migrations → meatstock/migrations (shipped as package data)
* db_path    → data_dir/meatstock.db
* backup_dir → data_dir/backups

NEVER use os.getcwd() or relative Path("...") strings in runtime code;
always call one of the functions below.
"""

import os
from pathlib import Path

DATA_DIR_ENV = "MEATSTOCK_DATA_DIR"
DB_FILENAME = "meatstock.db"

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _get_package_dir() -> Path:
    # meatstock/utils/paths.py → meatstock/
    return Path(__file__).resolve().parent.parent


def _get_base_dir() -> Path:
    return _get_package_dir().parent


def _try_writable(path: Path) -> bool:
    """
    Return True if *path* can be created and used as a writable directory.

    Creates the directory if it does not exist.  Uses a canary-file probe
    so we detect permission issues (read-only site-packages, containers).
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
        canary = path / ".write_probe"
        canary.touch()
        canary.unlink()
        return True
    except (OSError, PermissionError):
        return False


def _home_dir(sub: str) -> Path:
    return Path.home() / ".meatstock" / sub


def _resolve_writable(primary: Path, sub: str) -> Path:
    if _try_writable(primary):
        return primary
    fallback = _home_dir(sub)
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_base_dir() -> Path:
    """Project root (directory containing the meatstock package)."""
    return _get_base_dir()


def get_data_dir() -> Path:
    """
    Data directory.

    Priority:
      1. $MEATSTOCK_DATA_DIR
      2. <base_dir>/data
      3. ~/.meatstock/data  ← fallback if base_dir is read-only
    """
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        path = Path(override).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return path
    return _resolve_writable(_get_base_dir() / "data", "data")


def get_logs_dir() -> Path:
    """Logs directory, sibling of the data directory."""
    return _resolve_writable(get_data_dir().parent / "logs", "logs")


def get_migrations_dir() -> Path:
    """SQL migrations shipped with the package (read-only)."""
    return _get_package_dir() / "migrations"


def get_db_path() -> Path:
    """Full path to the SQLite database file."""
    return get_data_dir() / DB_FILENAME


def get_backup_dir() -> Path:
    """Full path to the automatic-backup directory."""
    return get_data_dir() / "backups"


def get_settings_path() -> Path:
    """Full path to settings.json."""
    return get_data_dir() / "settings.json"
