"""
Project configuration and constants.

Module-level defaults, optionally overridden by settings.json in the
data directory (see utils.paths.get_settings_path).
"""
import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Literal, Optional

from .domain.models import StorageLocation

logger = logging.getLogger(__name__)

# Default parameters (can be overridden via settings.json)
DEFAULT_SAFETY_STOCK = 30.0
DEFAULT_LOCATION = StorageLocation.COLD
EXPIRY_ALERT_DAYS = 3           # "expiring soon" window for the dashboard
DEFAULT_SHELF_LIFE_DAYS = 7     # categories missing from the table below
LOT_NUMBER_PREFIX = "LOT"

# Receipt date + N days = expiry date, per product category.
# Korean names are the categories used by the catalog screens.
CATEGORY_SHELF_LIFE_DAYS: Dict[str, int] = {
    "pork": 7,
    "beef": 10,
    "poultry": 5,
    "돼지고기": 7,
    "소고기": 10,
    "닭고기": 5,
}

StorageBackend = Literal["sqlite", "memory"]
STORAGE_BACKEND: StorageBackend = "sqlite"


@dataclass
class InventorySettings:
    """Effective settings (defaults merged with settings.json)."""
    storage_backend: str = STORAGE_BACKEND
    database_path: Optional[str] = None   # None = utils.paths.get_db_path()
    default_safety_stock: float = DEFAULT_SAFETY_STOCK
    default_location: str = DEFAULT_LOCATION.value
    expiry_alert_days: int = EXPIRY_ALERT_DAYS
    default_shelf_life_days: int = DEFAULT_SHELF_LIFE_DAYS
    category_shelf_life_days: Dict[str, int] = field(
        default_factory=lambda: dict(CATEGORY_SHELF_LIFE_DAYS)
    )

    def __post_init__(self):
        if self.storage_backend not in ("sqlite", "memory"):
            raise ValueError(f"Unknown storage backend: {self.storage_backend!r}")
        # Raises ValueError on an unknown location
        StorageLocation(self.default_location)
        if self.default_safety_stock < 0:
            raise ValueError("Default safety stock cannot be negative")
        if self.expiry_alert_days < 0:
            raise ValueError("Expiry alert window cannot be negative")

    @property
    def location(self) -> StorageLocation:
        return StorageLocation(self.default_location)

    def shelf_life_days(self, category: Optional[str]) -> int:
        """Shelf life for a product category (case-insensitive)."""
        if category:
            key = category.strip().lower()
            for name, days in self.category_shelf_life_days.items():
                if name.lower() == key:
                    return days
        return self.default_shelf_life_days


def load_settings(path: Optional[Path] = None) -> InventorySettings:
    """
    Load settings.json on top of the defaults.

    Unknown keys are ignored; an unreadable or invalid file falls back to
    defaults (logged as a warning).
    """
    if path is None:
        from .utils.paths import get_settings_path  # noqa: PLC0415
        path = get_settings_path()

    if not path.exists():
        return InventorySettings()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Could not read settings file {path}: {e}; using defaults")
        return InventorySettings()

    if not isinstance(raw, dict):
        logger.warning(f"Settings file {path} is not a JSON object; using defaults")
        return InventorySettings()

    known = {f.name for f in fields(InventorySettings)}
    values = {k: v for k, v in raw.items() if k in known}

    try:
        if "category_shelf_life_days" in values:
            merged = dict(CATEGORY_SHELF_LIFE_DAYS)
            merged.update(values["category_shelf_life_days"])
            values["category_shelf_life_days"] = merged
        return InventorySettings(**values)
    except (TypeError, ValueError) as e:
        logger.warning(f"Invalid settings in {path}: {e}; using defaults")
        return InventorySettings()


def save_settings(settings: InventorySettings, path: Optional[Path] = None) -> bool:
    """
    Write settings to settings.json.

    Returns:
        True if successful, False otherwise
    """
    if path is None:
        from .utils.paths import get_settings_path  # noqa: PLC0415
        path = get_settings_path()

    data = {f.name: getattr(settings, f.name) for f in fields(InventorySettings)}
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        return True
    except OSError as e:
        logger.error(f"Could not write settings file {path}: {e}")
        return False
