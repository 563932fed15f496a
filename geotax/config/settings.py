"""
config/settings.py
──────────────────────────────────────────────────────────────────────────────
Single source of truth for all tuneable parameters.

All values can be overridden via environment variables or a .env file placed
at the project root.  The frozen dataclass ensures settings are never mutated
at runtime.

Most commonly tuned:
  ORDERS_BATCH_SIZE         → rows per bulk insert during CSV imports
  BATCH_PROCESSING_TIMEOUT  → wall-clock budget (seconds) for one import
  MAX_CONCURRENT_IMPORTS    → import slots; extra imports are rejected
  BOUNDARIES_PATH / JURISDICTIONS_PATH → reference data loaded at startup
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

from geotax.domain.exceptions import ConfigurationError

# Load .env from project root (two levels up from this file)
_PROJECT_ROOT = Path(__file__).parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


def _env(key: str, default: str) -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _env_path(key: str, default: Path) -> Path:
    return Path(os.getenv(key, str(default)))


@dataclass(frozen=True)
class Settings:
    """Immutable application settings loaded from environment variables."""

    # ── Database ───────────────────────────────────────────────────────────
    db_dsn: str = field(
        default_factory=lambda: _env("DB_DSN", "dbname=geotax")
    )
    db_min_conns: int = field(default_factory=lambda: _env_int("DB_MIN_CONNS", 1))
    db_max_conns: int = field(default_factory=lambda: _env_int("DB_MAX_CONNS", 10))

    # ── Reference data ─────────────────────────────────────────────────────
    # GeoJSON FeatureCollection; each feature's jurisdiction name is in
    # properties["NAME"].
    boundaries_path: Path = field(
        default_factory=lambda: _env_path(
            "BOUNDARIES_PATH", _PROJECT_ROOT / "counties.geojson"
        )
    )
    jurisdictions_path: Path = field(
        default_factory=lambda: _env_path(
            "JURISDICTIONS_PATH", _PROJECT_ROOT / "jurisdictions.json"
        )
    )

    # ── CSV import pipeline ────────────────────────────────────────────────
    batch_size: int = field(
        default_factory=lambda: _env_int("ORDERS_BATCH_SIZE", 500)
    )
    processing_timeout: float = field(
        default_factory=lambda: _env_float("BATCH_PROCESSING_TIMEOUT", 300.0)
    )
    max_concurrent_imports: int = field(
        default_factory=lambda: _env_int("MAX_CONCURRENT_IMPORTS", 4)
    )
    max_file_size: int = field(
        default_factory=lambda: _env_int("MAX_FILE_SIZE", 50 * 1024 * 1024)
    )

    # ── Logging ────────────────────────────────────────────────────────────
    log_level: str = field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))

    def validate(self) -> "Settings":
        """Reject values the import pipeline cannot run with.

        Returns:
            self, so the call can be chained.

        Raises:
            ConfigurationError: On a non-positive batch size, slot count,
                timeout or file size, or an inverted pool range.
        """
        if self.batch_size < 1:
            raise ConfigurationError(f"ORDERS_BATCH_SIZE must be >= 1, got {self.batch_size}")
        if self.max_concurrent_imports < 1:
            raise ConfigurationError(
                f"MAX_CONCURRENT_IMPORTS must be >= 1, got {self.max_concurrent_imports}"
            )
        if self.processing_timeout <= 0:
            raise ConfigurationError(
                f"BATCH_PROCESSING_TIMEOUT must be > 0, got {self.processing_timeout}"
            )
        if self.max_file_size < 1:
            raise ConfigurationError(f"MAX_FILE_SIZE must be >= 1, got {self.max_file_size}")
        if not 1 <= self.db_min_conns <= self.db_max_conns:
            raise ConfigurationError(
                f"Invalid DB pool bounds: min={self.db_min_conns} max={self.db_max_conns}"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Returns a cached singleton Settings instance.

    Use this everywhere instead of instantiating Settings() directly —
    it guarantees a single object is shared across the entire process.
    """
    return Settings()
