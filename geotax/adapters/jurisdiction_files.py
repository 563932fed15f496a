"""
adapters/jurisdiction_files.py
──────────────────────────────────────────────────────────────────────────────
Loads the two reference files read once at startup.

Boundary dataset (BOUNDARIES_PATH) — GeoJSON FeatureCollection:
  {"type": "FeatureCollection",
   "features": [{"type": "Feature",
                 "properties": {"NAME": "Albany"},
                 "geometry": {"type": "MultiPolygon", "coordinates": [...]}}]}

  • Feature order is preserved: position i becomes GeometryFeature.index i.
  • A missing or malformed geometry is tolerated per feature: the feature is
    kept with geometry=None so indices stay stable, and is never matched.
  • A missing/non-string NAME becomes "Unknown".
  • An unreadable file, invalid JSON, or no "features" list is fatal
    (BoundaryDataError).

Tax configuration (JURISDICTIONS_PATH) — JSON:
  {"jurisdictions": {"Albany": {"composite_rate": 0.08,
                                "breakdown": {"state": 0.04, "county": 0.0,
                                              "city": 0.0, "special": 0.04},
                                "names": ["New York State", "Albany"],
                                "code": "0101"}}}
  A bare name → record mapping (without the "jurisdictions" wrapper) is
  accepted too.  The wrapper is recognised by the shape of its value, so a
  bare mapping may contain a jurisdiction named "jurisdictions".  Invalid
  content is fatal (ConfigurationError).
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from shapely.errors import ShapelyError
from shapely.geometry import shape

from geotax.domain.exceptions import BoundaryDataError, ConfigurationError
from geotax.domain.models import TaxConfig
from geotax.services.geometry_store import NAME_PROPERTY, UNKNOWN_NAME, GeometryFeature

logger = logging.getLogger(__name__)


def _read_json(path: Path, error_cls: type[ConfigurationError]) -> Any:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except OSError as exc:
        raise error_cls(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise error_cls(f"Invalid JSON in {path}: {exc}") from exc


# ── Boundaries ─────────────────────────────────────────────────────────────

def parse_features(collection: Any) -> list[GeometryFeature]:
    """Convert a decoded GeoJSON FeatureCollection into GeometryFeatures.

    Raises:
        BoundaryDataError: If ``collection`` has no ``features`` list.
    """
    if not isinstance(collection, dict) or not isinstance(collection.get("features"), list):
        raise BoundaryDataError("Boundary dataset must be an object with a 'features' list")

    features: list[GeometryFeature] = []
    for index, raw in enumerate(collection["features"]):
        raw = raw if isinstance(raw, dict) else {}
        properties = raw.get("properties") or {}
        name = properties.get(NAME_PROPERTY) if isinstance(properties, dict) else None
        if not isinstance(name, str):
            name = UNKNOWN_NAME

        features.append(
            GeometryFeature(index=index, name=name, geometry=_parse_geometry(raw.get("geometry"), index, name))
        )
    return features


def _parse_geometry(geometry: Any, index: int, name: str):
    if geometry is None:
        logger.warning("Feature has no geometry | index=%d name=%r", index, name)
        return None
    try:
        return shape(geometry)
    except (ShapelyError, ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
        logger.warning("Malformed geometry skipped | index=%d name=%r: %s", index, name, exc)
        return None


def load_features(path: Path) -> list[GeometryFeature]:
    """Read the boundary GeoJSON file.

    Raises:
        BoundaryDataError: If the file cannot be read or is not a
                           FeatureCollection.
    """
    features = parse_features(_read_json(path, BoundaryDataError))
    logger.info("Loaded boundary dataset | path=%s features=%d", path, len(features))
    return features


# ── Tax configuration ──────────────────────────────────────────────────────

def _is_record(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and "composite_rate" in value
        and not isinstance(value["composite_rate"], dict)
    )


def _is_wrapped(data: dict) -> bool:
    return "jurisdictions" in data and not _is_record(data["jurisdictions"])


def parse_tax_config(data: Any) -> TaxConfig:
    """Validate a decoded jurisdictions document.

    Raises:
        ConfigurationError: If the document does not match the schema.
    """
    if isinstance(data, dict) and not _is_wrapped(data):
        data = {"jurisdictions": data}
    try:
        return TaxConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid tax configuration: {exc}") from exc


def load_tax_config(path: Path) -> TaxConfig:
    """Read the jurisdictions JSON file.

    Raises:
        ConfigurationError: If the file cannot be read or fails validation.
    """
    config = parse_tax_config(_read_json(path, ConfigurationError))
    logger.info(
        "Loaded tax configuration | path=%s jurisdictions=%d",
        path,
        len(config.jurisdictions),
    )
    return config
