"""
services/resolver.py
──────────────────────────────────────────────────────────────────────────────
Point → jurisdiction → tax record.

Workflow for resolve(lon, lat):
  1. STRtree query with the degenerate box [point, point]   (GeometryStore)
  2. Exact containment test for each bounding-box candidate
  3. Lowest feature index among true matches wins
  4. Winner's NAME → TaxConfig lookup

Overlapping jurisdictions are common in boundary datasets, and STRtree gives
no ordering guarantee, so the tie-break is by feature index rather than by
enumeration order.  Candidates that cannot beat the current best index are
skipped without a polygon test.

Implements TaxLookupPort.  Stateless apart from the immutable store and
config, so one instance is shared by every thread.
"""
from __future__ import annotations

import logging
from typing import Mapping, Optional

from shapely.geometry import Point

from geotax.domain.models import JurisdictionTax
from geotax.services.geometry_store import GeometryFeature, GeometryStore

logger = logging.getLogger(__name__)


class JurisdictionResolver:
    """Spatial tax lookup over a GeometryStore.

    Args:
        store:      Fully built GeometryStore.
        tax_config: Jurisdiction name → JurisdictionTax.  Names must match the
                    boundary dataset's NAME values; mismatches degrade to
                    "not found" without raising.
    """

    def __init__(
        self,
        store: GeometryStore,
        tax_config: Mapping[str, JurisdictionTax],
    ) -> None:
        self._store = store
        self._tax_config = dict(tax_config)
        logger.debug(
            "JurisdictionResolver init | features=%d tax_entries=%d",
            len(store),
            len(self._tax_config),
        )

    # ── Public API ─────────────────────────────────────────────────────────

    def match(self, longitude: float, latitude: float) -> Optional[GeometryFeature]:
        """Return the lowest-index feature whose geometry contains the point.

        Returns:
            The winning GeometryFeature, or None if no polygon contains it.
        """
        point = Point(longitude, latitude)
        best: Optional[GeometryFeature] = None

        for index in self._store.query(longitude, latitude):
            if best is not None and index >= best.index:
                continue
            feature = self._store.feature(index)
            if feature.contains(point):
                best = feature

        return best

    def resolve(self, longitude: float, latitude: float) -> Optional[JurisdictionTax]:
        """Return the tax record for the jurisdiction containing the point.

        Returns:
            JurisdictionTax, or None when nothing contains the point or the
            winning jurisdiction has no tax configuration.
        """
        feature = self.match(longitude, latitude)
        if feature is None:
            return None

        tax = self._tax_config.get(feature.name)
        if tax is None:
            logger.debug(
                "No tax config for jurisdiction | name=%r index=%d",
                feature.name,
                feature.index,
            )
        return tax

    def unconfigured_names(self) -> set[str]:
        """Boundary NAMEs that have no tax entry (they always resolve to None)."""
        return self._store.names() - set(self._tax_config)
