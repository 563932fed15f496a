"""
services/geometry_store.py
──────────────────────────────────────────────────────────────────────────────
Immutable store of jurisdiction boundaries plus a bounding-box index.

Architecture:
  • GeometryFeature is a frozen record: stable index, NAME, shapely geometry.
  • GeometryStore.build() packs the bounding boxes of every non-null feature
    into a shapely STRtree (Sort-Tile-Recursive, O(F log F)).
  • query() is a loose first filter: it returns the indices of features whose
    bounding box contains the point.  Exact containment is the caller's job
    (services/resolver.py).

The store has no mutators.  It is built once by services/container.py before
any order is priced and then read concurrently, without locks, by the
single-order path and every import thread.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from shapely.geometry import MultiPolygon, Point, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

logger = logging.getLogger(__name__)

NAME_PROPERTY = "NAME"
UNKNOWN_NAME = "Unknown"


def geometry_contains(geometry: Optional[BaseGeometry], point: Point) -> bool:
    """Exact point-in-area test, dispatched on geometry type.

    Polygon and MultiPolygon use ``covers``: a point on an edge or vertex
    counts as inside.  That includes the edge of a hole, which belongs to
    the polygon's boundary; only points strictly inside a hole are out.
    Every other geometry type (and None) never matches.
    """
    if isinstance(geometry, (Polygon, MultiPolygon)):
        return bool(geometry.covers(point))
    return False


@dataclass(frozen=True)
class GeometryFeature:
    """One jurisdiction boundary as loaded from the boundary dataset."""

    index: int
    name: str
    geometry: Optional[BaseGeometry]

    @property
    def indexable(self) -> bool:
        return self.geometry is not None and not self.geometry.is_empty

    @property
    def bounds(self) -> Optional[tuple[float, float, float, float]]:
        """(min_x, min_y, max_x, max_y), or None for a null geometry."""
        if not self.indexable:
            return None
        min_x, min_y, max_x, max_y = self.geometry.bounds
        return (min_x, min_y, max_x, max_y)

    def contains(self, point: Point) -> bool:
        return geometry_contains(self.geometry, point)


class GeometryStore:
    """Read-only feature list + STRtree over their bounding boxes.

    Build with GeometryStore.build(features); do not instantiate directly.
    """

    __slots__ = ("_features", "_tree", "_tree_to_feature")

    def __init__(
        self,
        features: tuple[GeometryFeature, ...],
        tree: Optional[STRtree],
        tree_to_feature: tuple[int, ...],
    ) -> None:
        self._features = features
        self._tree = tree
        self._tree_to_feature = tree_to_feature

    @classmethod
    def build(cls, features: Sequence[GeometryFeature]) -> "GeometryStore":
        """Index every feature with a non-null, non-empty geometry.

        Args:
            features: Features in load order.  ``features[i].index`` must be
                      ``i``; that position is the tie-break key used by the
                      resolver and is never reused.

        Returns:
            A fully built, immutable GeometryStore.

        Raises:
            ValueError: If a feature's index does not match its position.
        """
        frozen = tuple(features)
        for position, feature in enumerate(frozen):
            if feature.index != position:
                raise ValueError(
                    f"Feature {feature.name!r} has index {feature.index}, "
                    f"expected {position}"
                )

        indexed = [f for f in frozen if f.indexable]
        tree = STRtree([f.geometry for f in indexed]) if indexed else None
        skipped = len(frozen) - len(indexed)
        logger.info(
            "GeometryStore built | features=%d indexed=%d skipped_null=%d",
            len(frozen),
            len(indexed),
            skipped,
        )
        return cls(frozen, tree, tuple(f.index for f in indexed))

    # ── Read API ───────────────────────────────────────────────────────────

    def query(self, longitude: float, latitude: float) -> list[int]:
        """Return feature indices whose bounding box contains the point.

        Box edges are inclusive.  No ordering guarantee.
        """
        if self._tree is None:
            return []
        hits = self._tree.query(Point(longitude, latitude))
        return [self._tree_to_feature[pos] for pos in hits.tolist()]

    def feature(self, index: int) -> GeometryFeature:
        return self._features[index]

    @property
    def indexed_count(self) -> int:
        return len(self._tree_to_feature)

    def names(self) -> set[str]:
        """Distinct NAME values of all indexed features."""
        return {self._features[i].name for i in self._tree_to_feature}

    def __len__(self) -> int:
        return len(self._features)

    def __iter__(self) -> Iterator[GeometryFeature]:
        return iter(self._features)
