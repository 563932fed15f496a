"""
ports/tax_lookup_port.py
──────────────────────────────────────────────────────────────────────────────
Abstract interface for "which tax applies at this point".

Current implementation: JurisdictionResolver (services/resolver.py), an
in-memory STRtree + exact polygon test over the boundary dataset.

OrderService and BatchIngestionPipeline depend on this Protocol only, so unit
tests can substitute a canned lookup.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from geotax.domain.models import JurisdictionTax


@runtime_checkable
class TaxLookupPort(Protocol):
    """Contract for resolving a coordinate to a jurisdiction's tax policy."""

    def resolve(self, longitude: float, latitude: float) -> Optional[JurisdictionTax]:
        """Return the tax record for the jurisdiction containing the point.

        Returns:
            The JurisdictionTax, or None when no jurisdiction matches or the
            matched jurisdiction has no tax configuration.  A miss is a valid
            outcome, never an exception.
        """
        ...
