"""
services/classifier.py
──────────────────────────────────────────────────────────────────────────────
Turns a RawOrder plus an optional JurisdictionTax into a priced Order.

classify_order() is a *pure function* — no I/O, no clock, no shared state.
Both timestamps come from the raw order, so re-importing historical CSV data
reproduces the same Order values.

  tax is None  → status=out_of_scope, zero tax, no jurisdictions
  tax present  → status=completed, tax_amount = subtotal × composite_rate
"""
from __future__ import annotations

from typing import Optional

from geotax.domain.models import (
    JurisdictionTax,
    Order,
    OrderStatus,
    RawOrder,
    TaxRateBreakdown,
)


def classify_order(raw: RawOrder, tax: Optional[JurisdictionTax]) -> Order:
    """Price a raw order against its resolved jurisdiction (if any).

    Args:
        raw: Parsed order (from a CSV row or a validated request).
        tax: Resolved tax record, or None when no jurisdiction matched.

    Returns:
        A new Order with ``id == 0``.

    Examples:
        >>> from datetime import datetime, timezone
        >>> raw = RawOrder(longitude=5, latitude=5, subtotal=100,
        ...                timestamp=datetime(2023, 1, 1, tzinfo=timezone.utc))
        >>> classify_order(raw, None).status.value
        'out_of_scope'
        >>> classify_order(raw, JurisdictionTax(composite_rate=0.08)).tax_amount
        8.0
    """
    if tax is None:
        return Order(
            latitude=raw.latitude,
            longitude=raw.longitude,
            total_amount=raw.subtotal,
            status=OrderStatus.OUT_OF_SCOPE,
            jurisdictions=[],
            created_at=raw.timestamp,
            updated_at=raw.timestamp,
        )

    return Order(
        latitude=raw.latitude,
        longitude=raw.longitude,
        total_amount=raw.subtotal,
        tax_amount=raw.subtotal * tax.composite_rate,
        composite_tax_rate=tax.composite_rate,
        breakdown=TaxRateBreakdown(
            state_rate=tax.breakdown.state,
            county_rate=tax.breakdown.county,
            city_rate=tax.breakdown.city,
            special_rate=tax.breakdown.special,
        ),
        jurisdictions=list(tax.names),
        reporting_code=tax.code,
        status=OrderStatus.COMPLETED,
        created_at=raw.timestamp,
        updated_at=raw.timestamp,
    )
