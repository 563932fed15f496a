"""
tests/unit/test_order_classifier.py
──────────────────────────────────────────────────────────────────────────────
Unit tests for classify_order().

Verifies:
  • completed orders copy rate, breakdown, names and code from the tax record
  • out_of_scope orders carry zero tax and no jurisdictions
  • both timestamps come from the raw order
  • the function is pure: same inputs, identical output
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from geotax.domain.models import (
    JurisdictionTax,
    JurisdictionTaxBreakdown,
    OrderStatus,
    RawOrder,
)
from geotax.services.classifier import classify_order

_TS = datetime(2023, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def raw() -> RawOrder:
    return RawOrder(longitude=5, latitude=6, subtotal=100, timestamp=_TS)


@pytest.fixture
def tax() -> JurisdictionTax:
    return JurisdictionTax(
        composite_rate=0.08875,
        breakdown=JurisdictionTaxBreakdown(state=0.04, county=0.0, city=0.045, special=0.00375),
        names=("New York State", "New York City", "MCTD"),
        code="NE 8081",
    )


class TestCompleted:
    def test_status_and_amounts(self, raw, tax):
        order = classify_order(raw, tax)
        assert order.status == OrderStatus.COMPLETED
        assert order.total_amount == 100
        assert order.tax_amount == pytest.approx(8.875)
        assert order.composite_tax_rate == 0.08875

    def test_breakdown_copied(self, raw, tax):
        b = classify_order(raw, tax).breakdown
        assert (b.state_rate, b.county_rate, b.city_rate, b.special_rate) == (
            0.04, 0.0, 0.045, 0.00375,
        )

    def test_names_and_code(self, raw, tax):
        order = classify_order(raw, tax)
        assert order.jurisdictions == ["New York State", "New York City", "MCTD"]
        assert order.reporting_code == "NE 8081"

    def test_coordinates_copied(self, raw, tax):
        order = classify_order(raw, tax)
        assert (order.longitude, order.latitude) == (5, 6)

    def test_zero_subtotal(self, tax):
        raw = RawOrder(longitude=0, latitude=0, subtotal=0, timestamp=_TS)
        assert classify_order(raw, tax).tax_amount == 0.0


class TestOutOfScope:
    def test_zero_tax_no_jurisdictions(self, raw):
        order = classify_order(raw, None)
        assert order.status == OrderStatus.OUT_OF_SCOPE
        assert order.total_amount == 100
        assert order.tax_amount == 0.0
        assert order.composite_tax_rate == 0.0
        assert order.jurisdictions == []
        assert order.reporting_code == ""
        assert order.breakdown.state_rate == 0.0


class TestTimestampsAndPurity:
    def test_timestamps_from_raw(self, raw, tax):
        for t in (tax, None):
            order = classify_order(raw, t)
            assert order.created_at == _TS
            assert order.updated_at == _TS

    def test_unassigned_id(self, raw, tax):
        assert classify_order(raw, tax).id == 0

    def test_repeatable(self, raw, tax):
        assert classify_order(raw, tax) == classify_order(raw, tax)
        assert classify_order(raw, None) == classify_order(raw, None)

    def test_does_not_alias_tax_names(self, raw, tax):
        order = classify_order(raw, tax)
        order.jurisdictions.append("mutated")
        assert classify_order(raw, tax).jurisdictions[-1] == "MCTD"
