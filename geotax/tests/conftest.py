"""
tests/conftest.py
──────────────────────────────────────────────────────────────────────────────
Shared pytest fixtures and mock adapter implementations.

Mock adapters implement the Port Protocols via structural subtyping — they do
NOT inherit from any base class.  pytest uses them to test service logic
without a database.

Fixture hierarchy:
  settings        → Settings with small batch / slot values
  zone_a_features → one 10×10 square named "ZoneA" (feature index 0)
  zone_a_store    → GeometryStore built from zone_a_features
  zone_a_tax      → {"ZoneA": 8% composite rate, code "ZA"}
  resolver        → JurisdictionResolver over the two above (TaxLookupPort)
  mock_repo       → implements OrderRepositoryPort (in-memory, records calls)
  repo_factory    → MockOrderRepository class, for failure-injecting variants
  fixed_lookup    → TaxLookupPort stub returning one fixed record
  service         → OrderService wired with resolver + mock_repo
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Optional

import pytest
from shapely.geometry import Polygon

from geotax.config.settings import Settings
from geotax.domain.exceptions import DatabaseError
from geotax.domain.models import (
    JurisdictionTax,
    JurisdictionTaxBreakdown,
    Order,
    OrderFilters,
    OrderList,
    OrderRequest,
)
from geotax.services.admission import ImportAdmissionGate
from geotax.services.geometry_store import GeometryFeature, GeometryStore
from geotax.services.orders import OrderService
from geotax.services.resolver import JurisdictionResolver

ZONE_A_SQUARE = [(0, 0), (0, 10), (10, 10), (10, 0)]


# ── Settings fixture ───────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def settings() -> Settings:
    """Return a Settings instance with sane test defaults."""
    return Settings(
        db_dsn="dbname=geotax_test",
        batch_size=2,
        processing_timeout=30.0,
        max_concurrent_imports=2,
        max_file_size=64 * 1024,
        log_level="DEBUG",
    )


# ── Mock adapters ──────────────────────────────────────────────────────────

class MockOrderRepository:
    """In-memory fake repository.

    Every batch_create() call is recorded as a copy, so tests can assert on
    flush sizes and order.  ``fail_batches`` lists 1-based batch call numbers
    that raise DatabaseError instead of storing.
    """

    def __init__(self, fail_batches: tuple[int, ...] = (), fail_create: bool = False) -> None:
        self.batches: list[list[Order]] = []
        self.orders: dict[int, Order] = {}
        self.fail_batches = set(fail_batches)
        self.fail_create = fail_create
        self._next_id = 1
        self._lock = threading.Lock()

    def create(self, order: Order) -> int:
        if self.fail_create:
            raise DatabaseError("create order failed: connection refused")
        with self._lock:
            order_id = self._next_id
            self._next_id += 1
            self.orders[order_id] = order.model_copy(update={"id": order_id})
        return order_id

    def batch_create(self, orders: list[Order]) -> None:
        with self._lock:
            self.batches.append(list(orders))
            if len(self.batches) in self.fail_batches:
                raise DatabaseError(f"batch_create of {len(orders)} orders failed")
            for order in orders:
                self.orders[self._next_id] = order.model_copy(update={"id": self._next_id})
                self._next_id += 1

    def get_by_id(self, order_id: int) -> Optional[Order]:
        return self.orders.get(order_id)

    def list_orders(self, filters: OrderFilters) -> OrderList:
        rows = [o for o in self.orders.values() if filters.status in (None, o.status)]
        rows.sort(key=lambda o: o.id, reverse=filters.sort_order == "desc")
        return OrderList(
            total=len(rows),
            orders=rows[filters.offset:filters.offset + filters.limit],
        )

    def delete_all(self) -> int:
        with self._lock:
            count = len(self.orders)
            self.orders.clear()
        return count

    @property
    def batch_sizes(self) -> list[int]:
        return [len(b) for b in self.batches]


class FixedTaxLookup:
    """TaxLookupPort that returns one tax record (or None) for every point."""

    def __init__(self, tax: Optional[JurisdictionTax]) -> None:
        self.tax = tax
        self.calls: list[tuple[float, float]] = []

    def resolve(self, longitude: float, latitude: float) -> Optional[JurisdictionTax]:
        self.calls.append((longitude, latitude))
        return self.tax


# ── Reference data fixtures ────────────────────────────────────────────────

@pytest.fixture
def zone_a_features() -> list[GeometryFeature]:
    return [GeometryFeature(index=0, name="ZoneA", geometry=Polygon(ZONE_A_SQUARE))]


@pytest.fixture
def zone_a_store(zone_a_features) -> GeometryStore:
    return GeometryStore.build(zone_a_features)


@pytest.fixture
def zone_a_tax() -> dict[str, JurisdictionTax]:
    return {
        "ZoneA": JurisdictionTax(
            composite_rate=0.08,
            breakdown=JurisdictionTaxBreakdown(state=0.05, county=0.02, special=0.01),
            names=("ZoneA",),
            code="ZA",
        )
    }


@pytest.fixture
def resolver(zone_a_store, zone_a_tax) -> JurisdictionResolver:
    return JurisdictionResolver(zone_a_store, zone_a_tax)


# ── Service fixtures ───────────────────────────────────────────────────────

@pytest.fixture
def mock_repo() -> MockOrderRepository:
    return MockOrderRepository()


@pytest.fixture
def repo_factory():
    """Build a MockOrderRepository with failure options."""
    return MockOrderRepository


@pytest.fixture
def fixed_lookup(zone_a_tax) -> FixedTaxLookup:
    return FixedTaxLookup(zone_a_tax["ZoneA"])


@pytest.fixture
def gate(settings) -> ImportAdmissionGate:
    return ImportAdmissionGate(settings.max_concurrent_imports)


@pytest.fixture
def service(resolver, mock_repo, gate, settings):
    svc = OrderService(
        tax_lookup=resolver,
        repository=mock_repo,
        gate=gate,
        settings=settings,
    )
    yield svc
    svc.shutdown(wait=True)


@pytest.fixture
def order_request() -> OrderRequest:
    return OrderRequest(
        longitude=5,
        latitude=5,
        subtotal=100,
        timestamp=datetime(2023, 1, 1, tzinfo=timezone.utc),
    )
