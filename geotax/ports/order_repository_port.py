"""
ports/order_repository_port.py
──────────────────────────────────────────────────────────────────────────────
Abstract interface for the order store.

The core only needs two writes:
  1. create        — single order, returns the assigned id
  2. batch_create  — bulk insert of one flushed import batch

The read/delete methods back the CLI and Streamlit order views.

Current implementation: PostgresOrderRepository (psycopg2 connection pool)
To swap: write a new adapter implementing this Protocol and change ONE line
in services/container.py.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from geotax.domain.models import Order, OrderFilters, OrderList


@runtime_checkable
class OrderRepositoryPort(Protocol):
    """Contract for persisting and querying priced orders."""

    def create(self, order: Order) -> int:
        """Insert one order.

        Args:
            order: Classified order; its ``id`` field is ignored.

        Returns:
            The id assigned by the store.

        Raises:
            DatabaseError: On connection or query failure.
        """
        ...

    def batch_create(self, orders: list[Order]) -> None:
        """Insert a batch of orders in one round trip.

        Ids are not read back.  Callers never pass an empty list.

        Raises:
            DatabaseError: On connection or query failure.
        """
        ...

    def get_by_id(self, order_id: int) -> Optional[Order]:
        """Fetch one order, or None if the id does not exist."""
        ...

    def list_orders(self, filters: OrderFilters) -> OrderList:
        """Return one filtered, sorted page plus the total match count."""
        ...

    def delete_all(self) -> int:
        """Delete every stored order and return how many were removed."""
        ...
