"""
adapters/postgres_orders.py
──────────────────────────────────────────────────────────────────────────────
Implements OrderRepositoryPort using psycopg2.

Database layout (created by ensure_schema()):
  Table : orders
  Cols  : id (PK), latitude, longitude, total_amount, tax_amount,
          composite_tax_rate, state_rate, county_rate, city_rate,
          special_rate, jurisdictions (jsonb), reporting_code, status,
          created_at, updated_at
  Index : created_at, status

Write paths:
  create        → INSERT … RETURNING id
  batch_create  → one multi-row INSERT via psycopg2.extras.execute_values
                  (one statement, one transaction per batch)

Connection management:
  - A ThreadedConnectionPool is opened lazily on first use; every import
    worker and the single-order path borrow a connection per call.
  - Reads retry once on OperationalError with a fresh connection.  Writes do
    not retry: a dropped connection may or may not have committed.

To swap the database engine:
  1. Write a new adapter implementing OrderRepositoryPort
  2. Change ONE import in services/container.py
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

from geotax.config.settings import Settings
from geotax.domain.exceptions import DatabaseError
from geotax.domain.models import Order, OrderFilters, OrderList, TaxRateBreakdown

logger = logging.getLogger(__name__)

_DDL = """
CREATE TABLE IF NOT EXISTS orders (
    id                 SERIAL PRIMARY KEY,
    latitude           DOUBLE PRECISION NOT NULL,
    longitude          DOUBLE PRECISION NOT NULL,
    total_amount       DOUBLE PRECISION NOT NULL,
    tax_amount         DOUBLE PRECISION NOT NULL DEFAULT 0,
    composite_tax_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
    state_rate         DOUBLE PRECISION NOT NULL DEFAULT 0,
    county_rate        DOUBLE PRECISION NOT NULL DEFAULT 0,
    city_rate          DOUBLE PRECISION NOT NULL DEFAULT 0,
    special_rate       DOUBLE PRECISION NOT NULL DEFAULT 0,
    jurisdictions      JSONB            NOT NULL DEFAULT '[]'::jsonb,
    reporting_code     TEXT             NOT NULL DEFAULT '',
    status             TEXT             NOT NULL,
    created_at         TIMESTAMPTZ      NOT NULL,
    updated_at         TIMESTAMPTZ      NOT NULL
);
CREATE INDEX IF NOT EXISTS orders_created_at_idx ON orders (created_at);
CREATE INDEX IF NOT EXISTS orders_status_idx ON orders (status);
"""

# Insert order must match _order_values()
_INSERT_COLS = (
    "latitude",
    "longitude",
    "total_amount",
    "tax_amount",
    "composite_tax_rate",
    "state_rate",
    "county_rate",
    "city_rate",
    "special_rate",
    "jurisdictions",
    "reporting_code",
    "status",
    "created_at",
    "updated_at",
)
_INSERT_SQL = ", ".join(_INSERT_COLS)
_PLACEHOLDERS = ", ".join(["%s"] * len(_INSERT_COLS))
_SELECT_SQL = "id, " + _INSERT_SQL

# Whitelist: sort_by values are interpolated into SQL
_SORT_COLUMNS = {
    "id": "id",
    "created_at": "created_at",
    "total_amount": "total_amount",
    "status": "status",
}


def _order_values(order: Order) -> tuple:
    return (
        order.latitude,
        order.longitude,
        order.total_amount,
        order.tax_amount,
        order.composite_tax_rate,
        order.breakdown.state_rate,
        order.breakdown.county_rate,
        order.breakdown.city_rate,
        order.breakdown.special_rate,
        psycopg2.extras.Json(order.jurisdictions),
        order.reporting_code,
        order.status.value,
        order.created_at,
        order.updated_at,
    )


def _row_to_order(row: dict) -> Order:
    return Order(
        id=row["id"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        total_amount=row["total_amount"],
        tax_amount=row["tax_amount"],
        composite_tax_rate=row["composite_tax_rate"],
        breakdown=TaxRateBreakdown(
            state_rate=row["state_rate"],
            county_rate=row["county_rate"],
            city_rate=row["city_rate"],
            special_rate=row["special_rate"],
        ),
        jurisdictions=row["jurisdictions"] or [],
        reporting_code=row["reporting_code"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def build_list_query(filters: OrderFilters) -> tuple[str, list[Any]]:
    """Build the parameterised SELECT for OrderRepositoryPort.list_orders().

    Pure function (no connection needed) so the SQL can be unit-tested.
    """
    clauses: list[str] = []
    params: list[Any] = []

    if filters.status is not None:
        clauses.append("status = %s")
        params.append(filters.status.value)
    if filters.reporting_code:
        clauses.append("reporting_code = %s")
        params.append(filters.reporting_code)
    if filters.total_amount_min is not None:
        clauses.append("total_amount >= %s")
        params.append(filters.total_amount_min)
    if filters.total_amount_max is not None:
        clauses.append("total_amount <= %s")
        params.append(filters.total_amount_max)
    if filters.from_date is not None:
        clauses.append("created_at >= %s")
        params.append(filters.from_date)
    if filters.to_date is not None:
        clauses.append("created_at <= %s")
        params.append(filters.to_date)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    sort_col = _SORT_COLUMNS.get(filters.sort_by, "created_at")
    direction = "ASC" if filters.sort_order == "asc" else "DESC"

    sql = f"""
        SELECT {_SELECT_SQL},
               COUNT(*) OVER () AS total_count
        FROM   orders
        {where}
        ORDER  BY {sort_col} {direction}, id {direction}
        LIMIT  %s OFFSET %s
    """
    params.extend([filters.limit, filters.offset])
    return sql, params


class PostgresOrderRepository:
    """psycopg2 implementation of OrderRepositoryPort.

    Injected into OrderService via services/container.py.
    """

    def __init__(self, settings: Settings) -> None:
        self._dsn = settings.db_dsn
        self._min_conns = settings.db_min_conns
        self._max_conns = settings.db_max_conns
        self._pool: Any = None
        self._pool_lock = threading.Lock()
        logger.debug(
            "PostgresOrderRepository ready | dsn=%s pool=%d..%d",
            self._dsn,
            self._min_conns,
            self._max_conns,
        )

    # ── OrderRepositoryPort implementation ─────────────────────────────────

    def create(self, order: Order) -> int:
        sql = f"""
            INSERT INTO orders ({_INSERT_SQL})
            VALUES ({_PLACEHOLDERS})
            RETURNING id
        """
        try:
            rows = self._execute(sql, _order_values(order), retry=False)
        except psycopg2.Error as exc:
            raise DatabaseError(f"create order failed: {exc}") from exc
        return rows[0]["id"]

    def batch_create(self, orders: list[Order]) -> None:
        if not orders:
            return
        sql = f"INSERT INTO orders ({_INSERT_SQL}) VALUES %s"
        values = [_order_values(o) for o in orders]
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    psycopg2.extras.execute_values(cur, sql, values, page_size=len(values))
        except psycopg2.Error as exc:
            raise DatabaseError(f"batch_create of {len(orders)} orders failed: {exc}") from exc
        logger.debug("batch_create | inserted=%d", len(orders))

    def get_by_id(self, order_id: int) -> Optional[Order]:
        sql = f"SELECT {_SELECT_SQL} FROM orders WHERE id = %s"
        try:
            rows = self._execute(sql, (order_id,))
        except psycopg2.Error as exc:
            raise DatabaseError(f"get_by_id failed: {exc}") from exc
        return _row_to_order(rows[0]) if rows else None

    def list_orders(self, filters: OrderFilters) -> OrderList:
        sql, params = build_list_query(filters)
        try:
            rows = self._execute(sql, tuple(params))
        except psycopg2.Error as exc:
            raise DatabaseError(f"list orders failed: {exc}") from exc
        total = rows[0]["total_count"] if rows else 0
        return OrderList(total=total, orders=[_row_to_order(r) for r in rows])

    def delete_all(self) -> int:
        sql = "WITH deleted AS (DELETE FROM orders RETURNING 1) SELECT COUNT(*) AS n FROM deleted"
        try:
            rows = self._execute(sql, (), retry=False)
        except psycopg2.Error as exc:
            raise DatabaseError(f"delete_all failed: {exc}") from exc
        return rows[0]["n"]

    def ensure_schema(self) -> None:
        """Create the orders table and indexes if they do not exist."""
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_DDL)
        except psycopg2.Error as exc:
            raise DatabaseError(f"ensure_schema failed: {exc}") from exc
        logger.info("Orders schema ensured")

    # ── Connection helpers ─────────────────────────────────────────────────

    def _get_pool(self) -> Any:
        """Return the connection pool, creating it on first use."""
        with self._pool_lock:
            if self._pool is None or self._pool.closed:
                try:
                    self._pool = psycopg2.pool.ThreadedConnectionPool(
                        self._min_conns, self._max_conns, self._dsn
                    )
                except psycopg2.Error as exc:
                    raise DatabaseError(f"Cannot connect to database: {exc}") from exc
                logger.debug("PostgresOrderRepository: connection pool opened")
            return self._pool

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        """Borrow a pooled connection; commit on success, roll back on error."""
        pool = self._get_pool()
        conn = pool.getconn()
        broken = False
        try:
            yield conn
            conn.commit()
        except psycopg2.OperationalError:
            broken = True
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn, close=broken or bool(conn.closed))

    def _execute(self, sql: str, params: tuple, retry: bool = True) -> list[dict]:
        """Execute a query and return rows as dicts, with one optional retry."""
        attempts = (1, 2) if retry else (1,)
        for attempt in attempts:
            try:
                with self._connection() as conn:
                    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                        cur.execute(sql, params)
                        return list(cur.fetchall())
            except psycopg2.OperationalError as exc:
                if attempt == attempts[-1]:
                    raise
                logger.warning("DB OperationalError — retrying on a new connection: %s", exc)
        return []  # unreachable

    def close(self) -> None:
        """Close every pooled connection."""
        with self._pool_lock:
            if self._pool is not None and not self._pool.closed:
                self._pool.closeall()
                logger.debug("PostgresOrderRepository: connection pool closed")
