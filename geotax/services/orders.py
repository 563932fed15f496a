"""
services/orders.py
──────────────────────────────────────────────────────────────────────────────
Application service: the single entry point for all interfaces (CLI,
Streamlit, or an HTTP layer).  It knows nothing about infrastructure — it
only speaks in domain objects and Ports.

Single order:
  OrderRequest → resolve → classify_order → repository.create → Order (with id)

CSV import:
  upload checks → admission gate → worker thread → BatchIngestionPipeline
  The caller gets a Future[ImportResult] back immediately; per-row outcomes
  are never reported, only aggregate counts.

Import slots:
  A slot is taken before the worker is submitted and released in the worker's
  ``finally`` — or immediately, if anything fails between the two.  The
  executor has exactly as many workers as the gate has slots, so an accepted
  import never waits in a queue.
"""
from __future__ import annotations

import io
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import BinaryIO, Optional, TextIO

from geotax.config.settings import Settings
from geotax.domain.exceptions import (
    FileTooLargeError,
    ImportRejectedError,
    InvalidFileFormatError,
    OrderNotFoundError,
)
from geotax.domain.models import ImportResult, Order, OrderFilters, OrderList, OrderRequest
from geotax.ports.order_repository_port import OrderRepositoryPort
from geotax.ports.tax_lookup_port import TaxLookupPort
from geotax.services.admission import ImportAdmissionGate
from geotax.services.classifier import classify_order
from geotax.services.ingestion import BatchIngestionPipeline

logger = logging.getLogger(__name__)

ALLOWED_CSV_CONTENT_TYPES = frozenset({"text/csv", "application/csv", "application/vnd.ms-excel"})
# Generic types some clients send for .csv files
_GENERIC_CONTENT_TYPES = frozenset({"", "text/plain", "application/octet-stream"})


def normalize_content_type(content_type: str) -> str:
    """Lower-case a MIME type and drop parameters such as ``; charset=utf-8``."""
    return content_type.strip().lower().split(";", 1)[0].strip()


def is_allowed_csv_upload(content_type: str, filename: str) -> bool:
    """Accept CSV MIME types, or a ``.csv`` name sent with a generic type."""
    normalized = normalize_content_type(content_type or "")
    if normalized in ALLOWED_CSV_CONTENT_TYPES:
        return True
    return Path(filename or "").suffix.lower() == ".csv" and normalized in _GENERIC_CONTENT_TYPES


class OrderService:
    """Prices, persists and imports orders.

    Inject via services/container.py — do not instantiate directly in
    application code.

    Args:
        tax_lookup: Any object satisfying TaxLookupPort.
        repository: Any object satisfying OrderRepositoryPort.
        gate:       Shared ImportAdmissionGate.
        settings:   Shared application settings.
    """

    def __init__(
        self,
        tax_lookup: TaxLookupPort,
        repository: OrderRepositoryPort,
        gate: ImportAdmissionGate,
        settings: Settings,
    ) -> None:
        self._tax_lookup = tax_lookup
        self._repository = repository
        self._gate = gate
        self._max_file_size = settings.max_file_size
        self._stop = threading.Event()
        self._pipeline = BatchIngestionPipeline(
            tax_lookup=tax_lookup,
            repository=repository,
            batch_size=settings.batch_size,
            timeout_seconds=settings.processing_timeout,
            stop_event=self._stop,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=gate.capacity,
            thread_name_prefix="order-import",
        )
        logger.debug(
            "OrderService init | batch_size=%d timeout=%.1fs import_slots=%d",
            settings.batch_size,
            settings.processing_timeout,
            gate.capacity,
        )

    @property
    def gate(self) -> ImportAdmissionGate:
        return self._gate

    # ── Single orders ──────────────────────────────────────────────────────

    def price_order(self, request: OrderRequest) -> Order:
        """Resolve and classify without persisting (quote)."""
        raw = request.to_raw()
        tax = self._tax_lookup.resolve(raw.longitude, raw.latitude)
        return classify_order(raw, tax)

    def create_order(self, request: OrderRequest) -> Order:
        """Price an order and persist it.

        Returns:
            The stored Order with its assigned id.

        Raises:
            DatabaseError: If the repository fails.
        """
        order = self.price_order(request)
        order_id = self._repository.create(order)
        order = order.model_copy(update={"id": order_id})
        logger.info(
            "Order created | id=%d status=%s tax=%.4f",
            order.id,
            order.status.value,
            order.tax_amount,
        )
        return order

    # ── CSV imports ────────────────────────────────────────────────────────

    def start_import(
        self,
        stream: BinaryIO,
        filename: str,
        content_type: str = "",
        size: Optional[int] = None,
    ) -> "Future[ImportResult]":
        """Validate an upload and start importing it on a worker thread.

        Ownership of ``stream`` passes to the service once a slot has been
        taken: it is closed when the import ends, or straight away if the
        worker cannot be started.  On validation errors and rejections the
        caller still owns it.

        Args:
            stream:       Binary, readable CSV content (UTF-8).
            filename:     Original file name (used for format checks, logs).
            content_type: MIME type reported by the client, if any.
            size:         Size in bytes, if known.

        Returns:
            Future resolving to the run's ImportResult.

        Raises:
            InvalidFileFormatError: If the upload is not a CSV file.
            FileTooLargeError:      If ``size`` exceeds MAX_FILE_SIZE.
            ImportRejectedError:    If every import slot is busy.
        """
        if not is_allowed_csv_upload(content_type, filename):
            raise InvalidFileFormatError(
                f"unsupported file format: {filename!r} ({content_type or 'no content type'})"
            )
        if size is not None and size > self._max_file_size:
            raise FileTooLargeError(
                f"{filename!r} is {size} bytes; limit is {self._max_file_size}"
            )
        if self._stop.is_set():
            raise ImportRejectedError("service is shutting down")
        if not self._gate.try_acquire():
            raise ImportRejectedError(
                f"too many concurrent imports (limit {self._gate.capacity})"
            )

        try:
            text = io.TextIOWrapper(stream, encoding="utf-8-sig", newline="")
            future = self._executor.submit(self._run_import, text, filename)
        except BaseException:
            self._gate.release()
            stream.close()
            raise

        logger.info("Import accepted | file=%s slots_in_use=%d", filename, self._gate.in_use)
        return future

    def submit_file(self, path: Path) -> "Future[ImportResult]":
        """start_import() for a file on disk; the format check uses its name."""
        size = path.stat().st_size
        stream = path.open("rb")
        try:
            return self.start_import(stream, path.name, size=size)
        except (InvalidFileFormatError, FileTooLargeError, ImportRejectedError):
            stream.close()
            raise

    def import_file(self, path: Path) -> ImportResult:
        """Import a file and wait for the result."""
        return self.submit_file(path).result()

    def _run_import(self, stream: TextIO, label: str) -> ImportResult:
        try:
            return self._pipeline.run_csv(stream, label=label)
        except Exception:
            logger.exception("Import crashed | file=%s", label)
            raise
        finally:
            self._gate.release()

    # ── Queries ────────────────────────────────────────────────────────────

    def get_order(self, order_id: int) -> Order:
        order = self._repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        return order

    def list_orders(self, filters: Optional[OrderFilters] = None) -> OrderList:
        return self._repository.list_orders(filters or OrderFilters())

    def delete_all_orders(self) -> int:
        deleted = self._repository.delete_all()
        logger.info("All orders deleted | count=%d", deleted)
        return deleted

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def shutdown(self, wait: bool = True) -> None:
        """Stop running imports at their next row and close the worker pool."""
        self._stop.set()
        self._executor.shutdown(wait=wait)
        logger.info("OrderService shut down")
