"""
services/ingestion.py
──────────────────────────────────────────────────────────────────────────────
Streaming CSV import: rows → RawOrder → resolve → classify → batched insert.

Row layout (0-indexed, extra columns ignored):
  [0] id (unused)  [1] longitude  [2] latitude
  [3] timestamp "YYYY-MM-DD HH:MM:SS[.fraction]"  [4] subtotal

Failure handling:
  • Row-level    — a row that fails parse_row(), or that the csv reader
                   rejects (e.g. a field over csv.field_size_limit()), is
                   skipped and counted.
  • Batch-level  — a failed batch_create() is logged and counted; the stream
                   continues with a fresh buffer (no retry).
  • Stream-level — deadline expiry, service shutdown, or an I/O or decode
                   error while reading stops reading.

Whatever is buffered when the read loop ends is flushed once, whatever the
reason the loop ended.  The row source is always closed.

The deadline is a single absolute budget from pipeline start, checked before
each row is read.  Work already started (a resolve or a flush) is never
interrupted.
"""
from __future__ import annotations

import csv
import logging
import math
import re
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Protocol, Sequence, TextIO

from geotax.domain.exceptions import RowParseError
from geotax.domain.models import ImportResult, Order, OrderStatus, RawOrder
from geotax.ports.order_repository_port import OrderRepositoryPort
from geotax.ports.tax_lookup_port import TaxLookupPort
from geotax.services.classifier import classify_order

logger = logging.getLogger(__name__)

MIN_COLUMNS = 5
_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?$",
    re.ASCII,
)
_NUMBER_RE = re.compile(r"^[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?$")
# Errors raised while pulling the next row that end the stream.
_READ_ERRORS = (OSError, UnicodeDecodeError)


class _Closeable(Protocol):
    def close(self) -> None: ...


# ── Row parsing (pure) ─────────────────────────────────────────────────────

def parse_timestamp(value: str) -> datetime:
    """Parse ``YYYY-MM-DD HH:MM:SS[.fraction]`` as a UTC datetime.

    Up to nine fraction digits are accepted; anything past microseconds is
    truncated.

    Raises:
        RowParseError: If the value does not match the layout or is not a
                       real calendar date/time.
    """
    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        raise RowParseError(f"invalid timestamp: {value!r}")
    base, fraction = match.groups()
    try:
        ts = datetime.strptime(base, "%Y-%m-%d %H:%M:%S")
    except ValueError as exc:
        raise RowParseError(f"invalid timestamp: {value!r}") from exc
    if fraction:
        ts = ts.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    return ts.replace(tzinfo=timezone.utc)


def _parse_float(value: str, column: str) -> float:
    # Plain ASCII decimal only: float() would also take "1_000", "٥" and "inf".
    text = value.strip()
    if not _NUMBER_RE.match(text):
        raise RowParseError(f"invalid {column}: {value!r}")
    number = float(text)
    if not math.isfinite(number):
        raise RowParseError(f"non-finite {column}: {value!r}")
    return number


def parse_row(record: Sequence[str]) -> RawOrder:
    """Map one CSV record to a RawOrder.

    Raises:
        RowParseError: On too few columns or any unparsable field.
    """
    if len(record) < MIN_COLUMNS:
        raise RowParseError(
            f"invalid column count: expected at least {MIN_COLUMNS}, got {len(record)}"
        )
    return RawOrder(
        longitude=_parse_float(record[1], "longitude"),
        latitude=_parse_float(record[2], "latitude"),
        timestamp=parse_timestamp(record[3]),
        subtotal=_parse_float(record[4], "subtotal"),
    )


# ── Cancellation token ─────────────────────────────────────────────────────

class _Deadline:
    """Absolute deadline plus an optional external stop signal."""

    def __init__(
        self,
        timeout_seconds: float,
        clock: Callable[[], float],
        stop_event: Optional[threading.Event],
    ) -> None:
        self._clock = clock
        self._expires_at = clock() + timeout_seconds
        self._stop_event = stop_event

    @property
    def stopped(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at


# ── Pipeline ───────────────────────────────────────────────────────────────

class BatchIngestionPipeline:
    """Runs one CSV import to completion on the calling thread.

    A pipeline instance is cheap and may be reused for several sequential
    runs; concurrency is bounded by OrderService through the admission gate.

    Args:
        tax_lookup:      Any object satisfying TaxLookupPort.
        repository:      Any object satisfying OrderRepositoryPort.
        batch_size:      Orders per batch_create() call (>= 1).
        timeout_seconds: Wall-clock budget for a whole run.
        clock:           Monotonic clock; injectable for tests.
        stop_event:      Set by OrderService.shutdown() to stop reading.
    """

    def __init__(
        self,
        tax_lookup: TaxLookupPort,
        repository: OrderRepositoryPort,
        batch_size: int,
        timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._tax_lookup = tax_lookup
        self._repository = repository
        self._batch_size = batch_size
        self._timeout = timeout_seconds
        self._clock = clock
        self._stop_event = stop_event

    # ── Public API ─────────────────────────────────────────────────────────

    def run_csv(self, stream: TextIO, label: str = "") -> ImportResult:
        """Import from an open text stream; the stream is closed afterwards."""
        return self.run(csv.reader(stream), source=stream, label=label)

    def run(
        self,
        rows: Iterable[Sequence[str]],
        source: Optional[_Closeable] = None,
        label: str = "",
    ) -> ImportResult:
        """Consume ``rows`` until EOF, deadline, stop signal or read error.

        Args:
            rows:   Iterable of CSV records (lists of strings).
            source: Underlying resource, closed when the run ends.
            label:  Name used in log lines (e.g. the uploaded file name).

        Returns:
            ImportResult with processed / failed counts and batch stats.
        """
        started = self._clock()
        deadline = _Deadline(self._timeout, self._clock, self._stop_event)
        result = ImportResult()
        buffer: list[Order] = []
        logger.info(
            "Import started | source=%s batch_size=%d timeout=%.1fs",
            label or "<stream>",
            self._batch_size,
            self._timeout,
        )

        try:
            iterator = iter(rows)
            line = 0
            while True:
                if deadline.stopped:
                    logger.warning("Import stopped by shutdown | source=%s line=%d", label, line)
                    result.stopped = True
                    break
                if deadline.expired:
                    logger.error("Import processing timeout reached | source=%s line=%d", label, line)
                    result.timed_out = True
                    break

                try:
                    record = next(iterator)
                except StopIteration:
                    break
                except csv.Error as exc:
                    line += 1
                    result.failed += 1
                    logger.warning("Skipping unreadable row | source=%s line=%d: %s", label, line, exc)
                    continue
                except _READ_ERRORS as exc:
                    logger.error("Failed to read row | source=%s line=%d: %s", label, line + 1, exc)
                    result.read_error = True
                    break

                line += 1
                if not record:
                    continue

                try:
                    raw = parse_row(record)
                except RowParseError as exc:
                    result.failed += 1
                    logger.warning("Skipping invalid row | line=%d record=%r: %s", line, record, exc)
                    continue

                order = classify_order(raw, self._tax_lookup.resolve(raw.longitude, raw.latitude))
                result.processed += 1
                if order.status == OrderStatus.COMPLETED:
                    result.completed += 1
                else:
                    result.out_of_scope += 1

                buffer.append(order)
                if len(buffer) >= self._batch_size:
                    self._flush(buffer, result)
                    buffer = []

            if buffer:
                self._flush(buffer, result)
        finally:
            if source is not None:
                _close_quietly(source)

        result.elapsed_seconds = round(self._clock() - started, 6)
        logger.info(
            "Import finished | source=%s processed=%d failed=%d batches=%d "
            "batches_failed=%d timed_out=%s elapsed=%.3fs",
            label or "<stream>",
            result.processed,
            result.failed,
            result.batches_flushed,
            result.batches_failed,
            result.timed_out,
            result.elapsed_seconds,
        )
        return result

    # ── Internals ──────────────────────────────────────────────────────────

    def _flush(self, batch: list[Order], result: ImportResult) -> None:
        """Hand one batch to the repository; failures are logged, not raised."""
        try:
            self._repository.batch_create(batch)
        except Exception:
            result.batches_failed += 1
            logger.exception("Failed to create order batch | size=%d", len(batch))
            return
        result.batches_flushed += 1
        result.orders_persisted += len(batch)
        logger.debug("Batch flushed | size=%d total=%d", len(batch), result.orders_persisted)


def _close_quietly(source: _Closeable) -> None:
    try:
        source.close()
    except OSError as exc:
        logger.warning("Failed to close import source: %s", exc)
