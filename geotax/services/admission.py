"""
services/admission.py
──────────────────────────────────────────────────────────────────────────────
Admission control for CSV imports: a fixed pool of import slots.

try_acquire() never blocks.  When every slot is held the caller must reject
the import (ImportRejectedError), not queue it, so an import storm cannot pile
up buffers and database connections.

Every successful try_acquire() must be paired with exactly one release(), on
every exit path.  Use slot() when acquire and release happen on the same
thread; OrderService releases from the worker thread in a ``finally``.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from geotax.domain.exceptions import ImportRejectedError

logger = logging.getLogger(__name__)


class ImportAdmissionGate:
    """Non-blocking counting gate, safe to share between threads.

    Args:
        capacity: Maximum number of imports allowed to run at once.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._in_use = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @property
    def available(self) -> int:
        with self._lock:
            return self._capacity - self._in_use

    def try_acquire(self) -> bool:
        """Take a slot if one is free.  Returns False immediately otherwise."""
        with self._lock:
            if self._in_use >= self._capacity:
                logger.warning("Import rejected | slots_in_use=%d/%d", self._in_use, self._capacity)
                return False
            self._in_use += 1
            logger.debug("Import slot acquired | in_use=%d/%d", self._in_use, self._capacity)
            return True

    def release(self) -> None:
        """Return a slot to the pool.

        Raises:
            RuntimeError: If no slot is held (unbalanced release).
        """
        with self._lock:
            if self._in_use == 0:
                raise RuntimeError("ImportAdmissionGate.release() without a held slot")
            self._in_use -= 1
            logger.debug("Import slot released | in_use=%d/%d", self._in_use, self._capacity)

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold a slot for the duration of the ``with`` block.

        Raises:
            ImportRejectedError: If no slot is free.
        """
        if not self.try_acquire():
            raise ImportRejectedError(
                f"too many concurrent imports (limit {self._capacity})"
            )
        try:
            yield
        finally:
            self.release()
