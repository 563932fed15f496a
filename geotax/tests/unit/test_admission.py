"""
tests/unit/test_admission.py
──────────────────────────────────────────────────────────────────────────────
Unit tests for ImportAdmissionGate.

Verifies:
  • the (C+1)-th acquire is rejected while C slots are held
  • one release lets exactly one further acquire through
  • unbalanced release() raises
  • slot() releases on normal exit and on exceptions
  • the count never exceeds capacity under concurrent acquires
"""
from __future__ import annotations

import threading

import pytest

from geotax.domain.exceptions import ImportRejectedError
from geotax.services.admission import ImportAdmissionGate


class TestCapacity:
    def test_rejects_beyond_capacity(self):
        gate = ImportAdmissionGate(3)
        assert [gate.try_acquire() for _ in range(3)] == [True, True, True]
        assert gate.try_acquire() is False
        assert gate.in_use == 3
        assert gate.available == 0

    def test_one_release_admits_exactly_one(self):
        gate = ImportAdmissionGate(2)
        gate.try_acquire()
        gate.try_acquire()
        gate.release()
        assert gate.try_acquire() is True
        assert gate.try_acquire() is False

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ImportAdmissionGate(0)

    def test_release_without_acquire_raises(self):
        gate = ImportAdmissionGate(1)
        with pytest.raises(RuntimeError):
            gate.release()
        assert gate.in_use == 0


class TestSlotContext:
    def test_released_on_exit(self):
        gate = ImportAdmissionGate(1)
        with gate.slot():
            assert gate.in_use == 1
        assert gate.in_use == 0

    def test_released_on_exception(self):
        gate = ImportAdmissionGate(1)
        with pytest.raises(KeyError):
            with gate.slot():
                raise KeyError("boom")
        assert gate.available == 1

    def test_full_gate_raises_rejected(self):
        gate = ImportAdmissionGate(1)
        with gate.slot():
            with pytest.raises(ImportRejectedError):
                with gate.slot():
                    pass
            assert gate.in_use == 1


class TestConcurrency:
    def test_concurrent_acquires_bounded(self):
        capacity = 4
        gate = ImportAdmissionGate(capacity)
        barrier = threading.Barrier(32)
        results: list[bool] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            ok = gate.try_acquire()
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(32)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == capacity
        assert gate.in_use == capacity

    def test_acquire_release_churn_balances(self):
        gate = ImportAdmissionGate(2)

        def worker():
            for _ in range(200):
                if gate.try_acquire():
                    assert gate.in_use <= 2
                    gate.release()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert gate.in_use == 0
