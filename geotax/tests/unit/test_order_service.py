"""
tests/unit/test_order_service.py
──────────────────────────────────────────────────────────────────────────────
Unit tests for OrderService using the mock repository from conftest.py.

Verifies:
  • create_order persists and returns the assigned id
  • price_order never touches the repository
  • repository errors propagate from the single-order path
  • upload checks: format, size, slot rejection
  • the import slot is released after success, failure and submit errors
  • get / list / delete delegate to the repository
"""
from __future__ import annotations

import io
import threading

import pytest

from geotax.domain.exceptions import (
    DatabaseError,
    FileTooLargeError,
    ImportRejectedError,
    InvalidFileFormatError,
    OrderNotFoundError,
)
from geotax.domain.models import OrderFilters, OrderStatus
from geotax.services.admission import ImportAdmissionGate
from geotax.services.orders import OrderService, is_allowed_csv_upload

_CSV = b"1,5,5,2023-01-01 00:00:00,100\n2,50,50,2023-01-01 00:00:00,10\n3,bad,5,2023-01-01 00:00:00,1\n"


class TestUploadFormat:
    @pytest.mark.parametrize(
        "content_type, filename",
        [
            ("text/csv", "orders.bin"),
            ("application/csv", ""),
            ("application/vnd.ms-excel", "orders.xls"),
            ("text/csv; charset=utf-8", "orders"),
            ("", "orders.csv"),
            ("text/plain", "ORDERS.CSV"),
            ("application/octet-stream", "orders.csv"),
        ],
    )
    def test_allowed(self, content_type, filename):
        assert is_allowed_csv_upload(content_type, filename)

    @pytest.mark.parametrize(
        "content_type, filename",
        [
            ("application/json", "orders.csv"),
            ("", "orders.txt"),
            ("text/plain", "orders"),
            ("image/png", "orders.png"),
        ],
    )
    def test_rejected(self, content_type, filename):
        assert not is_allowed_csv_upload(content_type, filename)


class TestSingleOrder:
    def test_create_assigns_id(self, service, mock_repo, order_request):
        order = service.create_order(order_request)
        assert order.id == 1
        assert order.status == OrderStatus.COMPLETED
        assert order.tax_amount == pytest.approx(8.0)
        assert mock_repo.orders[1].reporting_code == "ZA"

    def test_create_out_of_scope(self, service, order_request):
        request = order_request.model_copy(update={"longitude": 50, "latitude": 50})
        order = service.create_order(request)
        assert order.status == OrderStatus.OUT_OF_SCOPE
        assert order.tax_amount == 0

    def test_price_does_not_persist(self, service, mock_repo, order_request):
        order = service.price_order(order_request)
        assert order.id == 0
        assert mock_repo.orders == {}

    def test_database_error_propagates(self, resolver, repo_factory, gate, settings, order_request):
        svc = OrderService(resolver, repo_factory(fail_create=True), gate, settings)
        try:
            with pytest.raises(DatabaseError):
                svc.create_order(order_request)
        finally:
            svc.shutdown()


class TestStartImport:
    def test_import_counts(self, service, mock_repo, gate):
        result = service.start_import(io.BytesIO(_CSV), "orders.csv", "text/csv").result(timeout=10)
        assert result.processed == 2
        assert result.failed == 1
        assert result.completed == 1
        assert result.out_of_scope == 1
        assert mock_repo.batch_sizes == [2]
        assert gate.in_use == 0

    def test_stream_closed_after_import(self, service):
        stream = io.BytesIO(_CSV)
        service.start_import(stream, "orders.csv").result(timeout=10)
        assert stream.closed

    def test_utf8_bom_tolerated(self, service):
        result = service.start_import(io.BytesIO(b"\xef\xbb\xbf" + _CSV), "orders.csv").result(timeout=10)
        assert result.processed == 2

    def test_invalid_format(self, service, gate):
        stream = io.BytesIO(_CSV)
        with pytest.raises(InvalidFileFormatError):
            service.start_import(stream, "orders.json", "application/json")
        assert gate.in_use == 0
        assert not stream.closed

    def test_too_large(self, service, settings, gate):
        with pytest.raises(FileTooLargeError):
            service.start_import(io.BytesIO(_CSV), "orders.csv", size=settings.max_file_size + 1)
        assert gate.in_use == 0

    def test_rejected_when_all_slots_busy(self, service, gate):
        gate.try_acquire()
        gate.try_acquire()
        try:
            with pytest.raises(ImportRejectedError):
                service.start_import(io.BytesIO(_CSV), "orders.csv")
            assert gate.in_use == 2
        finally:
            gate.release()
            gate.release()

    def test_slot_released_when_import_crashes(self, mock_repo, gate, settings):
        class _Boom:
            def resolve(self, longitude, latitude):
                raise RuntimeError("index corrupted")

        svc = OrderService(_Boom(), mock_repo, gate, settings)
        try:
            future = svc.start_import(io.BytesIO(_CSV), "orders.csv")
            with pytest.raises(RuntimeError):
                future.result(timeout=10)
            assert gate.in_use == 0
        finally:
            svc.shutdown()

    def test_slot_released_when_submit_fails(self, resolver, mock_repo, settings):
        gate = ImportAdmissionGate(1)
        svc = OrderService(resolver, mock_repo, gate, settings)
        svc._executor.shutdown(wait=True)
        stream = io.BytesIO(_CSV)
        with pytest.raises(RuntimeError):
            svc.start_import(stream, "orders.csv")
        assert gate.in_use == 0
        assert stream.closed

    def test_rejected_after_shutdown(self, resolver, mock_repo, gate, settings):
        svc = OrderService(resolver, mock_repo, gate, settings)
        svc.shutdown()
        with pytest.raises(ImportRejectedError):
            svc.start_import(io.BytesIO(_CSV), "orders.csv")
        assert gate.in_use == 0

    def test_concurrent_imports_bounded_by_gate(self, fixed_lookup, mock_repo, gate, settings):
        """With both slots held by blocked imports, a third is rejected."""
        release = threading.Event()

        class _BlockingRaw(io.RawIOBase):
            """Raw stream whose reads wait until the test releases them."""

            def __init__(self, payload: bytes) -> None:
                self._inner = io.BytesIO(payload)

            def readable(self):
                return True

            def readinto(self, b):
                release.wait(10)
                return self._inner.readinto(b)

        svc = OrderService(fixed_lookup, mock_repo, gate, settings)
        try:
            futures = [svc.start_import(io.BufferedReader(_BlockingRaw(_CSV)), f"f{i}.csv") for i in range(2)]
            with pytest.raises(ImportRejectedError):
                svc.start_import(io.BytesIO(_CSV), "third.csv")
            release.set()
            for f in futures:
                assert f.result(timeout=10).processed == 2
            assert gate.in_use == 0
        finally:
            release.set()
            svc.shutdown()


class TestImportFile:
    def test_import_file(self, service, tmp_path):
        path = tmp_path / "orders.csv"
        path.write_bytes(_CSV)
        result = service.import_file(path)
        assert result.processed == 2

    def test_non_csv_name_rejected(self, service, tmp_path):
        path = tmp_path / "orders.txt"
        path.write_bytes(_CSV)
        with pytest.raises(InvalidFileFormatError):
            service.import_file(path)


class TestQueries:
    def test_get_order(self, service, order_request):
        created = service.create_order(order_request)
        assert service.get_order(created.id).id == created.id

    def test_get_missing_raises(self, service):
        with pytest.raises(OrderNotFoundError):
            service.get_order(404)

    def test_list_orders(self, service, order_request):
        for _ in range(3):
            service.create_order(order_request)
        page = service.list_orders(OrderFilters(limit=2, sort_order="asc"))
        assert page.total == 3
        assert [o.id for o in page.orders] == [1, 2]

    def test_list_orders_default_filters(self, service):
        assert service.list_orders().total == 0

    def test_delete_all(self, service, order_request):
        service.create_order(order_request)
        service.create_order(order_request)
        assert service.delete_all_orders() == 2
        assert service.list_orders().total == 0
