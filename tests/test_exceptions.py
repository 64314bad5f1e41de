"""
Tests for the exception hierarchy
"""

import asyncio

from esupgrade.core.exceptions import (
    BulkWriteError,
    IrrecoverableError,
    MigrationFailedError,
    RecoverableError,
    RestoreFailedError,
    RetryExhaustedError,
    StoreConnectionError,
    StoreError,
    StoreRequestError,
    StoreTimeoutError,
    UpgradeError,
    VerificationError,
    wrap_store_exception,
)


class TestUpgradeError:

    def test_str_includes_context(self):
        error = UpgradeError("broken", {"index": "x"})
        assert str(error) == "broken | context={'index': 'x'}"
        assert str(UpgradeError("broken")) == "broken"

    def test_to_dict(self):
        error = RetryExhaustedError("results-1", attempts=5, pending=2)
        data = error.to_dict()
        assert data["code"] == "RETRY_EXHAUSTED_ERROR"
        assert data["recoverable"] is False
        assert data["context"] == {"index": "results-1", "attempts": 5, "pending": 2}

    def test_overrides(self):
        error = UpgradeError("x", error_code="NOT_CONNECTED", recoverable=False)
        assert error.error_code == "NOT_CONNECTED"
        assert error.recoverable is False


class TestHierarchy:

    def test_store_errors(self):
        assert isinstance(StoreConnectionError("elasticsearch"), RecoverableError)
        assert isinstance(StoreConnectionError("elasticsearch"), StoreError)
        assert isinstance(StoreRequestError("bulk", 500), IrrecoverableError)

    def test_request_error_truncates_body(self):
        error = StoreRequestError("bulk", 400, "x" * 1000)
        assert error.context["body"].endswith("...")
        assert len(error.context["body"]) == 503

    def test_bulk_write_error_keeps_items(self):
        items = [{"index": {"_id": str(i)}} for i in range(8)]
        error = BulkWriteError("t", "mapper_parsing_exception", items)
        assert error.items == items
        assert error.context["failed_count"] == 8
        assert len(error.context["failed_items"]) == 5

    def test_verification_context(self):
        error = VerificationError("t", "differs", "traces", "1", "score", 3, 4)
        assert error.context == {
            "index": "t", "type": "traces", "id": "1",
            "path": "score", "expected": 3, "actual": 4,
        }


class TestPipelineErrors:

    def test_migration_failed(self):
        original = ValueError("bad")
        error = MigrationFailedError("upgrade", original)
        assert error.phase == "upgrade"
        assert error.original is original
        assert error.restored is True
        assert error.context["original_error"] == "bad"

    def test_restore_failed(self):
        error = RestoreFailedError("check", ValueError("bad"), OSError("worse"))
        assert error.restored is False
        assert error.context["restore_error"] == "worse"
        assert error.recoverable is False


class TestWrapStoreException:

    def test_passes_store_errors_through(self):
        error = StoreRequestError("get", 500)
        assert wrap_store_exception("elasticsearch", "get", error) is error

    def test_timeout(self):
        wrapped = wrap_store_exception("elasticsearch", "bulk", asyncio.TimeoutError())
        assert isinstance(wrapped, StoreTimeoutError)
        assert wrapped.operation == "bulk"

    def test_connection(self):
        wrapped = wrap_store_exception("mongodb", "find_one", ConnectionRefusedError("refused"))
        assert isinstance(wrapped, StoreConnectionError)

    def test_other(self):
        wrapped = wrap_store_exception("mongodb", "find_one", KeyError("x"))
        assert type(wrapped) is StoreError
        assert wrapped.context["original_exception"] == "KeyError"
