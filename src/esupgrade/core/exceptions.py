"""
esupgrade Domain-Specific Exceptions
====================================

This module defines a hierarchy of exceptions for consistent error handling
across the migration pipeline.

Exception Hierarchy:
    UpgradeError (base)
    ├── RecoverableError (transient, retry possible)
    │   ├── StoreConnectionError
    │   └── StoreTimeoutError
    ├── IrrecoverableError (permanent, requires intervention)
    │   ├── ConfigurationError
    │   ├── BulkWriteError
    │   ├── RetryExhaustedError
    │   ├── ExtensionConflictError
    │   ├── InconsistentBulkResponseError
    │   ├── VerificationError
    │   ├── TransformerNotFoundError
    │   ├── StaleMigrationError
    │   └── ModelVersionError
    └── Pipeline Errors
        ├── StoreError
        │   └── StoreRequestError
        ├── ClassificationError
        ├── MigrationFailedError
        └── RestoreFailedError

Usage Guidelines:
    - Return None for "not found" scenarios (expected case, not an error)
    - Raise exceptions for actual errors (connection failures, rejected writes,
      verification mismatches)
    - Always include context in error messages
    - Only the controller turns an exception into corrective action (restore)
"""

from typing import Any, Optional
from enum import Enum


class ErrorCategory(Enum):
    """Categories for error classification."""
    STORE = "STORE"
    CONFIG = "CONFIG"
    CLASSIFICATION = "CLASSIFICATION"
    WRITE = "WRITE"
    VERIFICATION = "VERIFICATION"
    MIGRATION = "MIGRATION"
    RESTORE = "RESTORE"
    SYSTEM = "SYSTEM"


class UpgradeError(Exception):
    """
    Base exception for all esupgrade errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for reports
        context: Additional context about the error
        recoverable: Whether the error is potentially recoverable
    """

    error_code: str = "UPGRADE_ERROR"
    recoverable: bool = True
    category: ErrorCategory = ErrorCategory.SYSTEM

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        error_code: Optional[str] = None,
        recoverable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if error_code is not None:
            self.error_code = error_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary for run reports."""
        result = {
            "error": self.message,
            "code": self.error_code,
            "recoverable": self.recoverable,
        }
        if self.context:
            result["context"] = self.context
        return result


# =============================================================================
# Base Categories: Recoverable vs Irrecoverable
# =============================================================================

class RecoverableError(UpgradeError):
    """
    Base class for recoverable errors.

    These are transient errors that may succeed on a later run:
    - Connection failures
    - Timeouts
    """
    recoverable = True


class IrrecoverableError(UpgradeError):
    """
    Base class for irrecoverable errors.

    These are permanent errors that require intervention:
    - Invalid configuration
    - Rejected or inconsistent writes
    - Verification failures
    """
    recoverable = False


# =============================================================================
# Store Errors
# =============================================================================

class StoreError(UpgradeError):
    """Base exception for document store errors."""
    error_code = "STORE_ERROR"
    category = ErrorCategory.STORE


class StoreConnectionError(RecoverableError, StoreError):
    """Raised when the document store (or the metadata store) is unreachable."""
    error_code = "STORE_CONNECTION_ERROR"

    def __init__(self, backend: str, message: str = "Connection failed", context: Optional[dict] = None):
        ctx = {"backend": backend}
        if context:
            ctx.update(context)
        super().__init__(f"[{backend}] {message}", ctx)
        self.backend = backend


class StoreTimeoutError(RecoverableError, StoreError):
    """Raised when a store request times out."""
    error_code = "STORE_TIMEOUT_ERROR"

    def __init__(self, backend: str, operation: str, context: Optional[dict] = None):
        ctx = {"backend": backend, "operation": operation}
        if context:
            ctx.update(context)
        super().__init__(f"[{backend}] Operation '{operation}' timed out", ctx)
        self.backend = backend
        self.operation = operation


class StoreRequestError(IrrecoverableError, StoreError):
    """Raised when the store answers a request with a non-success status."""
    error_code = "STORE_REQUEST_ERROR"

    def __init__(self, operation: str, status: int, body: Any = None, context: Optional[dict] = None):
        ctx = {"operation": operation, "status": status}
        if body is not None:
            body_str = str(body)
            if len(body_str) > 500:
                body_str = body_str[:500] + "..."
            ctx["body"] = body_str
        if context:
            ctx.update(context)
        super().__init__(f"Store operation '{operation}' failed with status {status}", ctx)
        self.operation = operation
        self.status = status
        self.body = body


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(IrrecoverableError):
    """Raised when configuration is invalid or missing."""
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIG

    def __init__(self, config_key: str, reason: str, context: Optional[dict] = None):
        ctx = {"config_key": config_key}
        if context:
            ctx.update(context)
        super().__init__(f"Configuration error for '{config_key}': {reason}", ctx)
        self.config_key = config_key


# =============================================================================
# Classification Errors
# =============================================================================

class ClassificationError(UpgradeError):
    """
    Raised when probing the metadata store for an index fails.

    Never escapes the classifier: the index is filed as uncategorized.
    """
    error_code = "CLASSIFICATION_ERROR"
    category = ErrorCategory.CLASSIFICATION

    def __init__(self, index: str, reason: str, context: Optional[dict] = None):
        ctx = {"index": index}
        if context:
            ctx.update(context)
        super().__init__(f"Could not classify index '{index}': {reason}", ctx)
        self.index = index


# =============================================================================
# Bulk Write Errors
# =============================================================================

class BulkWriteError(IrrecoverableError):
    """Raised when a bulk write reports a per-document error that cannot be retried."""
    error_code = "BULK_WRITE_ERROR"
    category = ErrorCategory.WRITE

    def __init__(self, index: str, reason: str, items: Optional[list] = None, context: Optional[dict] = None):
        ctx = {"index": index}
        if items:
            ctx["failed_items"] = items[:5]
            ctx["failed_count"] = len(items)
        if context:
            ctx.update(context)
        super().__init__(f"Bulk write into '{index}' failed: {reason}", ctx)
        self.index = index
        self.items = items or []


class RetryExhaustedError(IrrecoverableError):
    """Raised when rejected documents are still rejected after the last retry."""
    error_code = "RETRY_EXHAUSTED_ERROR"
    category = ErrorCategory.WRITE

    def __init__(self, index: str, attempts: int, pending: int, context: Optional[dict] = None):
        ctx = {"index": index, "attempts": attempts, "pending": pending}
        if context:
            ctx.update(context)
        super().__init__(
            f"Bulk write into '{index}' still rejected {pending} document(s) after {attempts} retries",
            ctx
        )
        self.index = index
        self.attempts = attempts
        self.pending = pending


class ExtensionConflictError(IrrecoverableError):
    """
    Raised when a field moved under `ext` would overwrite a different value
    the document already holds there.
    """
    error_code = "EXTENSION_CONFLICT_ERROR"
    category = ErrorCategory.WRITE

    def __init__(self, field: str, existing: Any, incoming: Any, context: Optional[dict] = None):
        ctx = {"field": field, "existing": existing, "incoming": incoming}
        if context:
            ctx.update(context)
        super().__init__(
            f"Field '{field}' collides with a different 'ext.{field}' value",
            ctx
        )
        self.field = field
        self.existing = existing
        self.incoming = incoming


class InconsistentBulkResponseError(IrrecoverableError):
    """Raised when a rejected bulk item has no matching source document."""
    error_code = "INCONSISTENT_BULK_RESPONSE_ERROR"
    category = ErrorCategory.WRITE

    def __init__(self, index: str, doc_type: Optional[str], doc_id: Optional[str], context: Optional[dict] = None):
        ctx = {"index": index, "type": doc_type, "id": doc_id}
        if context:
            ctx.update(context)
        super().__init__(
            f"Bulk response for '{index}' rejected {doc_type}/{doc_id}, which was never sent",
            ctx
        )
        self.index = index
        self.doc_type = doc_type
        self.doc_id = doc_id


# =============================================================================
# Verification Errors
# =============================================================================

class VerificationError(IrrecoverableError):
    """Raised when a migrated index does not match its backup."""
    error_code = "VERIFICATION_ERROR"
    category = ErrorCategory.VERIFICATION

    def __init__(
        self,
        index: str,
        reason: str,
        doc_type: Optional[str] = None,
        doc_id: Optional[str] = None,
        path: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
        context: Optional[dict] = None,
    ):
        ctx: dict = {"index": index}
        if doc_id is not None:
            ctx["type"] = doc_type
            ctx["id"] = doc_id
        if path is not None:
            ctx["path"] = path
            ctx["expected"] = expected
            ctx["actual"] = actual
        if context:
            ctx.update(context)
        super().__init__(f"Verification of '{index}' failed: {reason}", ctx)
        self.index = index
        self.doc_type = doc_type
        self.doc_id = doc_id
        self.path = path
        self.expected = expected
        self.actual = actual


# =============================================================================
# Migration Errors
# =============================================================================

class TransformerNotFoundError(IrrecoverableError):
    """Raised when no transformer upgrades from the deployment's model version."""
    error_code = "TRANSFORMER_NOT_FOUND_ERROR"
    category = ErrorCategory.MIGRATION

    def __init__(self, current_version: str, target_version: str, context: Optional[dict] = None):
        ctx = {"current_version": current_version, "target_version": target_version}
        if context:
            ctx.update(context)
        super().__init__(
            f"No transformer upgrades model version {current_version} towards {target_version}",
            ctx
        )
        self.current_version = current_version
        self.target_version = target_version


class StaleMigrationError(IrrecoverableError):
    """Raised when backup indices from an interrupted run are still present."""
    error_code = "STALE_MIGRATION_ERROR"
    category = ErrorCategory.MIGRATION

    def __init__(self, indices: list, context: Optional[dict] = None):
        ctx = {"indices": sorted(indices)}
        if context:
            ctx.update(context)
        super().__init__(
            "Backup indices from a previous run exist; restore or remove them before upgrading",
            ctx
        )
        self.indices = indices


class ModelVersionError(IrrecoverableError):
    """Raised when the model version cannot be read or persisted."""
    error_code = "MODEL_VERSION_ERROR"
    category = ErrorCategory.MIGRATION

    def __init__(self, operation: str, reason: str, context: Optional[dict] = None):
        ctx = {"operation": operation}
        if context:
            ctx.update(context)
        super().__init__(f"Model version {operation} failed: {reason}", ctx)
        self.operation = operation


class MigrationFailedError(UpgradeError):
    """
    Raised when a pipeline phase failed and the deployment was restored.

    The model version is unchanged; the original error is chained as __cause__.
    """
    error_code = "MIGRATION_FAILED_ERROR"
    recoverable = True
    category = ErrorCategory.MIGRATION

    def __init__(self, phase: str, original: BaseException, context: Optional[dict] = None):
        ctx = {"phase": phase, "restored": True, "original_error": str(original)}
        if context:
            ctx.update(context)
        super().__init__(f"Migration failed during '{phase}'; deployment restored", ctx)
        self.phase = phase
        self.original = original
        self.restored = True


class RestoreFailedError(IrrecoverableError):
    """
    Raised when restoring after a failed phase fails as well.

    Takes priority over the original error: the deployment is in an unknown
    state and needs operator intervention.
    """
    error_code = "RESTORE_FAILED_ERROR"
    category = ErrorCategory.RESTORE

    def __init__(self, phase: str, original: BaseException, restore_error: BaseException, context: Optional[dict] = None):
        ctx = {
            "phase": phase,
            "restored": False,
            "original_error": str(original),
            "restore_error": str(restore_error),
        }
        if context:
            ctx.update(context)
        super().__init__(
            f"Restore after failed '{phase}' did not complete; manual intervention required",
            ctx
        )
        self.phase = phase
        self.original = original
        self.restore_error = restore_error
        self.restored = False


# =============================================================================
# Utility Functions
# =============================================================================

def wrap_store_exception(backend: str, operation: str, exc: Exception) -> StoreError:
    """
    Wrap a generic exception into an appropriate StoreError.

    Args:
        backend: Name of the backend (e.g., 'elasticsearch', 'mongodb')
        operation: Name of the operation that failed
        exc: The original exception

    Returns:
        An appropriate StoreError subclass
    """
    if isinstance(exc, StoreError):
        return exc

    exc_name = type(exc).__name__
    exc_msg = str(exc)

    if 'timeout' in exc_msg.lower() or 'Timeout' in exc_name:
        return StoreTimeoutError(backend, operation)

    if any(x in exc_name.lower() for x in ['connection', 'connect', 'network', 'serverselection']):
        return StoreConnectionError(backend, exc_msg or exc_name)

    return StoreError(
        f"[{backend}] {operation} failed: {exc_msg}",
        {"backend": backend, "operation": operation, "original_exception": exc_name}
    )


__all__ = [
    # Base
    "UpgradeError",
    "RecoverableError",
    "IrrecoverableError",
    "ErrorCategory",
    # Store
    "StoreError",
    "StoreConnectionError",
    "StoreTimeoutError",
    "StoreRequestError",
    # Config
    "ConfigurationError",
    # Classification
    "ClassificationError",
    # Writes
    "BulkWriteError",
    "RetryExhaustedError",
    "ExtensionConflictError",
    "InconsistentBulkResponseError",
    # Verification
    "VerificationError",
    # Migration
    "TransformerNotFoundError",
    "StaleMigrationError",
    "ModelVersionError",
    "MigrationFailedError",
    "RestoreFailedError",
    # Utilities
    "wrap_store_exception",
]
