"""
domain/exceptions.py
──────────────────────────────────────────────────────────────────────────────
Custom exception hierarchy.

All exceptions are rooted at GeoTaxError so callers can catch broadly
(except GeoTaxError) or narrowly (except ImportRejectedError).

When putting an HTTP layer in front of OrderService, map these to:
  UploadError          → 400 (FileTooLargeError → 413)
  ImportRejectedError  → 429
  OrderNotFoundError   → 404
  DatabaseError        → 500
  ValidationError      → 422 (Pydantic handles this automatically)

A jurisdiction "miss" is NOT an error: it yields an out_of_scope Order.
"""
from __future__ import annotations


class GeoTaxError(Exception):
    """Base exception for all application errors."""


class ConfigurationError(GeoTaxError):
    """Raised when required configuration is missing or invalid."""


class BoundaryDataError(ConfigurationError):
    """Raised when the jurisdiction boundary dataset cannot be loaded."""


class DatabaseError(GeoTaxError):
    """Raised when a database operation fails."""


class OrderNotFoundError(GeoTaxError):
    """Raised when an order id does not exist in the store."""


class RowParseError(GeoTaxError):
    """Raised when a CSV row fails structural validation.

    Absorbed by the import pipeline: the row is skipped and counted.
    """


class UploadError(GeoTaxError):
    """Raised when an import upload is rejected before processing starts."""


class InvalidFileFormatError(UploadError):
    """Raised when an upload is not a CSV file."""


class FileTooLargeError(UploadError):
    """Raised when an upload exceeds MAX_FILE_SIZE."""


class ImportRejectedError(GeoTaxError):
    """Raised when every import slot is busy.

    The request is rejected, not queued; the caller may retry later.
    """
