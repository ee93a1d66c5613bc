from __future__ import annotations

from typing import Any


class TrailError(Exception):
    """Base class for every error jobtrail raises on purpose."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TrailError):
    """Bad input shape, size or type. The caller can fix it and retry."""


class InvalidFormatError(ValidationError):
    """File content does not match its extension (format sniffing failed)."""


class InvalidArgumentError(ValidationError):
    pass


class NotFoundError(TrailError):
    pass


class ConflictError(TrailError):
    """Active-version or duplicate conflict that needs an explicit decision."""


class StorageError(TrailError):
    """Filesystem failure: disk full, permissions, unreadable document."""


class ExtractionError(TrailError):
    """Text extraction failed. Never fatal to the operation that triggered it."""
