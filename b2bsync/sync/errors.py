"""Error taxonomy for the sync engine."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base error for sync failures."""


class ConfigurationError(SyncError):
    """Raised when tenant configuration or the canonical schema is unusable.

    ``config_key`` names the setting (or table) that is missing or invalid so
    operators can fix the tenant blob without reading a stack trace.
    """

    def __init__(self, message: str, *, config_key: str | None = None):
        super().__init__(message)
        self.config_key = config_key


class TransientConnectivityError(SyncError):
    """Raised when a retryable I/O failure persisted past the retry budget."""


class RowLevelError(SyncError):
    """A single row that cannot be applied; the batch continues without it."""

    def __init__(self, message: str, *, external_id: str | None = None):
        super().__init__(message)
        self.external_id = external_id


class ConstraintConflictError(RowLevelError):
    """A unique-key conflict that row-level recovery could not resolve."""
