"""
Error types for Pivot Coach.

Capture, model and backend errors are surfaced to the UI as status;
storage open failures are fatal only when constructing the store.
"""

from typing import Optional


class CoachError(Exception):
    """Base class for all Pivot Coach errors."""


# ============================================
# Audio capture
# ============================================


class PermissionDenied(CoachError):
    """OS refused audio/screen capture permission."""


class DeviceUnavailable(CoachError):
    """No capturable audio device was found."""


# ============================================
# Models and backends
# ============================================


class ModelUnavailable(CoachError):
    """Speech-to-text model or LLM backend could not be loaded/reached."""


class BackendUnavailable(ModelUnavailable):
    """Local inference backend is not reachable."""


class RequestFailed(CoachError):
    """A backend request failed (timeout or non-2xx status)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class EmbeddingUnavailable(CoachError):
    """No word-embedding table could be loaded."""


# ============================================
# Storage
# ============================================


class StorageError(CoachError):
    """Context store failure."""


class OpenFailed(StorageError):
    """The store file could not be opened or initialized."""


class QueryFailed(StorageError):
    """A read or write against the store failed."""

    def __init__(self, detail: str):
        super().__init__(f"Query failed: {detail}")
        self.detail = detail
