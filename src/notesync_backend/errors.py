"""Sync failure taxonomy shared by the server and the client coordinator.

Conflicts are not errors: they are a normal push outcome and never raised.
"""

from __future__ import annotations


class SyncError(RuntimeError):
    error = "sync_error"
    status_code = 500

    def __init__(self, message: str, *, details: object | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(SyncError):
    """Malformed or missing field in a submitted entity; nothing was written."""

    error = "validation_error"
    status_code = 422


class AuthError(SyncError):
    """Invalid/expired credential, or a revoked device calling sync or heartbeat."""

    error = "unauthorized"
    status_code = 401


class ForbiddenError(AuthError):
    error = "forbidden"
    status_code = 403


class TransportError(SyncError):
    """Network/timeout failure. Only raised client side; never retried automatically."""

    error = "transport_error"
    status_code = 502


class StorageError(SyncError):
    """Server-side persistence failure; the rest of the batch is aborted."""

    error = "storage_error"
    status_code = 503
