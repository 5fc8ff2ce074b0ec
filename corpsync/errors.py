"""Closed error taxonomy surfaced by the sync engine.

Every failure that crosses a component boundary is one of these. The
``category`` attribute is what ends up on the ErrorRecord.
"""
from __future__ import annotations

from typing import Optional


class SyncEngineError(Exception):
    category = "unknown"

    def __init__(
        self,
        message: str,
        *,
        http_status: Optional[int] = None,
        retry_attempt: Optional[int] = None,
        request_url: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.retry_attempt = retry_attempt
        self.request_url = request_url
        self.details = details


class AuthError(SyncEngineError):
    """Missing, expired or unrefreshable credential."""

    category = "auth"


class InsufficientScope(AuthError):
    """Credential is valid but lacks a required scope; needs re-authentication."""


class RateLimitExceeded(SyncEngineError):
    category = "api"


class TransientError(SyncEngineError):
    """Network failure or 5xx that survived every retry."""

    @property
    def category(self) -> str:  # type: ignore[override]
        return "api" if self.http_status is not None else "network"


class ValidationError(SyncEngineError):
    category = "validation"


class StorageError(SyncEngineError):
    category = "database"


class InternalError(SyncEngineError):
    category = "unknown"
