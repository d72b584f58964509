"""GrowthSync — Error taxonomy.

Hierarchy:
    SyncError
    ├── ConfigError            (bad mapping / account id / missing credentials)
    ├── AuthError              (expired or invalid token)
    ├── RateLimitError         (source reported throttling)
    ├── TransientNetworkError  (connectivity, timeouts, 5xx)
    ├── ValidationError        (normalization-time row problems)
    └── MigrationError         (mode switch / restore failures)

``public_message`` is what gets persisted into status fields and sync history:
short, no stack traces, no tokens.
"""

import re
from typing import Any, Dict, List, Optional

_SECRET_PATTERN = re.compile(
    r"(access_token|refresh_token|client_secret|token|key)=([^&\s]+)", re.IGNORECASE
)


def scrub(text: str) -> str:
    """Redact credential-looking query parameters from a message."""
    return _SECRET_PATTERN.sub(r"\1=****", text)


class SyncError(Exception):
    """Base exception for all sync engine errors."""

    retryable = False

    def __init__(
        self, message: str, code: str = "SYNC_ERROR", details: Dict[str, Any] | None = None
    ):
        self.code = code
        self.details = details or {}
        self.message = scrub(message)
        super().__init__(f"[{code}] {self.message}")

    @property
    def public_message(self) -> str:
        return self.message[:500]


class ConfigError(SyncError):
    """Missing or invalid mapping, account id or credentials. Not retryable."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, code="CONFIG_ERROR", details={"field": field})
        self.field = field


class AuthError(SyncError):
    """Authentication failure. Adapters that can refresh retry once."""

    def __init__(self, message: str = "Authentication failed", status_code: int = 401):
        super().__init__(message, code="AUTH_FAILED", details={"status_code": status_code})
        self.status_code = status_code


class RateLimitError(SyncError):
    """The source throttled us."""

    retryable = True

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        msg = message
        if retry_after:
            msg += f" (retry after {retry_after:.0f}s)"
        super().__init__(msg, code="RATE_LIMITED", details={"retry_after": retry_after})
        self.retry_after = retry_after


class TransientNetworkError(SyncError):
    """Connectivity failure. Safe to retry on the next trigger."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, code="NETWORK_ERROR", details={"status_code": status_code})
        self.status_code = status_code


class ValidationError(SyncError):
    """One or more rows failed normalization.

    ``row_indices`` lists every offending row, not just the first.
    ``problems`` maps a row reference (``Jan Ads!5``, or the row index) to what
    was wrong with it.
    """

    def __init__(self, message: str, row_indices: List[int] | None = None,
                 problems: Dict[str, str] | None = None):
        self.row_indices = sorted(row_indices or [])
        self.problems = problems or {}
        super().__init__(
            message,
            code="VALIDATION_FAILED",
            details={"row_indices": self.row_indices},
        )


class MigrationError(SyncError):
    """A mode switch, backup or restore could not complete."""

    def __init__(self, message: str, backup_name: Optional[str] = None):
        super().__init__(message, code="MIGRATION_FAILED", details={"backup_name": backup_name})
        self.backup_name = backup_name


def public_message(exc: BaseException) -> str:
    """Message safe to persist for any exception."""
    if isinstance(exc, SyncError):
        return exc.public_message
    # Unknown failures: type name only, never internals
    return f"Unexpected error ({type(exc).__name__})"
