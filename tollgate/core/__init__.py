"""
Core module - data models, errors and shared helpers.

This module contains:
- models: Token and audit records
- errors: The access-control error taxonomy
- utils: Shared utility functions
"""

from tollgate.core.models import (
    AuditEntry,
    IssuedToken,
    Token,
    TokenSummary,
    VerifiedToken,
    normalize_scopes,
)
from tollgate.core.errors import (
    DenyReason,
    GatekeeperError,
    InsufficientScopeError,
    InvalidFormatError,
    InvalidTokenError,
    NoCredentialError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitExceeded,
    StorageError,
    TokenExpiredError,
)
from tollgate.core.utils import generate_id, utc_now

__all__ = [
    # Models
    "AuditEntry",
    "IssuedToken",
    "Token",
    "TokenSummary",
    "VerifiedToken",
    "normalize_scopes",
    # Errors
    "DenyReason",
    "GatekeeperError",
    "InsufficientScopeError",
    "InvalidFormatError",
    "InvalidTokenError",
    "NoCredentialError",
    "NotFoundError",
    "PermissionDeniedError",
    "RateLimitExceeded",
    "StorageError",
    "TokenExpiredError",
    # Utils
    "generate_id",
    "utc_now",
]
