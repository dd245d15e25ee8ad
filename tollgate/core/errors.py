"""
Error taxonomy for the gatekeeper.

Every way a gated request or a token management call can fail has a
reason code. Exceptions carry the reason so the gatekeeper can turn any
failure into a deny decision without string matching.
"""

from __future__ import annotations

from enum import Enum


class DenyReason(str, Enum):
    """Why a request was refused."""
    
    NO_CREDENTIAL = "no_credential"
    INVALID_FORMAT = "invalid_format"
    INVALID_TOKEN = "invalid_token"
    EXPIRED = "expired"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    RATE_LIMITED = "rate_limited"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    
    @property
    def is_credential_failure(self) -> bool:
        """Failures that must look identical to an unauthenticated caller."""
        return self in (
            DenyReason.INVALID_FORMAT,
            DenyReason.INVALID_TOKEN,
            DenyReason.EXPIRED,
        )
    
    @property
    def public_message(self) -> str:
        """Message safe to show to the caller."""
        if self.is_credential_failure:
            return "Invalid or expired credential"
        return _PUBLIC_MESSAGES[self]


_PUBLIC_MESSAGES: dict[DenyReason, str] = {
    DenyReason.NO_CREDENTIAL: "Authentication required",
    DenyReason.INSUFFICIENT_SCOPE: "Insufficient permissions for this operation",
    DenyReason.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    DenyReason.PERMISSION_DENIED: "You do not have permission to perform this action",
    DenyReason.NOT_FOUND: "Not found",
    DenyReason.UNAVAILABLE: "Service temporarily unavailable",
}


class GatekeeperError(Exception):
    """Base exception for all access-control failures."""
    
    reason: DenyReason = DenyReason.PERMISSION_DENIED
    retriable: bool = False
    
    def __init__(self, message: str | None = None):
        super().__init__(message or self.reason.value)
        self.message = message or self.reason.value


class NoCredentialError(GatekeeperError):
    """No bearer credential and no session to fall back on."""
    reason = DenyReason.NO_CREDENTIAL


class InvalidFormatError(GatekeeperError):
    """Credential does not have the token shape."""
    reason = DenyReason.INVALID_FORMAT


class InvalidTokenError(GatekeeperError):
    """Credential has the right shape but matches no stored token."""
    reason = DenyReason.INVALID_TOKEN


class TokenExpiredError(GatekeeperError):
    """Token matched but is past its expiry."""
    reason = DenyReason.EXPIRED


class InsufficientScopeError(GatekeeperError):
    """Principal or token lacks what the operation requires."""
    reason = DenyReason.INSUFFICIENT_SCOPE


class RateLimitExceeded(GatekeeperError):
    """Too many requests in the current window."""
    
    reason = DenyReason.RATE_LIMITED
    retriable = True
    
    def __init__(self, message: str | None = None, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class PermissionDeniedError(GatekeeperError):
    """Caller may not manage tokens for this principal."""
    reason = DenyReason.PERMISSION_DENIED


class NotFoundError(GatekeeperError):
    """Token or principal does not exist."""
    reason = DenyReason.NOT_FOUND


class StorageError(GatekeeperError):
    """Backing store failed. Transient, retriable."""
    
    reason = DenyReason.UNAVAILABLE
    retriable = True
