"""
Core data models for tollgate.

These models represent the records the gatekeeper owns: tokens minted
for principals and audit entries for every gated operation. Secrets
never leave the Token model; everything handed back to callers is a
summary without the hash.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tollgate.core.utils import generate_id, utc_now


def normalize_scopes(scopes) -> list[str]:
    """Deduplicate, strip and sort a collection of scope names."""
    cleaned = {str(s).strip() for s in scopes or ()}
    cleaned.discard("")
    return sorted(cleaned)


# =============================================================================
# Tokens
# =============================================================================


class Token(BaseModel):
    """
    A stored personal access token.
    
    Belongs to exactly one principal for its whole lifetime. Only the
    salted hash of the plaintext is kept; the plaintext itself is handed
    to the creator once and then forgotten.
    """
    
    token_id: str = Field(default_factory=lambda: generate_id("tok"))
    principal_id: str
    
    # Secret material (never returned to callers)
    secret_hash: str = Field(repr=False)
    lookup_key: str = Field(repr=False)  # Truncated digest, index only
    
    # Shown in listings so users can tell tokens apart
    hint: str
    
    scopes: list[str] = Field(default_factory=list)
    
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    last_used_at: datetime | None = None
    
    @field_validator("scopes", mode="before")
    @classmethod
    def clean_scopes(cls, value):
        return normalize_scopes(value)
    
    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at < (now or utc_now())
    
    def summary(self) -> TokenSummary:
        return TokenSummary(
            token_id=self.token_id,
            principal_id=self.principal_id,
            hint=self.hint,
            scopes=list(self.scopes),
            created_at=self.created_at,
            expires_at=self.expires_at,
            last_used_at=self.last_used_at,
        )


class TokenSummary(BaseModel):
    """Token metadata safe to return to any caller (no secrets)."""
    
    token_id: str
    principal_id: str
    hint: str
    scopes: list[str]
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime | None = None


class IssuedToken(BaseModel):
    """Returned exactly once, at creation. Holds the plaintext."""
    
    token: str
    token_id: str
    scopes: list[str]
    created_at: datetime
    expires_at: datetime


class VerifiedToken(BaseModel):
    """Result of a successful verification."""
    
    principal_id: str
    token_id: str
    scopes: list[str]

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


# =============================================================================
# Audit
# =============================================================================


class AuditEntry(BaseModel):
    """An immutable record of a gated or attempted operation."""
    
    model_config = ConfigDict(frozen=True)
    
    id: str = Field(default_factory=lambda: generate_id("audit"))
    timestamp: datetime = Field(default_factory=utc_now)
    operation: str
    principal_id: str | None = None
    source_address: str = "0.0.0.0"
    success: bool = True
    reason: str | None = None  # Deny reason for failed attempts
