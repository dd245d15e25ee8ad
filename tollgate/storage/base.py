"""
Storage abstraction layer.

All persistence goes through these interfaces. This allows swapping
implementations (in-memory → Redis, PostgreSQL, host CMS user meta)
without changing the token service or the audit logger.

Implementations must lock per key (one principal's token set, the
audit log's append point), never globally across all requests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel

from tollgate.core.models import AuditEntry, Token


# =============================================================================
# Storage Interfaces
# =============================================================================


class TokenStore(ABC):
    """
    Hashed tokens keyed by principal.
    
    Must be read-after-write consistent for a single principal.
    """
    
    @abstractmethod
    async def load(self, principal_id: str) -> list[Token]:
        """All tokens belonging to a principal."""
        pass
    
    @abstractmethod
    async def save(self, principal_id: str, token: Token) -> None:
        """Insert or replace a token."""
        pass
    
    @abstractmethod
    async def delete(self, principal_id: str, token_id: str) -> bool:
        """Delete a token. Returns False if it did not exist."""
        pass
    
    @abstractmethod
    async def find_candidates(self, lookup_key: str, limit: int) -> list[Token]:
        """Tokens whose lookup key matches, at most `limit` of them."""
        pass
    
    @abstractmethod
    async def principals(self) -> list[str]:
        """Principals that currently hold at least one token."""
        pass
    
    async def touch(self, principal_id: str, token_id: str, when: datetime) -> None:
        """Record a use of the token. Best-effort."""
        for token in await self.load(principal_id):
            if token.token_id == token_id:
                token.last_used_at = when
                await self.save(principal_id, token)
                return
    
    async def purge_expired(self, now: datetime) -> int:
        """Delete every expired token. Returns how many were removed."""
        removed = 0
        for principal_id in await self.principals():
            for token in await self.load(principal_id):
                if token.is_expired(now) and await self.delete(principal_id, token.token_id):
                    removed += 1
        return removed


class AuditStore(ABC):
    """
    Append-only audit entries.
    
    Entries are never mutated; they are only removed in bulk by prune().
    """
    
    @abstractmethod
    async def append(self, entry: AuditEntry) -> None:
        """Add an entry at the tail."""
        pass
    
    @abstractmethod
    async def recent(self, limit: int) -> list[AuditEntry]:
        """Most recent entries, newest first."""
        pass
    
    @abstractmethod
    async def count(self) -> int:
        """Total stored entries."""
        pass
    
    @abstractmethod
    async def prune(self, older_than: datetime, max_entries: int) -> int:
        """
        Drop entries older than `older_than`, then evict oldest-first
        until at most `max_entries` remain. Returns how many were removed.
        """
        pass


# =============================================================================
# Storage Provider (dependency injection container)
# =============================================================================


class StorageProvider(BaseModel):
    """
    Container for all storage backends.
    
    Initialize once at startup with appropriate implementations.
    Services receive this and use the interfaces without knowing
    the underlying implementation.
    """
    
    model_config = {"arbitrary_types_allowed": True}
    
    tokens: TokenStore
    audit: AuditStore
