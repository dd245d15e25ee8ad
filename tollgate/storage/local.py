"""
In-memory storage implementations.

Suitable for development, tests and single-process deployments. Each
principal's token set and the audit log tail have their own lock.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from datetime import datetime

from tollgate.core.models import AuditEntry, Token
from tollgate.storage.base import AuditStore, StorageProvider, TokenStore


# =============================================================================
# In-Memory Token Storage
# =============================================================================


class InMemoryTokenStore(TokenStore):
    """Tokens in a dict of dicts, with a lookup-key index."""
    
    def __init__(self):
        self._tokens: dict[str, dict[str, Token]] = {}
        self._index: dict[str, set[tuple[str, str]]] = defaultdict(set)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
    
    async def load(self, principal_id: str) -> list[Token]:
        tokens = self._tokens.get(principal_id, {})
        return [t.model_copy() for t in tokens.values()]
    
    async def save(self, principal_id: str, token: Token) -> None:
        if token.principal_id != principal_id:
            raise ValueError(
                f"Token {token.token_id} belongs to {token.principal_id}, not {principal_id}"
            )
        async with self._locks[principal_id]:
            self._tokens.setdefault(principal_id, {})[token.token_id] = token.model_copy()
            self._index[token.lookup_key].add((principal_id, token.token_id))
    
    async def delete(self, principal_id: str, token_id: str) -> bool:
        if principal_id not in self._tokens:
            return False
        async with self._locks[principal_id]:
            tokens = self._tokens.get(principal_id)
            if not tokens or token_id not in tokens:
                return False
            token = tokens.pop(token_id)
            if not tokens:
                del self._tokens[principal_id]
            refs = self._index.get(token.lookup_key)
            if refs is not None:
                refs.discard((principal_id, token_id))
                if not refs:
                    del self._index[token.lookup_key]
        self._drop_lock(principal_id)
        return True
    
    async def find_candidates(self, lookup_key: str, limit: int) -> list[Token]:
        results = []
        for principal_id, token_id in list(self._index.get(lookup_key, ())):
            token = self._tokens.get(principal_id, {}).get(token_id)
            if token is not None:
                results.append(token.model_copy())
            if len(results) >= limit:
                break
        return results
    
    async def principals(self) -> list[str]:
        return list(self._tokens.keys())
    
    async def touch(self, principal_id: str, token_id: str, when: datetime) -> None:
        if principal_id not in self._tokens:
            return
        async with self._locks[principal_id]:
            token = self._tokens.get(principal_id, {}).get(token_id)
            if token is not None:
                token.last_used_at = when
    
    def _drop_lock(self, principal_id: str) -> None:
        """Forget the lock of a principal with no tokens left."""
        lock = self._locks.get(principal_id)
        if principal_id not in self._tokens and lock is not None and not lock.locked():
            del self._locks[principal_id]


# =============================================================================
# In-Memory Audit Storage
# =============================================================================


class InMemoryAuditStore(AuditStore):
    """Audit entries in a deque, oldest at the left."""
    
    def __init__(self):
        self._entries: deque[AuditEntry] = deque()
        self._lock = asyncio.Lock()
    
    async def append(self, entry: AuditEntry) -> None:
        async with self._lock:
            self._entries.append(entry)
    
    async def recent(self, limit: int) -> list[AuditEntry]:
        # Append order is time order
        return list(reversed(self._entries))[:limit]
    
    async def count(self) -> int:
        return len(self._entries)
    
    async def prune(self, older_than: datetime, max_entries: int) -> int:
        async with self._lock:
            before = len(self._entries)
            kept = deque(e for e in self._entries if e.timestamp >= older_than)
            while len(kept) > max_entries:
                kept.popleft()
            self._entries = kept
            return before - len(kept)


# =============================================================================
# Factory
# =============================================================================


def create_local_storage() -> StorageProvider:
    """Create a StorageProvider with in-memory implementations."""
    return StorageProvider(
        tokens=InMemoryTokenStore(),
        audit=InMemoryAuditStore(),
    )
