"""
Storage abstractions.

- TokenStore → hashed tokens keyed by principal
- AuditStore → append-only audit trail
"""

from tollgate.storage.base import (
    AuditStore,
    StorageProvider,
    TokenStore,
)
from tollgate.storage.local import (
    InMemoryAuditStore,
    InMemoryTokenStore,
    create_local_storage,
)

__all__ = [
    "AuditStore",
    "StorageProvider",
    "TokenStore",
    "InMemoryAuditStore",
    "InMemoryTokenStore",
    "create_local_storage",
]
