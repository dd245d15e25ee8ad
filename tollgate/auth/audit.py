"""
Audit trail for gated operations.

Every admitted or attempted operation gets one immutable entry. The log
is bounded twice: entries older than the retention window are pruned,
and the total is capped with oldest-first eviction.

Writing to the audit log never decides anything. If the write fails the
failure is reported and the gate decision stands.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from tollgate.config import Settings, get_settings
from tollgate.core.models import AuditEntry
from tollgate.core.utils import utc_now
from tollgate.integrations.sentry import capture_exception
from tollgate.storage.base import AuditStore

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only, bounded, time-retained log of gated operations."""
    
    def __init__(
        self,
        store: AuditStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock
    
    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.settings.audit_retention_days)
    
    @property
    def max_entries(self) -> int:
        return max(1, self.settings.audit_max_entries)
    
    async def record(
        self,
        operation: str,
        principal_id: str | None,
        source_address: str,
        success: bool,
        reason: str | None = None,
    ) -> AuditEntry | None:
        """
        Append an entry. Returns None if the write failed.
        
        Bounds are enforced on every write, so the log never holds more
        than `max_entries` entries once this returns.
        """
        try:
            entry = AuditEntry(
                timestamp=self.clock(),
                operation=operation,
                principal_id=principal_id,
                source_address=source_address,
                success=success,
                reason=reason,
            )
            await self.store.append(entry)
            if await self.store.count() > self.max_entries:
                await self.store.prune(entry.timestamp - self.retention, self.max_entries)
        except Exception as e:
            logger.exception("Audit write failed for %s", operation)
            capture_exception(e, operation=operation, principal_id=principal_id)
            return None
        return entry
    
    async def recent_entries(self, limit: int = 100) -> list[AuditEntry]:
        """Most recent entries, newest first."""
        limit = min(max(1, limit), self.max_entries)
        return await self.store.recent(limit)
    
    async def total_count(self) -> int:
        return await self.store.count()
    
    async def prune(self) -> int:
        """Drop expired entries and enforce the size cap."""
        removed = await self.store.prune(self.clock() - self.retention, self.max_entries)
        if removed:
            logger.info("Pruned %d audit entries", removed)
        return removed
