"""
Housekeeping Service.

Periodic hygiene that keeps the gatekeeper's state bounded:
- prunes the audit log (retention window + size cap)
- purges long-expired tokens
- forgets idle rate-limit windows
- reloads the capability table if its file changed

None of this is needed for correctness. It runs on its own timer,
outside request handling, and each step takes only the per-key locks
it touches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from tollgate.auth.audit import AuditLogger
from tollgate.auth.capabilities import CapabilityResolver
from tollgate.auth.rate_limit import RateLimiter
from tollgate.auth.tokens import TokenService
from tollgate.config import Settings, get_settings
from tollgate.integrations.sentry import capture_exception

logger = logging.getLogger(__name__)


@dataclass
class HousekeepingReport:
    """What one cycle did."""
    
    audit_pruned: int = 0
    tokens_purged: int = 0
    windows_swept: int = 0
    table_reloaded: bool = False
    errors: list[str] = field(default_factory=list)


class Housekeeper:
    """
    Runs hygiene tasks on a timer.
    
    Usage:
        housekeeper = Housekeeper(tokens, audit, rate_limiter, resolver)
        housekeeper.start()
        ...
        await housekeeper.stop()
    """
    
    def __init__(
        self,
        tokens: TokenService,
        audit: AuditLogger,
        rate_limiter: RateLimiter | None = None,
        resolver: CapabilityResolver | None = None,
        settings: Settings | None = None,
    ):
        self.tokens = tokens
        self.audit = audit
        self.rate_limiter = rate_limiter
        self.resolver = resolver
        self.settings = settings or get_settings()
        self._task: asyncio.Task | None = None
    
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
    
    async def run_once(self) -> HousekeepingReport:
        """Run every step once. A failing step does not stop the others."""
        report = HousekeepingReport()
        
        try:
            report.audit_pruned = await self.audit.prune()
        except Exception as e:
            self._report_failure("audit prune", e, report)
        
        try:
            grace = timedelta(days=self.settings.expired_token_grace_days)
            report.tokens_purged = await self.tokens.purge_expired(grace)
        except Exception as e:
            self._report_failure("token purge", e, report)
        
        if self.rate_limiter is not None:
            try:
                report.windows_swept = self.rate_limiter.sweep()
            except Exception as e:
                self._report_failure("rate window sweep", e, report)
        
        if self.resolver is not None:
            try:
                report.table_reloaded = self.resolver.refresh()
            except Exception as e:
                self._report_failure("table refresh", e, report)
        
        logger.info(
            "Housekeeping: %d audit entries pruned, %d tokens purged, %d windows swept",
            report.audit_pruned, report.tokens_purged, report.windows_swept,
        )
        return report
    
    def _report_failure(self, step: str, error: Exception, report: HousekeepingReport) -> None:
        logger.exception("Housekeeping step failed: %s", step)
        capture_exception(error, step=step)
        report.errors.append(f"{step}: {error}")
    
    async def _loop(self) -> None:
        interval = max(1, self.settings.housekeeping_interval_seconds)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.run_once()
            except Exception as e:
                # Keep the timer alive; the next cycle retries
                logger.exception("Housekeeping cycle failed")
                capture_exception(e, step="cycle")
    
    def start(self) -> None:
        """Start the timer on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="tollgate-housekeeping")
    
    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
