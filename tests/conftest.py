"""
Shared fixtures.

Time is driven by FakeClock so expiry and rate-window tests never sleep.
Hashing uses few iterations; the cost is a deployment setting.
"""

from datetime import datetime, timedelta, timezone

import pytest

from tollgate.auth.audit import AuditLogger
from tollgate.auth.capabilities import CapabilityResolver, InMemoryPrincipalDirectory, PrincipalRole
from tollgate.auth.gatekeeper import Gatekeeper
from tollgate.auth.rate_limit import RateLimiter
from tollgate.auth.tokens import TokenService
from tollgate.config import Settings
from tollgate.storage import create_local_storage


class FakeClock:
    """Wall clock and monotonic clock that only move when told to."""
    
    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._origin = self.current
    
    def __call__(self) -> datetime:
        return self.current
    
    def monotonic(self) -> float:
        return (self.current - self._origin).total_seconds()
    
    def advance(self, seconds: float = 0, days: float = 0) -> None:
        self.current += timedelta(seconds=seconds, days=days)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        token_hash_iterations=1000,
        capability_table_path="",
        sentry_dsn="",
        cors_origins="",
    )


@pytest.fixture
def storage():
    return create_local_storage()


@pytest.fixture
def directory():
    """
    alice: administrator
    bob: editor with API access
    carol: contributor with API access
    dave: can only edit posts (and use the API)
    erin: subscriber, no API access
    """
    d = InMemoryPrincipalDirectory()
    d.add_principal("alice", PrincipalRole.ADMINISTRATOR)
    d.add_principal("bob", PrincipalRole.EDITOR, capabilities=["use_api"])
    d.add_principal("carol", PrincipalRole.CONTRIBUTOR, capabilities=["use_api"])
    d.add_principal("dave", capabilities=["edit_posts", "use_api"])
    d.add_principal("erin", PrincipalRole.SUBSCRIBER)
    return d


@pytest.fixture
def token_service(storage, directory, settings, clock):
    return TokenService(storage.tokens, directory, settings, clock=clock)


@pytest.fixture
def resolver():
    return CapabilityResolver()


@pytest.fixture
def rate_limiter(settings, clock):
    return RateLimiter(settings, clock=clock.monotonic)


@pytest.fixture
def audit_logger(storage, settings, clock):
    return AuditLogger(storage.audit, settings, clock=clock)


@pytest.fixture
def gatekeeper(token_service, resolver, directory, rate_limiter, audit_logger, settings):
    return Gatekeeper(token_service, resolver, directory, rate_limiter, audit_logger, settings)
