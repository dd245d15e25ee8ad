"""
Access control - tokens, capabilities, rate limits and the audit trail.

Design principles:
1. One decision point per request (Gatekeeper.check)
2. Capabilities from the host identity system, scopes from the token
3. Fail closed: anything unmapped or unavailable is denied
4. Every presented credential leaves an audit entry
"""

from tollgate.auth.audit import AuditLogger
from tollgate.auth.capabilities import (
    ADMIN_CAPABILITY,
    SESSION_CAPABILITY,
    CapabilityResolver,
    CapabilityTable,
    InMemoryPrincipalDirectory,
    OperationRule,
    PrincipalDirectory,
    PrincipalRole,
    get_capabilities,
)
from tollgate.auth.gatekeeper import (
    AdmitResult,
    DenyResult,
    GateDecision,
    Gatekeeper,
    GateState,
    extract_bearer,
)
from tollgate.auth.policies import (
    client_address,
    gate,
    gate_route,
    get_session_principal,
)
from tollgate.auth.rate_limit import RateLimiter
from tollgate.auth.tokens import TokenService, hash_secret, verify_secret
from tollgate.auth.routes import router as tokens_router

__all__ = [
    # Main interface
    "Gatekeeper",
    "gate",
    "gate_route",
    "get_session_principal",
    "client_address",
    "extract_bearer",
    # Decisions
    "AdmitResult",
    "DenyResult",
    "GateDecision",
    "GateState",
    # Components
    "AuditLogger",
    "CapabilityResolver",
    "CapabilityTable",
    "OperationRule",
    "RateLimiter",
    "TokenService",
    # Principals
    "ADMIN_CAPABILITY",
    "SESSION_CAPABILITY",
    "InMemoryPrincipalDirectory",
    "PrincipalDirectory",
    "PrincipalRole",
    "get_capabilities",
    # Hashing
    "hash_secret",
    "verify_secret",
    # Router
    "tokens_router",
]
