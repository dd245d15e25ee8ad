"""
Request gatekeeper - one decision per inbound request.

The surrounding request layer calls Gatekeeper.check() before running any
gated operation. The check walks a fixed chain and stops at the first
failure:

    Unauthenticated → CredentialExtracted → Verified
        → CapabilityChecked → RateChecked → Admitted

Any step can end in Denied(reason). Every outcome after a credential was
presented is written to the audit log. Retrying a denied request simply
runs the whole chain again. Operations marked session-only refuse
bearer tokens right after verification.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from tollgate.auth.audit import AuditLogger
from tollgate.auth.capabilities import CapabilityResolver, PrincipalDirectory
from tollgate.auth.rate_limit import RateLimiter
from tollgate.auth.tokens import TokenService
from tollgate.config import Settings, get_settings
from tollgate.core.errors import DenyReason, GatekeeperError, RateLimitExceeded
from tollgate.core.models import VerifiedToken

logger = logging.getLogger(__name__)

BEARER_PATTERN = re.compile(r"Bearer\s+(.+)", re.IGNORECASE)


class GateState(str, Enum):
    """Where a request is in the admission chain."""
    
    UNAUTHENTICATED = "unauthenticated"
    CREDENTIAL_EXTRACTED = "credential_extracted"
    VERIFIED = "verified"
    CAPABILITY_CHECKED = "capability_checked"
    RATE_CHECKED = "rate_checked"
    ADMITTED = "admitted"


# =============================================================================
# Decisions
# =============================================================================


@dataclass(frozen=True)
class AdmitResult:
    """The request may proceed as `principal_id`."""
    
    principal_id: str
    operation: str
    capability: str
    via: str = "token"  # "token" or "session"
    token_id: str | None = None
    scopes: tuple[str, ...] = ()
    
    admitted = True
    state = GateState.ADMITTED


@dataclass(frozen=True)
class DenyResult:
    """
    The request is refused.
    
    `detail` is for logs and audit only. Callers show `message`, which
    never distinguishes a malformed token from a wrong or expired one.
    """
    
    reason: DenyReason
    operation: str
    state: GateState
    principal_id: str | None = None
    retry_after: float | None = None
    detail: str = field(default="", repr=False)
    
    admitted = False
    
    @property
    def message(self) -> str:
        return self.reason.public_message


GateDecision = Union[AdmitResult, DenyResult]


def extract_bearer(authorization: str | None) -> str | None:
    """Pull the credential out of an Authorization header value."""
    if not authorization:
        return None
    match = BEARER_PATTERN.match(authorization.strip())
    if not match:
        return None
    return match.group(1).strip() or None


# =============================================================================
# Gatekeeper
# =============================================================================


class Gatekeeper:
    """
    Orchestrates token verification, capability resolution, rate limiting
    and auditing for a single request.
    """
    
    def __init__(
        self,
        tokens: TokenService,
        resolver: CapabilityResolver,
        directory: PrincipalDirectory,
        rate_limiter: RateLimiter,
        audit: AuditLogger,
        settings: Settings | None = None,
    ):
        self.tokens = tokens
        self.resolver = resolver
        self.directory = directory
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.settings = settings or get_settings()
    
    async def check(
        self,
        operation: str,
        credential: str | None,
        source_address: str = "0.0.0.0",
        session_principal: str | None = None,
    ) -> GateDecision:
        """
        Decide whether `operation` may run.
        
        Args:
            operation: Operation name, e.g. "wp:createPost"
            credential: Bearer token (already extracted from the header)
            source_address: Client address, used for audit and session throttling
            session_principal: Principal of an already-established session,
                used only when no credential was presented
        """
        credential = (credential or "").strip() or None
        
        if credential is None:
            if session_principal:
                return await self._check_session(operation, session_principal, source_address)
            return DenyResult(
                reason=DenyReason.NO_CREDENTIAL,
                operation=operation,
                state=GateState.UNAUTHENTICATED,
            )
        
        # Verify
        try:
            verified = await self.tokens.verify_token(credential)
        except GatekeeperError as e:
            return await self._deny(
                e.reason, operation, source_address, GateState.CREDENTIAL_EXTRACTED,
                detail=e.message,
            )
        except Exception as e:
            logger.exception("Token verification crashed")
            return await self._deny(
                DenyReason.UNAVAILABLE, operation, source_address,
                GateState.CREDENTIAL_EXTRACTED, detail=str(e),
            )
        
        # Capability + scope
        rule = self.resolver.rule_for(operation)
        if rule.session_only:
            return await self._deny(
                DenyReason.PERMISSION_DENIED, operation, source_address, GateState.VERIFIED,
                principal_id=verified.principal_id,
                detail="operation requires a session",
            )
        denied = await self._check_capability(
            operation, verified.principal_id, rule.capability, source_address
        )
        if denied:
            return denied
        if rule.scope and not verified.has_scope(rule.scope):
            return await self._deny(
                DenyReason.INSUFFICIENT_SCOPE, operation, source_address, GateState.VERIFIED,
                principal_id=verified.principal_id,
                detail=f"token lacks scope {rule.scope}",
            )
        
        # Rate
        denied = await self._check_rate(
            operation, f"token:{verified.token_id}", verified.principal_id, source_address
        )
        if denied:
            return denied
        
        return await self._admit(operation, verified.principal_id, rule.capability, source_address, verified)
    
    # =========================================================================
    # Session fallback
    # =========================================================================
    
    async def _check_session(
        self,
        operation: str,
        principal_id: str,
        source_address: str,
    ) -> GateDecision:
        """
        Admit an already-authenticated session holder.
        
        The session must carry the API capability as well as whatever
        the operation needs. Throttled by source address.
        """
        capability = self.resolver.required_capability(operation)
        for needed in (self.settings.session_capability, capability):
            denied = await self._check_capability(operation, principal_id, needed, source_address)
            if denied:
                return denied
        
        denied = await self._check_rate(operation, f"ip:{source_address}", principal_id, source_address)
        if denied:
            return denied
        
        return await self._admit(operation, principal_id, capability, source_address)
    
    # =========================================================================
    # Steps
    # =========================================================================
    
    async def _check_capability(
        self,
        operation: str,
        principal_id: str,
        capability: str,
        source_address: str,
    ) -> DenyResult | None:
        try:
            caps = await self.directory.get_capabilities(principal_id)
        except Exception as e:
            logger.exception("Principal directory lookup failed for %s", principal_id)
            return await self._deny(
                DenyReason.UNAVAILABLE, operation, source_address, GateState.VERIFIED,
                principal_id=principal_id, detail=str(e),
            )
        if caps is None or capability not in caps:
            return await self._deny(
                DenyReason.INSUFFICIENT_SCOPE, operation, source_address, GateState.VERIFIED,
                principal_id=principal_id,
                detail=f"principal lacks capability {capability}",
            )
        return None
    
    async def _check_rate(
        self,
        operation: str,
        identity: str,
        principal_id: str,
        source_address: str,
    ) -> DenyResult | None:
        try:
            await self.rate_limiter.allow(identity)
        except RateLimitExceeded as e:
            return await self._deny(
                DenyReason.RATE_LIMITED, operation, source_address,
                GateState.CAPABILITY_CHECKED,
                principal_id=principal_id, retry_after=e.retry_after, detail=e.message,
            )
        except Exception as e:
            logger.exception("Rate limiter failed for %s", identity)
            return await self._deny(
                DenyReason.UNAVAILABLE, operation, source_address,
                GateState.CAPABILITY_CHECKED,
                principal_id=principal_id, detail=str(e),
            )
        return None
    
    async def _admit(
        self,
        operation: str,
        principal_id: str,
        capability: str,
        source_address: str,
        verified: VerifiedToken | None = None,
    ) -> AdmitResult:
        await self.audit.record(operation, principal_id, source_address, success=True)
        return AdmitResult(
            principal_id=principal_id,
            operation=operation,
            capability=capability,
            via="token" if verified else "session",
            token_id=verified.token_id if verified else None,
            scopes=tuple(verified.scopes) if verified else (),
        )
    
    async def _deny(
        self,
        reason: DenyReason,
        operation: str,
        source_address: str,
        state: GateState,
        principal_id: str | None = None,
        retry_after: float | None = None,
        detail: str = "",
    ) -> DenyResult:
        logger.info(
            "Denied %s for %s from %s: %s (%s)",
            operation, principal_id or "-", source_address, reason.value, detail,
        )
        await self.audit.record(
            operation, principal_id, source_address, success=False, reason=reason.value,
        )
        return DenyResult(
            reason=reason,
            operation=operation,
            state=state,
            principal_id=principal_id,
            retry_after=retry_after,
            detail=detail,
        )
