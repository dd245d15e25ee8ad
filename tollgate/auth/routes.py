# =============================================================================
# Token Management & Audit Routes
# =============================================================================
#
# Endpoints:
#   POST   /tokens             - Create a token (plaintext returned once)
#   GET    /tokens             - List own tokens (or ?principal_id= for admins)
#   DELETE /tokens/{token_id}  - Revoke a token
#   GET    /audit              - Recent audit entries (admin)
#
# Every route runs through the gatekeeper. Token management is session
# only; a bearer token is refused. Admins may act on other principals.
#
# =============================================================================

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from tollgate.auth.audit import AuditLogger
from tollgate.auth.gatekeeper import AdmitResult
from tollgate.auth.policies import error_to_http, gate, get_gatekeeper, http_error
from tollgate.auth.tokens import TokenService
from tollgate.core.errors import DenyReason, GatekeeperError
from tollgate.core.models import AuditEntry, IssuedToken, TokenSummary, normalize_scopes

router = APIRouter(tags=["tokens"])

AUDIT_PAGE_SIZES = (100, 500, 1000)


# =============================================================================
# Request/Response Models
# =============================================================================

class CreateTokenRequest(BaseModel):
    scopes: list[str] = []
    expires_in_days: int | None = Field(default=None, ge=1, le=365)
    principal_id: str | None = None  # Admins only; defaults to the caller


class RevokeResponse(BaseModel):
    token_id: str
    revoked: bool = True


class AuditPage(BaseModel):
    entries: list[AuditEntry]
    total: int
    limit: int


# =============================================================================
# Dependencies
# =============================================================================

def get_token_service(request: Request) -> TokenService:
    return get_gatekeeper(request).tokens


def get_audit_logger(request: Request) -> AuditLogger:
    return get_gatekeeper(request).audit


# =============================================================================
# Tokens
# =============================================================================

@router.post("/tokens", response_model=IssuedToken, status_code=201)
async def create_token(
    data: CreateTokenRequest,
    request: Request,
    admit: AdmitResult = Depends(gate("tollgate:createToken")),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Create a token.

    The plaintext is in the response and nowhere else. Store it now.
    """
    scopes = normalize_scopes(data.scopes)
    known = set(get_gatekeeper(request).resolver.known_scopes)
    unknown = [s for s in scopes if s not in known]
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown scopes: {unknown}")

    expires_in = timedelta(days=data.expires_in_days) if data.expires_in_days else None
    try:
        return await tokens.create_token(
            actor_id=admit.principal_id,
            principal_id=data.principal_id or admit.principal_id,
            scopes=scopes,
            expires_in=expires_in,
        )
    except GatekeeperError as e:
        raise error_to_http(e)


@router.get("/tokens", response_model=list[TokenSummary])
async def list_tokens(
    principal_id: str | None = None,
    admit: AdmitResult = Depends(gate("tollgate:listTokens")),
    tokens: TokenService = Depends(get_token_service),
):
    """List token metadata. Never includes secrets."""
    try:
        return await tokens.list_tokens(
            principal_id or admit.principal_id,
            actor_id=admit.principal_id,
        )
    except GatekeeperError as e:
        raise error_to_http(e)


@router.delete("/tokens/{token_id}", response_model=RevokeResponse)
async def revoke_token(
    token_id: str,
    principal_id: str | None = None,
    admit: AdmitResult = Depends(gate("tollgate:revokeToken")),
    tokens: TokenService = Depends(get_token_service),
):
    """Revoke a token. It stops verifying immediately."""
    try:
        await tokens.revoke_token(admit.principal_id, token_id, principal_id)
    except GatekeeperError as e:
        raise error_to_http(e)
    return RevokeResponse(token_id=token_id)


# =============================================================================
# Audit
# =============================================================================

@router.get("/audit", response_model=AuditPage)
async def read_audit(
    limit: int = Query(default=100),
    admit: AdmitResult = Depends(gate("tollgate:readAudit")),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Most recent audit entries, newest first."""
    if limit not in AUDIT_PAGE_SIZES:
        raise HTTPException(
            status_code=422,
            detail=f"limit must be one of {list(AUDIT_PAGE_SIZES)}",
        )
    try:
        entries = await audit.recent_entries(limit)
        total = await audit.total_count()
    except Exception:
        raise http_error(DenyReason.UNAVAILABLE)
    return AuditPage(entries=entries, total=total, limit=limit)
