"""
Policies - the FastAPI face of the gatekeeper.

Route handlers declare what they do and get back who may do it:

    @router.post("/wp/posts")
    async def create_post(admit: AdmitResult = Depends(gate("wp:createPost"))):
        ...

Design:
- `gate()` returns a FastAPI Depends that resolves to AdmitResult
- It extracts the bearer credential and source address, asks the
  Gatekeeper on app.state, and turns a deny into an HTTPException
- Credential failures all answer 401 with the same message
- Sessions come from `get_session_principal`, which the host app overrides
"""

from __future__ import annotations

import ipaddress
import math
from typing import Callable, Mapping

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tollgate.auth.gatekeeper import AdmitResult, DenyResult, Gatekeeper
from tollgate.config import get_settings
from tollgate.core.errors import DenyReason, GatekeeperError, RateLimitExceeded


# Optional bearer (doesn't fail if no token; the gatekeeper decides)
optional_bearer = HTTPBearer(auto_error=False)

FORWARDED_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-forwarded-for")
UNKNOWN_ADDRESS = "0.0.0.0"


# =============================================================================
# Request context
# =============================================================================


def _valid_ip(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return None
    return value


def client_address(
    headers: Mapping[str, str],
    peer: str | None,
    trust_forwarded: bool = True,
) -> str:
    """
    Best guess at the caller's address.

    Proxy headers are checked first (CF-Connecting-IP, X-Real-IP, the
    first X-Forwarded-For hop), then the socket peer. Anything that does
    not parse as an IP address is skipped.
    """
    if trust_forwarded:
        lowered = {k.lower(): v for k, v in headers.items()}
        for name in FORWARDED_HEADERS:
            value = lowered.get(name)
            if not value:
                continue
            if name == "x-forwarded-for":
                value = value.split(",")[0]
            address = _valid_ip(value)
            if address:
                return address
    return _valid_ip(peer) or UNKNOWN_ADDRESS


def request_address(request: Request) -> str:
    peer = request.client.host if request.client else None
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return client_address(request.headers, peer, settings.trust_forwarded_headers)


async def get_session_principal(request: Request) -> str | None:
    """
    Principal of an already-established session, if any.

    Tollgate has no session layer of its own. Host apps wire theirs in:
        app.dependency_overrides[get_session_principal] = my_session_user
    """
    return None


def get_gatekeeper(request: Request) -> Gatekeeper:
    gatekeeper = getattr(request.app.state, "gatekeeper", None)
    if gatekeeper is None:
        raise HTTPException(status_code=503, detail=DenyReason.UNAVAILABLE.public_message)
    return gatekeeper


# =============================================================================
# Deny -> HTTP
# =============================================================================


def status_for(reason: DenyReason) -> int:
    if reason == DenyReason.NO_CREDENTIAL or reason.is_credential_failure:
        return 401
    if reason in (DenyReason.INSUFFICIENT_SCOPE, DenyReason.PERMISSION_DENIED):
        return 403
    if reason == DenyReason.NOT_FOUND:
        return 404
    if reason == DenyReason.RATE_LIMITED:
        return 429
    return 503


def http_error(reason: DenyReason, retry_after: float | None = None) -> HTTPException:
    """An HTTPException carrying only the public message for `reason`."""
    status_code = status_for(reason)
    headers = {}
    if status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    if status_code == 429:
        headers["Retry-After"] = str(max(1, math.ceil(retry_after or 0)))
    return HTTPException(
        status_code=status_code,
        detail=reason.public_message,
        headers=headers or None,
    )


def deny_to_http(decision: DenyResult) -> HTTPException:
    return http_error(decision.reason, decision.retry_after)


def error_to_http(error: GatekeeperError) -> HTTPException:
    retry_after = error.retry_after if isinstance(error, RateLimitExceeded) else None
    return http_error(error.reason, retry_after)


# =============================================================================
# Main Interface - the gate() function
# =============================================================================


def gate(operation: str) -> Callable:
    """
    Gate a route behind a named operation.

    Usage:
        @router.delete("/wp/users/{user_id}")
        async def delete_user(
            user_id: int,
            admit: AdmitResult = Depends(gate("wp:deleteUser")),
        ):
            # admit.principal_id is who is acting
            ...

    Returns:
        FastAPI Depends that resolves to AdmitResult
    """
    return _create_dependency(lambda request: operation)


def gate_route() -> Callable:
    """
    Gate a route by the operation its method and path map to.

    Useful for catch-all proxies where one handler serves many
    operations. Unmapped paths resolve to "unknown", which only
    administrators may call.
    """
    def resolve(request: Request) -> str:
        gatekeeper = get_gatekeeper(request)
        return gatekeeper.resolver.operation_for_route(request.method, request.url.path)

    return _create_dependency(resolve)


# =============================================================================
# Internal: Create the FastAPI Dependency
# =============================================================================


def _create_dependency(resolve_operation: Callable[[Request], str]) -> Callable:
    """Create a FastAPI Depends that runs the gatekeeper."""

    async def dependency(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
        session_principal: str | None = Depends(get_session_principal),
    ) -> AdmitResult:
        gatekeeper = get_gatekeeper(request)

        decision = await gatekeeper.check(
            operation=resolve_operation(request),
            credential=credentials.credentials if credentials else None,
            source_address=request_address(request),
            session_principal=session_principal,
        )
        if not decision.admitted:
            raise deny_to_http(decision)

        return decision

    return dependency
