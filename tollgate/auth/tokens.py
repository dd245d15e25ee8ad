# =============================================================================
# Personal Access Tokens
# =============================================================================
#
# This module mints and checks bearer tokens:
#   - Token creation (plaintext returned once, only the hash is stored)
#   - Token verification (format pre-check, then hash comparison)
#   - Revocation and listing
#   - Expired token cleanup
#
# Token shape: "tg_" + 32 characters from [A-Za-z0-9]
#
# =============================================================================

from __future__ import annotations

import hashlib
import logging
import re
import secrets
import string
from datetime import datetime, timedelta
from typing import Callable, Iterable

from tollgate.auth.capabilities import PrincipalDirectory
from tollgate.config import Settings, get_settings
from tollgate.core.errors import (
    InvalidFormatError,
    InvalidTokenError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    TokenExpiredError,
)
from tollgate.core.models import (
    IssuedToken,
    Token,
    TokenSummary,
    VerifiedToken,
    normalize_scopes,
)
from tollgate.core.utils import utc_now
from tollgate.storage.base import TokenStore

logger = logging.getLogger(__name__)


TOKEN_PREFIX = "tg_"
TOKEN_BODY_LENGTH = 32
TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_PATTERN = re.compile(
    re.escape(TOKEN_PREFIX) + "[a-zA-Z0-9]{%d}" % TOKEN_BODY_LENGTH
)

LOOKUP_KEY_LENGTH = 16
HINT_LENGTH = 4
MIN_TOKEN_LIFETIME = timedelta(seconds=1)


# =============================================================================
# Secret Hashing
# =============================================================================

def hash_secret(plaintext: str, iterations: int = 100_000) -> str:
    """
    Hash a token using PBKDF2-SHA256 with a random salt.
    
    Returns: iterations:salt:hash format string
    """
    salt = secrets.token_hex(16)
    hash_bytes = hashlib.pbkdf2_hmac(
        'sha256',
        plaintext.encode('utf-8'),
        salt.encode('utf-8'),
        iterations=iterations,
    )
    return f"{iterations}:{salt}:{hash_bytes.hex()}"


def verify_secret(plaintext: str, secret_hash: str) -> bool:
    """Constant-time check of a token against its stored hash."""
    try:
        iterations, salt, stored_hash = secret_hash.split(':')
        hash_bytes = hashlib.pbkdf2_hmac(
            'sha256',
            plaintext.encode('utf-8'),
            salt.encode('utf-8'),
            iterations=int(iterations),
        )
        return secrets.compare_digest(hash_bytes.hex(), stored_hash)
    except (ValueError, AttributeError):
        return False


def lookup_key(plaintext: str) -> str:
    """
    Index key for narrowing verification candidates.
    
    A truncated unsalted digest: enough to find the record, not enough to
    authenticate. Authentication is always the salted hash comparison.
    """
    return hashlib.sha256(plaintext.encode('utf-8')).hexdigest()[:LOOKUP_KEY_LENGTH]


def generate_plaintext() -> str:
    body = "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_BODY_LENGTH))
    return TOKEN_PREFIX + body


def is_token_shaped(value: str) -> bool:
    return bool(TOKEN_PATTERN.fullmatch(value or ""))


# =============================================================================
# Token Service
# =============================================================================

class TokenService:
    """
    Creates, verifies, revokes and lists personal access tokens.
    
    Callers identify themselves with `actor_id`; the principal directory
    decides whether an actor holds the administrative override.
    """
    
    def __init__(
        self,
        store: TokenStore,
        directory: PrincipalDirectory,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.directory = directory
        self.settings = settings or get_settings()
        self.clock = clock
    
    @property
    def default_lifetime(self) -> timedelta:
        return timedelta(days=self.settings.default_token_lifetime_days)
    
    @property
    def max_lifetime(self) -> timedelta:
        return timedelta(days=self.settings.max_token_lifetime_days)
    
    async def _is_admin(self, actor_id: str) -> bool:
        try:
            return await self.directory.has_capability(actor_id, self.settings.admin_capability)
        except Exception as e:
            raise StorageError(f"Principal directory unavailable: {e}") from e
    
    async def _authorize(self, actor_id: str, principal_id: str, action: str) -> None:
        if actor_id == principal_id:
            return
        if not await self._is_admin(actor_id):
            raise PermissionDeniedError(f"You do not have permission to {action} this token.")
    
    def clamp_expiry(self, now: datetime, requested: datetime | None) -> datetime:
        """
        Fit a requested expiry into (now, now + max lifetime].
        
        No request means the default lifetime.
        """
        if requested is None:
            requested = now + self.default_lifetime
        latest = now + self.max_lifetime
        if requested > latest:
            return latest
        if requested < now + MIN_TOKEN_LIFETIME:
            return now + MIN_TOKEN_LIFETIME
        return requested
    
    # =========================================================================
    # Create
    # =========================================================================
    
    async def create_token(
        self,
        actor_id: str,
        principal_id: str,
        scopes: Iterable[str] = (),
        expires_at: datetime | None = None,
        expires_in: timedelta | None = None,
    ) -> IssuedToken:
        """
        Mint a token for `principal_id`.
        
        The returned IssuedToken is the only place the plaintext ever
        appears. Raises PermissionDeniedError unless the actor is the
        principal or an administrator, NotFoundError for unknown principals.
        """
        await self._authorize(actor_id, principal_id, "create")
        
        try:
            known = await self.directory.exists(principal_id)
        except Exception as e:
            raise StorageError(f"Principal directory unavailable: {e}") from e
        if not known:
            raise NotFoundError(f"Principal {principal_id} not found.")
        
        now = self.clock()
        if expires_at is None and expires_in is not None:
            expires_at = now + expires_in
        
        plaintext = generate_plaintext()
        token = Token(
            principal_id=principal_id,
            secret_hash=hash_secret(plaintext, self.settings.token_hash_iterations),
            lookup_key=lookup_key(plaintext),
            hint=plaintext[: len(TOKEN_PREFIX) + HINT_LENGTH],
            scopes=normalize_scopes(scopes),
            created_at=now,
            expires_at=self.clamp_expiry(now, expires_at),
        )
        
        try:
            await self.store.save(principal_id, token)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Token store unavailable: {e}") from e
        
        logger.info(
            "Token %s created for %s by %s (expires %s)",
            token.token_id, principal_id, actor_id, token.expires_at.isoformat(),
        )
        
        return IssuedToken(
            token=plaintext,
            token_id=token.token_id,
            scopes=token.scopes,
            created_at=token.created_at,
            expires_at=token.expires_at,
        )
    
    # =========================================================================
    # Verify
    # =========================================================================
    
    async def verify_token(self, plaintext: str) -> VerifiedToken:
        """
        Check a bearer credential.
        
        Raises:
            InvalidFormatError: not shaped like a token (no storage lookup)
            TokenExpiredError: matched a token past its expiry
            InvalidTokenError: matched nothing
            StorageError: the store could not be read
        """
        if not is_token_shaped(plaintext):
            raise InvalidFormatError("Invalid token format.")
        
        try:
            candidates = await self.store.find_candidates(
                lookup_key(plaintext), self.settings.verify_scan_limit
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Token store unavailable: {e}") from e
        
        for token in candidates[: self.settings.verify_scan_limit]:
            if not verify_secret(plaintext, token.secret_hash):
                continue
            
            now = self.clock()
            if token.is_expired(now):
                raise TokenExpiredError("Token has expired.")
            
            await self._touch(token, now)
            return VerifiedToken(
                principal_id=token.principal_id,
                token_id=token.token_id,
                scopes=list(token.scopes),
            )
        
        raise InvalidTokenError("Invalid or revoked token.")
    
    async def _touch(self, token: Token, now: datetime) -> None:
        # last_used_at is informational; a failed write never fails verification
        try:
            await self.store.touch(token.principal_id, token.token_id, now)
        except Exception:
            logger.warning("Could not record use of token %s", token.token_id, exc_info=True)
    
    # =========================================================================
    # Revoke / List
    # =========================================================================
    
    async def revoke_token(
        self,
        actor_id: str,
        token_id: str,
        principal_id: str | None = None,
    ) -> None:
        """
        Delete a token.
        
        `principal_id` defaults to the actor. A second revoke of the same
        token raises NotFoundError, which callers may treat as done.
        """
        principal_id = principal_id or actor_id
        await self._authorize(actor_id, principal_id, "revoke")
        
        try:
            deleted = await self.store.delete(principal_id, token_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Token store unavailable: {e}") from e
        
        if not deleted:
            raise NotFoundError("Token not found.")
        
        logger.info("Token %s of %s revoked by %s", token_id, principal_id, actor_id)
    
    async def list_tokens(
        self,
        principal_id: str,
        actor_id: str | None = None,
    ) -> list[TokenSummary]:
        """Token metadata for a principal, oldest first. Never secrets."""
        if actor_id is not None:
            await self._authorize(actor_id, principal_id, "list")
        
        try:
            tokens = await self.store.load(principal_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Token store unavailable: {e}") from e
        
        return [t.summary() for t in sorted(tokens, key=lambda t: t.created_at)]
    
    # =========================================================================
    # Housekeeping
    # =========================================================================
    
    async def purge_expired(self, grace: timedelta = timedelta(0)) -> int:
        """
        Delete tokens that expired more than `grace` ago.
        
        Until purged, an expired token still verifies as Expired rather
        than InvalidToken.
        """
        removed = await self.store.purge_expired(self.clock() - grace)
        if removed:
            logger.info("Purged %d expired tokens", removed)
        return removed
