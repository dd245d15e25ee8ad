"""
Tests for the token service.

Core principle: the plaintext exists once, in the creation response.
"""

from datetime import timedelta

import pytest

from tollgate.auth.tokens import (
    TOKEN_PREFIX,
    generate_plaintext,
    hash_secret,
    is_token_shaped,
    lookup_key,
    verify_secret,
)
from tollgate.core.errors import (
    InvalidFormatError,
    InvalidTokenError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    TokenExpiredError,
)


# =============================================================================
# Hashing Tests
# =============================================================================


class TestHashing:
    def test_hash_roundtrip(self):
        secret = generate_plaintext()
        hashed = hash_secret(secret, iterations=1000)

        assert secret not in hashed
        assert verify_secret(secret, hashed)
        assert not verify_secret(generate_plaintext(), hashed)

    def test_salted(self):
        secret = generate_plaintext()
        assert hash_secret(secret, 1000) != hash_secret(secret, 1000)

    def test_malformed_hash_never_verifies(self):
        assert not verify_secret("tg_x", "not-a-hash")

    def test_token_shape(self):
        token = generate_plaintext()

        assert token.startswith(TOKEN_PREFIX)
        assert is_token_shaped(token)
        assert not is_token_shaped(token + "\n")
        assert not is_token_shaped(token[:-1])
        assert not is_token_shaped("ayu_" + token[len(TOKEN_PREFIX):])
        assert not is_token_shaped("")

    def test_lookup_key_is_stable(self):
        token = generate_plaintext()
        assert lookup_key(token) == lookup_key(token)
        assert token not in lookup_key(token)


# =============================================================================
# Create / Verify Tests
# =============================================================================


class TestCreateToken:
    @pytest.mark.asyncio
    async def test_create_and_verify(self, token_service):
        issued = await token_service.create_token("bob", "bob", scopes=["write:posts", "read:posts"])

        verified = await token_service.verify_token(issued.token)

        assert verified.principal_id == "bob"
        assert verified.token_id == issued.token_id
        assert verified.scopes == ["read:posts", "write:posts"]

    @pytest.mark.asyncio
    async def test_scopes_normalized(self, token_service):
        issued = await token_service.create_token("bob", "bob", scopes=[" read:posts", "read:posts", ""])
        assert issued.scopes == ["read:posts"]

    @pytest.mark.asyncio
    async def test_plaintext_never_stored(self, token_service, storage):
        issued = await token_service.create_token("bob", "bob")

        stored = await storage.tokens.load("bob")
        assert len(stored) == 1
        assert issued.token not in stored[0].model_dump_json()

        listed = await token_service.list_tokens("bob")
        assert issued.token not in listed[0].model_dump_json()
        assert listed[0].hint == issued.token[:7]

    @pytest.mark.asyncio
    async def test_expiry_after_creation(self, token_service):
        issued = await token_service.create_token("bob", "bob")
        assert issued.expires_at > issued.created_at

    @pytest.mark.asyncio
    async def test_default_lifetime(self, token_service, clock):
        issued = await token_service.create_token("bob", "bob")
        assert issued.expires_at == clock() + timedelta(days=90)

    @pytest.mark.asyncio
    async def test_expiry_clamped_to_max(self, token_service, clock):
        issued = await token_service.create_token("bob", "bob", expires_in=timedelta(days=1000))
        assert issued.expires_at == clock() + timedelta(days=365)

    @pytest.mark.asyncio
    async def test_past_expiry_clamped_forward(self, token_service, clock):
        issued = await token_service.create_token("bob", "bob", expires_at=clock() - timedelta(days=1))
        assert issued.expires_at > issued.created_at

    @pytest.mark.asyncio
    async def test_cannot_create_for_someone_else(self, token_service):
        with pytest.raises(PermissionDeniedError):
            await token_service.create_token("bob", "carol")

    @pytest.mark.asyncio
    async def test_admin_creates_for_someone_else(self, token_service):
        issued = await token_service.create_token("alice", "carol")
        verified = await token_service.verify_token(issued.token)
        assert verified.principal_id == "carol"

    @pytest.mark.asyncio
    async def test_unknown_principal(self, token_service):
        with pytest.raises(NotFoundError):
            await token_service.create_token("alice", "mallory")

    @pytest.mark.asyncio
    async def test_store_failure_is_storage_error(self, token_service, storage):
        async def broken(*args, **kwargs):
            raise ConnectionError("db down")

        storage.tokens.save = broken
        with pytest.raises(StorageError):
            await token_service.create_token("bob", "bob")


class TestVerifyToken:
    @pytest.mark.asyncio
    async def test_malformed(self, token_service):
        with pytest.raises(InvalidFormatError):
            await token_service.verify_token("not-a-token")

    @pytest.mark.asyncio
    async def test_unknown_token(self, token_service):
        with pytest.raises(InvalidTokenError):
            await token_service.verify_token(generate_plaintext())

    @pytest.mark.asyncio
    async def test_expired(self, token_service, clock):
        issued = await token_service.create_token(
            "bob", "bob", scopes=["read:posts"], expires_in=timedelta(seconds=1),
        )
        verified = await token_service.verify_token(issued.token)
        assert verified.scopes == ["read:posts"]

        clock.advance(seconds=2)

        with pytest.raises(TokenExpiredError):
            await token_service.verify_token(issued.token)

    @pytest.mark.asyncio
    async def test_valid_until_expiry_instant(self, token_service, clock):
        issued = await token_service.create_token("bob", "bob", expires_in=timedelta(seconds=10))

        clock.advance(seconds=10)

        verified = await token_service.verify_token(issued.token)
        assert verified.token_id == issued.token_id

    @pytest.mark.asyncio
    async def test_records_last_use(self, token_service, clock):
        issued = await token_service.create_token("bob", "bob")
        clock.advance(seconds=30)

        await token_service.verify_token(issued.token)

        listed = await token_service.list_tokens("bob")
        assert listed[0].last_used_at == clock()

    @pytest.mark.asyncio
    async def test_touch_failure_does_not_fail_verify(self, token_service, storage):
        issued = await token_service.create_token("bob", "bob")

        async def broken(*args, **kwargs):
            raise ConnectionError("db down")

        storage.tokens.touch = broken
        verified = await token_service.verify_token(issued.token)
        assert verified.principal_id == "bob"

    @pytest.mark.asyncio
    async def test_store_failure_is_storage_error(self, token_service, storage):
        async def broken(*args, **kwargs):
            raise ConnectionError("db down")

        storage.tokens.find_candidates = broken
        with pytest.raises(StorageError):
            await token_service.verify_token(generate_plaintext())


# =============================================================================
# Revoke / List Tests
# =============================================================================


class TestRevokeToken:
    @pytest.mark.asyncio
    async def test_revoked_token_stops_verifying(self, token_service):
        issued = await token_service.create_token("bob", "bob")

        await token_service.revoke_token("bob", issued.token_id)

        with pytest.raises(InvalidTokenError):
            await token_service.verify_token(issued.token)

    @pytest.mark.asyncio
    async def test_second_revoke_not_found(self, token_service):
        issued = await token_service.create_token("bob", "bob")
        await token_service.revoke_token("bob", issued.token_id)

        with pytest.raises(NotFoundError):
            await token_service.revoke_token("bob", issued.token_id)

    @pytest.mark.asyncio
    async def test_cannot_revoke_someone_elses(self, token_service):
        issued = await token_service.create_token("carol", "carol")

        with pytest.raises(PermissionDeniedError):
            await token_service.revoke_token("bob", issued.token_id, principal_id="carol")

        verified = await token_service.verify_token(issued.token)
        assert verified.principal_id == "carol"

    @pytest.mark.asyncio
    async def test_token_id_of_other_principal_not_found(self, token_service):
        issued = await token_service.create_token("carol", "carol")

        with pytest.raises(NotFoundError):
            await token_service.revoke_token("bob", issued.token_id)

    @pytest.mark.asyncio
    async def test_admin_revokes(self, token_service):
        issued = await token_service.create_token("carol", "carol")

        await token_service.revoke_token("alice", issued.token_id, principal_id="carol")

        assert await token_service.list_tokens("carol") == []


class TestListTokens:
    @pytest.mark.asyncio
    async def test_oldest_first(self, token_service, clock):
        first = await token_service.create_token("bob", "bob")
        clock.advance(seconds=5)
        second = await token_service.create_token("bob", "bob")

        listed = await token_service.list_tokens("bob")

        assert [t.token_id for t in listed] == [first.token_id, second.token_id]

    @pytest.mark.asyncio
    async def test_list_requires_ownership(self, token_service):
        with pytest.raises(PermissionDeniedError):
            await token_service.list_tokens("carol", actor_id="bob")
        assert await token_service.list_tokens("carol", actor_id="alice") == []


class TestPurgeExpired:
    @pytest.mark.asyncio
    async def test_grace_keeps_expired_tokens_reportable(self, token_service, clock):
        issued = await token_service.create_token("bob", "bob", expires_in=timedelta(days=1))
        clock.advance(days=2)

        assert await token_service.purge_expired(grace=timedelta(days=30)) == 0
        with pytest.raises(TokenExpiredError):
            await token_service.verify_token(issued.token)

        clock.advance(days=30)
        assert await token_service.purge_expired(grace=timedelta(days=30)) == 1
        with pytest.raises(InvalidTokenError):
            await token_service.verify_token(issued.token)
