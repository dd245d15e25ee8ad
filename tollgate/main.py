"""
Tollgate - Main entry point.

This module demonstrates the gatekeeper end to end and can be run to
verify the installation.
"""

from __future__ import annotations

import asyncio

from tollgate.auth import (
    AuditLogger,
    Gatekeeper,
    InMemoryPrincipalDirectory,
    PrincipalRole,
    RateLimiter,
    TokenService,
)
from tollgate.config import Settings
from tollgate.config_loader import load_resolver
from tollgate.storage import create_local_storage


async def demo():
    """
    Run a demonstration of the gatekeeper.

    Mints tokens for an administrator and a contributor, then shows how
    the same operation is admitted for one and refused for the other.
    """
    print("=" * 60)
    print("TOLLGATE DEMO")
    print("=" * 60)
    print()

    settings = Settings(rate_limit_per_window=5)
    storage = create_local_storage()

    directory = InMemoryPrincipalDirectory()
    directory.add_principal("alice", PrincipalRole.ADMINISTRATOR)
    directory.add_principal("carol", PrincipalRole.CONTRIBUTOR, capabilities=["use_api"])

    print("Loading capability table...")
    resolver = load_resolver(settings=settings)
    print(f"  ✓ {len(resolver.table.operations)} operations, {len(resolver.known_scopes)} scopes")
    print()

    tokens = TokenService(storage.tokens, directory, settings)
    audit = AuditLogger(storage.audit, settings)
    gatekeeper = Gatekeeper(tokens, resolver, directory, RateLimiter(settings), audit, settings)

    # Mint tokens
    print("Creating tokens...")
    admin_token = await tokens.create_token(
        "alice", "alice", scopes=["read:users", "write:users"],
    )
    print(f"  ✓ alice: {admin_token.token_id} expires {admin_token.expires_at:%Y-%m-%d}")
    carol_token = await tokens.create_token(
        "alice", "carol", scopes=["read:posts", "write:posts", "write:users"],
    )
    print(f"  ✓ carol: {carol_token.token_id} (issued by alice)")
    print()

    # Same operation, different principals
    print("Checking wp:deleteUser...")
    for name, issued in (("alice", admin_token), ("carol", carol_token)):
        decision = await gatekeeper.check("wp:deleteUser", issued.token, "203.0.113.7")
        if decision.admitted:
            print(f"  ✓ {name}: admitted")
        else:
            print(f"  ✗ {name}: {decision.reason.value} - {decision.message}")
    print()

    # Rate limit
    print(f"Sending {settings.rate_limit_per_window + 1} requests as carol...")
    for i in range(settings.rate_limit_per_window + 1):
        decision = await gatekeeper.check("wp:createPost", carol_token.token, "203.0.113.8")
        if not decision.admitted:
            print(f"  ✗ request {i + 1}: {decision.message} (retry in {decision.retry_after:.0f}s)")
    print()

    # Revoke
    print("Revoking carol's token...")
    await tokens.revoke_token("carol", carol_token.token_id)
    decision = await gatekeeper.check("wp:listPosts", carol_token.token, "203.0.113.8")
    print(f"  ✓ next request: {decision.reason.value}")
    print()

    # Audit
    entries = await audit.recent_entries(5)
    print(f"Audit log ({await audit.total_count()} entries, newest first):")
    for entry in entries:
        outcome = "ok" if entry.success else entry.reason
        print(f"  • {entry.operation} by {entry.principal_id or '-'} from {entry.source_address}: {outcome}")
    print()

    print("=" * 60)
    print("Demo complete!")
    print()
    print("Next steps:")
    print("  1. Back TokenStore/AuditStore with a database")
    print("  2. Implement PrincipalDirectory against your user system")
    print("  3. Serve the API: uvicorn tollgate.api.app:create_app --factory")
    print("=" * 60)


def main():
    """Main entry point."""
    asyncio.run(demo())


if __name__ == "__main__":
    main()
