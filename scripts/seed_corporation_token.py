#!/usr/bin/env python3
"""
Seed a corporation ESI token

Stores the tokens obtained from the EVE SSO login flow so the sync
scheduler can start pulling data for that corporation, then optionally
forces a refresh to prove the refresh token works.

Usage:
    python3 scripts/seed_corporation_token.py <corporation_id> <refresh_token> \
        [--access-token TOKEN] [--scope SCOPE ...] [--name "My Corp"] [--refresh]
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv

# Add the project root to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from corpsync.db import engine, init_models  # noqa: E402
from corpsync.errors import SyncEngineError  # noqa: E402
from corpsync.services.categories import CATEGORIES  # noqa: E402
from corpsync.services.token_service import TokenStore  # noqa: E402

load_dotenv()


def check_environment() -> bool:
    """Refreshing needs the SSO application credentials."""
    print("🔧 Checking Environment Configuration")
    print("=" * 50)

    missing = [var for var in ("ESI_CLIENT_ID", "ESI_CLIENT_SECRET") if not os.getenv(var)]
    if missing:
        print(f"❌ Missing environment variables: {', '.join(missing)}")
        print("   Token refresh will fail until these are added to your .env file")
        return False

    print("✅ Environment is properly configured")
    return True


async def seed(args: argparse.Namespace) -> int:
    await init_models()
    store = TokenStore()

    scopes = args.scope or sorted({s for spec in CATEGORIES.values() for s in spec.required_scopes})
    token = await store.store_token(
        args.corporation_id,
        args.access_token or "",
        args.refresh_token,
        # An empty access token is stored already expired so the first use refreshes it
        expires_in=1200 if args.access_token else 0,
        scopes=scopes,
        corporation_name=args.name,
        character_id=args.character_id,
    )
    print(f"✅ Stored token for {token.corporation_name} ({token.tenant_id})")
    print(f"   Scopes: {len(token.scopes)}")

    if args.refresh:
        print("\n🔄 Forcing a refresh...")
        try:
            refreshed = await store.refresh(args.corporation_id)
        except SyncEngineError as e:
            print(f"❌ Refresh failed: {e.message}")
            return 1
        print(f"✅ Refresh succeeded, expires at {refreshed.expires_at.isoformat()}Z")

    status = await store.token_status(args.corporation_id)
    print(f"\nToken valid: {status.is_valid}, expires in {status.expires_in_seconds:.0f}s")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Store an EVE SSO token for a corporation")
    parser.add_argument("corporation_id", type=int)
    parser.add_argument("refresh_token")
    parser.add_argument("--access-token", help="Current access token, if you have one")
    parser.add_argument("--scope", action="append", help="Granted scope (repeatable); defaults to every category scope")
    parser.add_argument("--name", help="Corporation name for display")
    parser.add_argument("--character-id", type=int, help="Character that authorized the token")
    parser.add_argument("--refresh", action="store_true", help="Refresh immediately to verify the refresh token")
    args = parser.parse_args()

    print("🚀 Seeding corporation ESI token")
    print("=" * 50)
    if args.refresh and not check_environment():
        sys.exit(1)

    async def run() -> int:
        try:
            return await seed(args)
        finally:
            await engine.dispose()

    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
