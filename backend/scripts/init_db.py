"""
Dev bootstrap script — create the schema, an owner and a management key.

Usage:
    python -m scripts.init_db [email]

This will:
  1. Create every table (idempotent; there are no migrations)
  2. Create an owner for `email` (default: dev@lynxa.local) if missing
  3. Issue an API key carrying every permission
  4. Print the raw key ONCE (only its hash is stored)

The raw key is shown exactly once — copy it immediately.
"""

import asyncio
import sys

# Ensure the project root is on the path
sys.path.insert(0, ".")

from sqlalchemy import select

from lynxa.auth.permissions import ALL_PERMISSIONS
from lynxa.core.config import settings
from lynxa.core.database import async_session_factory, create_all_tables, engine
from lynxa.models.owner import Owner
from lynxa.stores.keys import SqlKeyStore

DEFAULT_EMAIL = "dev@lynxa.local"


async def main(email: str) -> None:
    await create_all_tables(engine)

    # ── Find or create owner ────────────────────────────────
    async with async_session_factory() as session:
        owner = await session.scalar(select(Owner).where(Owner.email == email))
        if owner is None:
            owner = Owner(email=email, display_name="Dev Owner", role="admin")
            session.add(owner)
            await session.commit()

    # ── Issue key ───────────────────────────────────────────
    store = SqlKeyStore(async_session_factory)
    raw_key, record = await store.create(
        owner.id,
        "bootstrap",
        sorted(ALL_PERMISSIONS),
        settings.DEFAULT_RATE_LIMIT,
        settings.DEFAULT_RATE_LIMIT_WINDOW_MS,
    )

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print(f"  Owner:       {owner.email}")
    print(f"  Owner ID:    {owner.id}")
    print(f"  Permissions: {', '.join(record.permissions)}")
    print()
    print(f"  API Key:     {raw_key}")
    print()
    print("  ⚠  Copy this key now — it will NEVER be shown again.")
    print("=" * 60)
    print()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_EMAIL))
