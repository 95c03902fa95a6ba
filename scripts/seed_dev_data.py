#!/usr/bin/env python3
############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# seed_dev_data.py: Seed database with development data
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Seed development data for toolgate.

Creates a catalog row for every built-in tool, an admin account and a
subscription plan, then prints a session cookie for the admin so the
admin API can be exercised with curl.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from backend.app.core.identity import sign_user_session
from backend.app.db import crud
from backend.app.db.models import Plan
from backend.app.db.session import AsyncSessionLocal
from backend.app.settings import get_settings
from backend.app.tools import build_default_registry

ADMIN_EMAIL = "admin@toolgate.local"

PLANS = [
    {"name": "Pro", "slug": "pro", "daily_limit": 200},
    {"name": "Unlimited", "slug": "unlimited", "daily_limit": -1},
]


async def seed_tools(db):
    """Catalog rows for the built-in tools; tool endpoints 404 without them."""
    for slug in build_default_registry().slugs:
        if await crud.get_tool_by_slug(db, slug):
            print(f"  Tool '{slug}' already exists, skipping...")
            continue
        await crud.create_tool(db, slug=slug, name=slug.replace("-", " ").title())
        print(f"  Created tool: {slug}")


async def seed_plans(db):
    for pdata in PLANS:
        existing = await db.execute(select(Plan).where(Plan.slug == pdata["slug"]))
        if existing.scalar_one_or_none():
            print(f"  Plan '{pdata['slug']}' already exists, skipping...")
            continue
        db.add(Plan(**pdata))
        print(f"  Created plan: {pdata['name']} ({pdata['daily_limit']}/day)")


async def seed_admin(db):
    user = await crud.get_user_by_email(db, ADMIN_EMAIL)
    if user:
        print(f"  Admin {ADMIN_EMAIL} already exists, skipping...")
    else:
        user = await crud.create_user(db, email=ADMIN_EMAIL, name="Administrator", is_admin=True)
        print(f"  Created admin: {ADMIN_EMAIL}")
    return user


async def main():
    """Main entry point."""
    settings = get_settings()

    print("=" * 60)
    print("toolgate Development Data Seeder")
    print("=" * 60)
    print()

    async with AsyncSessionLocal() as db:
        print("Creating tools...")
        await seed_tools(db)
        print("Creating plans...")
        await seed_plans(db)
        print("Creating admin...")
        admin = await seed_admin(db)
        await db.commit()

    print()
    print("=" * 60)
    print("Seeding complete!")
    print()
    print("Admin session cookie:")
    print(f"  {settings.user_session_cookie_name}={sign_user_session(admin.id)}")
    print()
    print("Configure an AI provider and model through /api/admin before")
    print("calling the tool endpoints.")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
