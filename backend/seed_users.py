"""
Database seeding script for initial directory entries.

Creates one ADMIN, an approved RIDER, a RIDER sign-up awaiting review and
the SYSTEM principal used by webhook callbacks, and prints a development token for each.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.user import User
from backend.app.models.enums import UserRole, RiderApprovalStatus
from backend.app.core.jwt import create_access_token
from sqlalchemy import select

SEED_USERS = [
    {"external_id": "admin-shop-1", "display_name": "Shop Admin", "role": UserRole.ADMIN, "mobile": "919800000001"},
    {"external_id": "rider-ravi", "display_name": "Ravi", "role": UserRole.RIDER, "mobile": "919800000002"},
    {
        "external_id": "rider-signup-1", "display_name": "New Rider", "role": UserRole.RIDER, "mobile": "919800000004",
        "approval_status": RiderApprovalStatus.PENDING, "is_active": False,
    },
    {"external_id": "svc-webhooks", "display_name": "Webhook Service", "role": UserRole.SYSTEM, "mobile": None},
]


def dev_token(user: User) -> str:
    return create_access_token({"sub": user.external_id, "user_id": user.id, "role": user.role.value})


async def seed_users():
    """
    Seed initial users with different roles.

    Existing entries (matched on external_id) are left untouched.

    Returns:
        Dict of external_id -> User
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")
        users = {}

        for entry in SEED_USERS:
            result = await db.execute(select(User).where(User.external_id == entry["external_id"]))
            user = result.scalar_one_or_none()

            if user:
                print(f"ℹ️  {entry['role'].value} user {entry['external_id']} already exists, skipping")
            else:
                user = User(**{"is_active": True, **entry})
                db.add(user)
                await db.flush()
                print(f"✅ Created {entry['role'].value} user {entry['external_id']}")

            users[user.external_id] = user

        # Commit all users
        await db.commit()

        print("\n🎉 User seeding completed successfully!")
        print("\nDevelopment tokens:")
        for user in users.values():
            print(f"  - {user.role.value:<6} {user.external_id}: {dev_token(user)}")

        return users


if __name__ == "__main__":
    asyncio.run(seed_users())
