"""Seed script for SkyHotel development database."""

import asyncio

from sqlalchemy import select

from skyhotel.database import async_session_factory
from skyhotel.models.corporate import CorporateAgreement
from skyhotel.models.pool import PoolAccount
from skyhotel.models.system import SystemConfig
from skyhotel.models.user import AgentChannelQuota, SystemUser
from skyhotel.services.quota_ledger import UNLIMITED
from skyhotel.services.user_service import default_channel_quotas, pwd_context

# ── Users ──────────────────────────────────────────────────────────────────────

USERS = [
    {"username": "admin", "name": "System Admin", "password": "123456", "role": "ADMIN"},
    {"username": "demo", "name": "Demo Agent", "password": "123456", "role": "USER"},
]

# ── Corporate agreements ───────────────────────────────────────────────────────

AGREEMENTS = ["Northwind Technology", "Contoso Travel", "Legacy Agreement"]

DISABLED_AGREEMENTS = ["Legacy Agreement"]

# ── Pool accounts ──────────────────────────────────────────────────────────────

POOL_ACCOUNTS = [
    {
        "phone": "13800000001",
        "remark": "demo new-user account",
        "is_new_user": True,
        "points": 1200,
        "breakfast_coupons": 1,
        "daily_orders_left": 5,
        "agreements": [],
    },
    {
        "phone": "13800000002",
        "remark": "demo platinum account",
        "is_platinum": True,
        "points": 8600,
        "upgrade_coupons": 2,
        "daily_orders_left": 3,
        "agreements": [],
    },
    {
        "phone": "13800000003",
        "remark": "demo corporate account",
        "daily_orders_left": 5,
        "agreements": ["Northwind Technology"],
    },
]


def _admin_quotas() -> list[AgentChannelQuota]:
    quotas = default_channel_quotas()
    for q in quotas:
        q.allowed, q.daily_limit, q.quota_balance = True, UNLIMITED, UNLIMITED
    return quotas


async def seed():
    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(SystemUser).limit(1))
        if result.scalar_one_or_none():
            print("Database already seeded. Skipping.")
            return

        # ── Users ──
        for u in USERS:
            user = SystemUser(
                username=u["username"],
                name=u["name"],
                password_hash=pwd_context.hash(u["password"]),
                role=u["role"],
                status="ACTIVE",
            )
            user.channel_quotas = _admin_quotas() if u["role"] == "ADMIN" else default_channel_quotas()
            user.corporate_grants = []
            db.add(user)
        print(f"Created {len(USERS)} users ({', '.join(u['username'] for u in USERS)})")

        # ── Corporate agreements ──
        agreements = {name: CorporateAgreement(name=name, enabled=True) for name in AGREEMENTS}
        db.add_all(agreements.values())
        print(f"Created {len(agreements)} corporate agreements")

        # ── Pool accounts ──
        for data in POOL_ACCOUNTS:
            data = dict(data)
            names = data.pop("agreements")
            account = PoolAccount(is_online=True, last_execution={}, last_result={}, **data)
            account.agreements = [agreements[n] for n in names]
            db.add(account)
        print(f"Created {len(POOL_ACCOUNTS)} pool accounts")

        # ── System config ──
        if await db.get(SystemConfig, "default") is None:
            db.add(SystemConfig(
                id="default",
                site_name="SkyHotel Agent Pro",
                support_contact="400-888-9999",
                maintenance_mode=False,
                maintenance_message="Upgrading, back within the hour.",
                enable_new_user=True,
                enable_platinum=True,
                enable_corporate=True,
                disabled_corporate_names=DISABLED_AGREEMENTS,
            ))
            print("Created default system config")

        await db.commit()
        print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(seed())
