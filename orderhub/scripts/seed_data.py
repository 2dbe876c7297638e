# scripts/seed_data.py
import asyncio
from orderhub.core.db import init_db, close_db
from orderhub.core.security import create_access_token
from orderhub.models.tenant import Tenant, User, UserRole
from orderhub.models.menu import MenuItem

async def seed():
    # Create one tenant
    tenant, _ = await Tenant.get_or_create(name="Demo Restaurant")
    print("Tenant:", tenant.id)

    # Staff, one per role
    staff = {}
    for username, role in (("manager", UserRole.MANAGER), ("kitchen", UserRole.KITCHEN), ("rider", UserRole.RIDER)):
        user, _ = await User.get_or_create(tenant=tenant, username=username, defaults={"role": role})
        staff[username] = user

    # Menu items with opening stock
    m1, _ = await MenuItem.get_or_create(tenant=tenant, name="Paneer Wrap", defaults={"price": "149.00", "category": "Wraps"})
    m2, _ = await MenuItem.get_or_create(tenant=tenant, name="Chili Paneer Rice", defaults={"price": "199.00", "category": "Mains"})
    m3, _ = await MenuItem.get_or_create(tenant=tenant, name="Cold Drink", defaults={"price": "49.00", "category": "Drinks", "low_stock_threshold": 10})

    # If existing, reset stock (idempotent)
    m1.stock_quantity = 50
    m2.stock_quantity = 30
    m3.stock_quantity = 100
    await m1.save(); await m2.save(); await m3.save()
    print("Menu items:", str(m1.id), str(m2.id), str(m3.id))

    # Development tokens for trying the staff endpoints
    for username, user in staff.items():
        token = create_access_token({
            "tenant_id": str(tenant.id),
            "user_id": str(user.id),
            "username": user.username,
            "role": user.role.value,
        }, ttl_seconds=24 * 3600)
        print(f"{username} token:", token)

async def main():
    # Schemas are normally created at app startup; safe to call in dev
    await init_db()
    await seed()
    await close_db()

if __name__ == "__main__":
    asyncio.run(main())
