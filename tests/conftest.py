import pytest
import pytest_asyncio
from decimal import Decimal

from orderhub.core.db import init_db, close_db
from orderhub.core.security import create_access_token
from orderhub.models import MenuItem, Tenant, User, UserRole
from orderhub.services.actors import Kitchen, Manager, Rider


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database per test."""
    await init_db("sqlite://:memory:")
    yield
    await close_db()


@pytest_asyncio.fixture
async def tenant(db):
    return await Tenant.create(name="Test Kitchen")


@pytest_asyncio.fixture
async def other_tenant(db):
    return await Tenant.create(name="Other Kitchen")


@pytest_asyncio.fixture
async def users(tenant):
    """One user per staff role, plus a second rider."""
    return {
        "manager": await User.create(tenant=tenant, username="manager", role=UserRole.MANAGER),
        "kitchen": await User.create(tenant=tenant, username="kitchen", role=UserRole.KITCHEN),
        "rider": await User.create(tenant=tenant, username="rider", role=UserRole.RIDER),
        "rider2": await User.create(tenant=tenant, username="rider2", role=UserRole.RIDER),
    }


@pytest.fixture
def manager(tenant, users):
    return Manager(tenant_id=tenant.id, user_id=users["manager"].id, username="manager")


@pytest.fixture
def kitchen(tenant, users):
    return Kitchen(tenant_id=tenant.id, user_id=users["kitchen"].id, username="kitchen")


@pytest.fixture
def rider(tenant, users):
    return Rider(tenant_id=tenant.id, user_id=users["rider"].id, username="rider")


@pytest.fixture
def rider2(tenant, users):
    return Rider(tenant_id=tenant.id, user_id=users["rider2"].id, username="rider2")


@pytest_asyncio.fixture
async def menu(tenant):
    """A: stock 5 at 10.00, B: stock 20 at 4.50."""
    return {
        "A": await MenuItem.create(tenant=tenant, name="A", price=Decimal("10.00"), stock_quantity=5),
        "B": await MenuItem.create(
            tenant=tenant, name="B", price=Decimal("4.50"), stock_quantity=20, low_stock_threshold=2
        ),
    }


@pytest.fixture
def make_token():
    """Factory for signed staff tokens."""
    def _make(tenant_id, user_id, role, username="staff") -> str:
        return create_access_token({
            "tenant_id": str(tenant_id),
            "user_id": str(user_id),
            "username": username,
            "role": role,
        })
    return _make
