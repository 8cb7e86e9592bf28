"""
Pytest configuration and fixtures for Tire Ledger tests.

Each test gets its own SQLite file database, so separate sessions are
separate connections and can observe each other's commits.
"""
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

import pytest

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.mkdtemp()}/tireledger.db"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CARRIER_RATES_URL"] = ""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from tireledger.core.database import Base  # noqa: E402
from tireledger.models import Location, LocationType, Product, Promotion, PromotionType  # noqa: E402
from tireledger.modules.shipping.carriers import FakeCarrier  # noqa: E402
from tireledger.services.email_hooks import NotificationService  # noqa: E402
from tireledger.services.inventory_ledger import InventoryLedger  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    """Fresh file database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


class RecordingProvider:
    """Notification provider that remembers what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.confirmations: List[str] = []
        self.cancellations: List[str] = []

    async def send_order_confirmation(self, order) -> bool:
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.confirmations.append(order.order_number)
        return True

    async def send_order_cancellation(self, order, reason: Optional[str]) -> bool:
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.cancellations.append(order.order_number)
        return True


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def notifier(provider) -> NotificationService:
    return NotificationService(provider, timeout=1.0)


@pytest.fixture
def carrier() -> FakeCarrier:
    return FakeCarrier()


@dataclass
class Catalog:
    warehouse: Location
    store: Location
    closed_store: Location
    all_season: Product  # 100.00, brand 1
    winter: Product  # 50.00, brand 2
    performance: Product  # 200.00 less 15%, brand 1
    discontinued: Product
    all_season_stock: int  # inventory id at the warehouse
    winter_stock: int  # inventory id at the warehouse


@pytest.fixture
async def catalog(db) -> Catalog:
    """
    Two active locations and one inactive one, four products.

    Stock: all-season 10 (warehouse), winter 5 (warehouse),
    performance 3 (warehouse) + 2 (store) + 4 (closed store).
    """
    warehouse = Location(name="Main Warehouse", type=LocationType.WAREHOUSE, city="Austin", is_active=True)
    store = Location(name="Downtown Store", type=LocationType.STORE, city="Austin", is_active=True)
    closed_store = Location(name="Old Store", type=LocationType.STORE, is_active=False)

    all_season = Product(
        sku="AS-205-55R16", name="All Season 205/55R16", retail_price=Decimal("100.00"),
        discount=Decimal("0"), weight_kg=9.0, brand_id=1, category_id=10, model_id=100,
    )
    winter = Product(
        sku="WN-195-65R15", name="Winter 195/65R15", retail_price=Decimal("50.00"),
        discount=Decimal("0"), weight_kg=8.0, brand_id=2, category_id=20, model_id=200,
    )
    performance = Product(
        sku="PF-245-40R18", name="Performance 245/40R18", retail_price=Decimal("200.00"),
        discount=Decimal("15"), weight_kg=11.5, length_cm=68, width_cm=68, height_cm=25,
        brand_id=1, category_id=30, model_id=300,
    )
    discontinued = Product(
        sku="OLD-1", name="Retired Tread", retail_price=Decimal("40.00"),
        discount=Decimal("0"), is_discontinued=True,
    )
    db.add_all([warehouse, store, closed_store, all_season, winter, performance, discontinued])
    await db.flush()

    ledger = InventoryLedger(db)
    a = await ledger.add_product(warehouse.id, all_season.id, 10, minimum_level=2, reorder_level=4, reorder_qty=20)
    w = await ledger.add_product(warehouse.id, winter.id, 5, minimum_level=5, reorder_level=6, reorder_qty=10)
    await ledger.add_product(warehouse.id, performance.id, 3)
    await ledger.add_product(store.id, performance.id, 2)
    await ledger.add_product(closed_store.id, performance.id, 4)
    await db.commit()

    return Catalog(
        warehouse=warehouse,
        store=store,
        closed_store=closed_store,
        all_season=all_season,
        winter=winter,
        performance=performance,
        discontinued=discontinued,
        all_season_stock=a.id,
        winter_stock=w.id,
    )


@pytest.fixture
async def promotions(db) -> dict:
    promos = {
        "SAVE10": Promotion(code="SAVE10", name="10% off", type=PromotionType.PERCENTAGE, value=Decimal("10")),
        "TENOFF": Promotion(code="TENOFF", name="$10 off", type=PromotionType.FIXED, value=Decimal("10")),
        "SHIPFREE": Promotion(code="SHIPFREE", name="Free shipping", type=PromotionType.FREE_SHIPPING, value=0),
        "EXPIRED": Promotion(
            code="EXPIRED", name="Old deal", type=PromotionType.FIXED, value=Decimal("5"), is_active=False
        ),
    }
    db.add_all(promos.values())
    await db.commit()
    return promos
