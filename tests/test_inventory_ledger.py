"""
Tests for the inventory ledger: counters, movement log and reports.
"""
import random
from decimal import Decimal

import pytest
from sqlalchemy import event, select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tireledger.core.exceptions import (
    AlreadyExistsError,
    ConflictError,
    InsufficientStockError,
    InventoryNotFoundError,
    LocationInUseError,
    LocationNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from tireledger.core.database import Base
from tireledger.models import InventoryMovement, InventoryRecord, Location, LocationType, MovementType, Product
from tireledger.services.inventory_ledger import InventoryLedger
from tireledger.services.location_service import LocationService


async def movement_count(db, inventory_id: int) -> int:
    result = await db.execute(
        select(func.count(InventoryMovement.id)).where(InventoryMovement.inventory_id == inventory_id)
    )
    return result.scalar_one()


class SaleAfterRead(InventoryLedger):
    """Ledger that lets another session sell two units right after its first read."""

    def __init__(self, db, till):
        super().__init__(db)
        self.till = till
        self.sold = False

    async def get_record(self, inventory_id):
        record = await super().get_record(inventory_id)
        if not self.sold:
            self.sold = True
            await InventoryLedger(self.till).adjust(inventory_id, -2, MovementType.SALE)
            await self.till.commit()
        return record


class TestAddProduct:
    """Creating inventory records."""

    @pytest.mark.asyncio
    async def test_initial_stock_writes_purchase_movement(self, db, catalog):
        ledger = InventoryLedger(db)
        movements = await ledger.movements(catalog.all_season_stock)

        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.PURCHASE
        assert movements[0].quantity == 10
        assert movements[0].reason == "Initial inventory"

    @pytest.mark.asyncio
    async def test_zero_quantity_writes_no_movement(self, db, catalog):
        ledger = InventoryLedger(db)
        record = await ledger.add_product(catalog.store.id, catalog.all_season.id, 0)

        assert record.quantity == 0
        assert await movement_count(db, record.id) == 0

    @pytest.mark.asyncio
    async def test_duplicate_pair_rejected(self, db, catalog):
        ledger = InventoryLedger(db)
        with pytest.raises(AlreadyExistsError):
            await ledger.add_product(catalog.warehouse.id, catalog.all_season.id, 3)

    @pytest.mark.asyncio
    async def test_unknown_location_and_product(self, db, catalog):
        ledger = InventoryLedger(db)
        with pytest.raises(LocationNotFoundError):
            await ledger.add_product(9999, catalog.all_season.id, 1)
        with pytest.raises(ProductNotFoundError):
            await ledger.add_product(catalog.store.id, 9999, 1)

    @pytest.mark.asyncio
    async def test_negative_values_rejected(self, db, catalog):
        ledger = InventoryLedger(db)
        with pytest.raises(ValidationError):
            await ledger.add_product(catalog.store.id, catalog.winter.id, -1)
        with pytest.raises(ValidationError):
            await ledger.add_product(catalog.store.id, catalog.winter.id, 1, reorder_qty=-5)


class TestAdjust:
    """Quantity changes always come with exactly one movement."""

    @pytest.mark.asyncio
    async def test_decrement_writes_one_movement(self, db, catalog):
        ledger = InventoryLedger(db)
        record = await ledger.adjust(catalog.all_season_stock, -4, MovementType.SALE, "walk-in sale")
        await db.commit()

        assert record.quantity == 6
        assert await movement_count(db, record.id) == 2
        latest = (await ledger.movements(record.id))[0]
        assert latest.quantity == -4
        assert latest.movement_type == MovementType.SALE
        assert latest.reason == "walk-in sale"

    @pytest.mark.asyncio
    async def test_oversell_rejected_and_nothing_written(self, db, catalog):
        ledger = InventoryLedger(db)

        with pytest.raises(InsufficientStockError) as exc_info:
            await ledger.adjust(catalog.winter_stock, -6, MovementType.SALE, "too many")

        assert exc_info.value.available == 5
        assert exc_info.value.requested == 6
        assert exc_info.value.product_id == catalog.winter.id

        record = await ledger.get_record(catalog.winter_stock)
        assert record.quantity == 5
        assert await movement_count(db, catalog.winter_stock) == 1

    @pytest.mark.asyncio
    async def test_draining_to_exactly_zero_allowed(self, db, catalog):
        ledger = InventoryLedger(db)
        record = await ledger.adjust(catalog.winter_stock, -5, "DAMAGED", "flood")
        assert record.quantity == 0

    @pytest.mark.asyncio
    async def test_zero_delta_and_bad_type_rejected(self, db, catalog):
        ledger = InventoryLedger(db)
        with pytest.raises(ValidationError):
            await ledger.adjust(catalog.winter_stock, 0, MovementType.ADJUSTMENT)
        with pytest.raises(ValidationError):
            await ledger.adjust(catalog.winter_stock, 1, "GIFT")

    @pytest.mark.asyncio
    async def test_unknown_record(self, db, catalog):
        ledger = InventoryLedger(db)
        with pytest.raises(InventoryNotFoundError):
            await ledger.adjust(9999, 1, MovementType.PURCHASE)

    @pytest.mark.asyncio
    async def test_stale_reader_cannot_oversell(self, session_factory, catalog):
        """Two sessions both see the last units; only the first decrement wins."""
        async with session_factory() as first, session_factory() as second:
            stale = await InventoryLedger(second).get_record(catalog.winter_stock)
            assert stale.quantity == 5

            await InventoryLedger(first).adjust(catalog.winter_stock, -5, MovementType.SALE)
            await first.commit()

            with pytest.raises(InsufficientStockError):
                await InventoryLedger(second).adjust(catalog.winter_stock, -5, MovementType.SALE)
            await second.rollback()

        async with session_factory() as check:
            ledger = InventoryLedger(check)
            record = await ledger.get_record(catalog.winter_stock)
            assert record.quantity == 0
            assert await ledger.ledger_balance(catalog.winter_stock) == 0

    @pytest.mark.asyncio
    async def test_random_sequences_keep_ledger_complete(self, db, catalog):
        """Counter never negative and always equal to the sum of its movements."""
        ledger = InventoryLedger(db)
        rng = random.Random(20240611)
        types = list(MovementType)

        for _ in range(150):
            delta = rng.choice([d for d in range(-8, 9) if d != 0])
            before = (await ledger.get_record(catalog.all_season_stock)).quantity
            try:
                record = await ledger.adjust(catalog.all_season_stock, delta, rng.choice(types))
            except InsufficientStockError:
                assert before + delta < 0
                record = await ledger.get_record(catalog.all_season_stock)
                assert record.quantity == before
            else:
                assert record.quantity == before + delta

            assert record.quantity >= 0
            assert await ledger.ledger_balance(catalog.all_season_stock) == record.quantity


class TestRemove:
    """Removing records keeps their history."""

    @pytest.mark.asyncio
    async def test_remove_writes_closing_movement(self, db, catalog):
        ledger = InventoryLedger(db)
        await ledger.remove(catalog.winter_stock)
        await db.commit()

        assert await db.get(InventoryRecord, catalog.winter_stock) is None
        movements = await ledger.movements(catalog.winter_stock)
        assert [m.quantity for m in movements] == [-5, 5]
        assert movements[0].movement_type == MovementType.OTHER
        assert await ledger.ledger_balance(catalog.winter_stock) == 0

    @pytest.mark.asyncio
    async def test_remove_unknown(self, db, catalog):
        with pytest.raises(InventoryNotFoundError):
            await InventoryLedger(db).remove(9999)

    @pytest.mark.asyncio
    async def test_sale_during_removal_is_a_conflict(self, session_factory, catalog):
        """A sale landing between the read and the closing movement aborts the removal."""
        async with session_factory() as remover, session_factory() as till:
            with pytest.raises(ConflictError):
                await SaleAfterRead(remover, till).remove(catalog.winter_stock)
            await remover.rollback()

        async with session_factory() as check:
            ledger = InventoryLedger(check)
            record = await ledger.get_record(catalog.winter_stock)
            assert record.quantity == 3
            assert await ledger.ledger_balance(catalog.winter_stock) == 3


@pytest.fixture
async def strict_session_factory(tmp_path):
    """File database with SQLite foreign key enforcement switched on."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'strict.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class TestLocationDeletion:
    """Movement history does not pin a location once its records are gone."""

    @pytest.mark.asyncio
    async def test_delete_after_stock_removed(self, strict_session_factory):
        async with strict_session_factory() as db:
            shop = Location(name="Pop-up Store", type=LocationType.STORE, is_active=True)
            tire = Product(sku="PU-1", name="Pop-up Tire", retail_price=Decimal("80.00"), discount=Decimal("0"))
            db.add_all([shop, tire])
            await db.flush()
            shop_id = shop.id

            ledger = InventoryLedger(db)
            record = await ledger.add_product(shop_id, tire.id, 3)
            inventory_id = record.id
            await db.commit()

            with pytest.raises(LocationInUseError):
                await LocationService(db).delete_location(shop_id)
            await db.rollback()

            await ledger.remove(inventory_id)
            await db.commit()

            await LocationService(db).delete_location(shop_id)
            await db.commit()

        async with strict_session_factory() as check:
            assert await check.get(Location, shop_id) is None
            movements = await InventoryLedger(check).movements(inventory_id)
            assert [m.quantity for m in movements] == [-3, 3]
            assert all(m.location_id == shop_id for m in movements)


class TestReports:
    """Low stock, reorder suggestions and allocation."""

    @pytest.mark.asyncio
    async def test_low_stock(self, db, catalog):
        ledger = InventoryLedger(db)
        low = await ledger.low_stock()
        assert [r.id for r in low] == [catalog.winter_stock]

        await ledger.adjust(catalog.all_season_stock, -8, MovementType.SALE)
        low = await ledger.low_stock(catalog.warehouse.id)
        # Ordered by product name within the location
        assert [r.product.name for r in low] == ["All Season 205/55R16", "Winter 195/65R15"]

        assert await ledger.low_stock(catalog.store.id) == []

    @pytest.mark.asyncio
    async def test_reorder_recommendations(self, db, catalog):
        ledger = InventoryLedger(db)
        recs = await ledger.reorder_recommendations()

        assert len(recs) == 1
        assert recs[0].inventory_id == catalog.winter_stock
        assert recs[0].suggested_quantity == 10
        assert recs[0].location_name == "Main Warehouse"

    @pytest.mark.asyncio
    async def test_total_stock_ignores_inactive_locations(self, db, catalog):
        ledger = InventoryLedger(db)
        assert await ledger.total_product_stock(catalog.performance.id) == 5
        assert len(await ledger.product_inventory(catalog.performance.id)) == 3

    @pytest.mark.asyncio
    async def test_allocate_largest_first_and_split(self, db, catalog):
        ledger = InventoryLedger(db)
        plan = await ledger.allocate(catalog.performance.id, 4)

        assert [(a.location_id, a.quantity) for a in plan] == [
            (catalog.warehouse.id, 3),
            (catalog.store.id, 1),
        ]

        with pytest.raises(InsufficientStockError) as exc_info:
            await ledger.allocate(catalog.performance.id, 6)
        assert exc_info.value.available == 5

    @pytest.mark.asyncio
    async def test_available_products(self, db, catalog):
        ledger = InventoryLedger(db)
        names = [p.name for p in await ledger.available_products(catalog.store.id)]
        assert names == ["All Season 205/55R16", "Winter 195/65R15"]

    @pytest.mark.asyncio
    async def test_update_settings(self, db, catalog):
        ledger = InventoryLedger(db)
        record = await ledger.update_settings(catalog.winter_stock, minimum_level=1, reorder_qty=12)

        assert record.minimum_level == 1
        assert record.reorder_level == 6
        assert record.reorder_qty == 12
        assert record.quantity == 5

        with pytest.raises(ValidationError):
            await ledger.update_settings(catalog.winter_stock, reorder_level=-1)
