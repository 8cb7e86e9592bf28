"""
Inventory Ledger

Per-(product, location) stock counters plus the append-only movement log.

Every quantity change goes through adjust(), which is one conditional write:

    UPDATE inventory SET quantity = quantity + :delta
    WHERE id = :id AND quantity + :delta >= 0

followed by exactly one movement insert. Concurrent adjustments to the same
record serialize on the row lock the UPDATE takes, so stock can never be
oversold and the movements always sum to the counter.

The ledger never commits. The caller owns the unit of work (request
dependency, or OrderService for checkout) and rolls back on any error.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tireledger.core.exceptions import (
    AlreadyExistsError,
    ConflictError,
    InsufficientStockError,
    InventoryNotFoundError,
    LocationNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from tireledger.models.inventory import InventoryRecord, InventoryMovement, MovementType
from tireledger.models.location import Location
from tireledger.models.product import Product

logger = logging.getLogger(__name__)


@dataclass
class Allocation:
    """Part of a sale drawn from one inventory record."""
    inventory_id: int
    location_id: int
    quantity: int


@dataclass
class ReorderRecommendation:
    inventory_id: int
    product_id: int
    product_name: str
    location_id: int
    location_name: str
    quantity: int
    reorder_level: int
    suggested_quantity: int


def _coerce_movement_type(movement_type: Union[MovementType, str]) -> MovementType:
    try:
        return MovementType(movement_type)
    except ValueError:
        raise ValidationError(
            f"Invalid movement type: {movement_type}",
            details={"movement_type": movement_type, "allowed": [m.value for m in MovementType]},
        )


def _require_non_negative(**values: Optional[int]) -> None:
    for name, value in values.items():
        if value is not None and value < 0:
            raise ValidationError(f"{name} cannot be negative", details={name: value})


class InventoryLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _record_query(self):
        return select(InventoryRecord).options(
            selectinload(InventoryRecord.product),
            selectinload(InventoryRecord.location),
        )

    async def get_record(self, inventory_id: int) -> InventoryRecord:
        result = await self.db.execute(
            self._record_query()
            .where(InventoryRecord.id == inventory_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise InventoryNotFoundError(inventory_id)
        return record

    async def list_by_location(self, location_id: int) -> List[InventoryRecord]:
        await self._get_location(location_id)
        result = await self.db.execute(
            self._record_query()
            .join(Product, InventoryRecord.product_id == Product.id)
            .where(InventoryRecord.location_id == location_id)
            .order_by(Product.name)
        )
        return list(result.scalars().all())

    async def product_inventory(self, product_id: int) -> List[InventoryRecord]:
        """All records for a product, across every location."""
        result = await self.db.execute(
            self._record_query()
            .join(Location, InventoryRecord.location_id == Location.id)
            .where(InventoryRecord.product_id == product_id)
            .order_by(Location.name)
        )
        return list(result.scalars().all())

    async def total_product_stock(self, product_id: int) -> int:
        """Sellable stock: the sum over active locations."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryRecord.quantity), 0))
            .join(Location, InventoryRecord.location_id == Location.id)
            .where(InventoryRecord.product_id == product_id)
            .where(Location.is_active.is_(True))
        )
        return int(result.scalar_one())

    async def movements(self, inventory_id: int, limit: int = 100) -> List[InventoryMovement]:
        """Movement history for a record, newest first."""
        result = await self.db.execute(
            select(InventoryMovement)
            .where(InventoryMovement.inventory_id == inventory_id)
            .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ledger_balance(self, inventory_id: int) -> int:
        """Sum of every movement delta for a record. Always equals its quantity."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryMovement.quantity), 0))
            .where(InventoryMovement.inventory_id == inventory_id)
        )
        return int(result.scalar_one())

    async def low_stock(self, location_id: Optional[int] = None) -> List[InventoryRecord]:
        """Records at or below their minimum level, by location then product name."""
        query = (
            self._record_query()
            .join(Location, InventoryRecord.location_id == Location.id)
            .join(Product, InventoryRecord.product_id == Product.id)
            .where(InventoryRecord.quantity <= InventoryRecord.minimum_level)
            .order_by(Location.name, Product.name)
        )
        if location_id is not None:
            query = query.where(InventoryRecord.location_id == location_id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def reorder_recommendations(self, location_id: Optional[int] = None) -> List[ReorderRecommendation]:
        """Suggest ordering reorder_qty units for records at or below their reorder level."""
        query = (
            self._record_query()
            .join(Location, InventoryRecord.location_id == Location.id)
            .join(Product, InventoryRecord.product_id == Product.id)
            .where(InventoryRecord.quantity <= InventoryRecord.reorder_level)
            .where(InventoryRecord.reorder_qty > 0)
            .order_by(Location.name, Product.name)
        )
        if location_id is not None:
            query = query.where(InventoryRecord.location_id == location_id)

        result = await self.db.execute(query)
        return [
            ReorderRecommendation(
                inventory_id=record.id,
                product_id=record.product_id,
                product_name=record.product.name,
                location_id=record.location_id,
                location_name=record.location.name,
                quantity=record.quantity,
                reorder_level=record.reorder_level,
                suggested_quantity=record.reorder_qty,
            )
            for record in result.scalars().all()
        ]

    async def available_products(self, location_id: int) -> List[Product]:
        """Sellable products not yet stocked at a location."""
        await self._get_location(location_id)
        stocked = select(InventoryRecord.product_id).where(InventoryRecord.location_id == location_id)
        result = await self.db.execute(
            select(Product)
            .where(Product.is_visible.is_(True))
            .where(Product.is_discontinued.is_(False))
            .where(Product.id.not_in(stocked))
            .order_by(Product.name)
        )
        return list(result.scalars().all())

    async def allocate(self, product_id: int, quantity: int) -> List[Allocation]:
        """
        Plan which records satisfy a sale of `quantity` units.

        Active locations only, largest stock first, split across records when
        no single one holds enough. Nothing is written.

        Raises:
            InsufficientStockError: Active locations hold less than `quantity`
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be positive", details={"quantity": quantity})

        result = await self.db.execute(
            select(InventoryRecord)
            .join(Location, InventoryRecord.location_id == Location.id)
            .where(InventoryRecord.product_id == product_id)
            .where(InventoryRecord.quantity > 0)
            .where(Location.is_active.is_(True))
            .order_by(InventoryRecord.quantity.desc(), InventoryRecord.id)
            .execution_options(populate_existing=True)
        )
        records = result.scalars().all()

        allocations = []
        remaining = quantity
        for record in records:
            if remaining <= 0:
                break
            take = min(record.quantity, remaining)
            allocations.append(Allocation(record.id, record.location_id, take))
            remaining -= take

        if remaining > 0:
            available = quantity - remaining
            raise InsufficientStockError(
                f"Insufficient stock for product {product_id}: requested {quantity}, available {available}",
                product_id=product_id,
                requested=quantity,
                available=available,
            )
        return allocations

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add_product(
        self,
        location_id: int,
        product_id: int,
        quantity: int = 0,
        minimum_level: int = 0,
        reorder_level: int = 0,
        reorder_qty: int = 0,
        user_id: Optional[int] = None,
    ) -> InventoryRecord:
        """
        Stock a product at a location.

        Writes one PURCHASE movement for the initial quantity, if any.

        Raises:
            AlreadyExistsError: The product already has a record there
        """
        _require_non_negative(
            quantity=quantity,
            minimum_level=minimum_level,
            reorder_level=reorder_level,
            reorder_qty=reorder_qty,
        )
        await self._get_location(location_id)
        if not await self.db.get(Product, product_id):
            raise ProductNotFoundError(product_id)

        existing = await self.db.execute(
            select(InventoryRecord.id)
            .where(InventoryRecord.product_id == product_id)
            .where(InventoryRecord.location_id == location_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyExistsError(
                "Product already exists in this location's inventory",
                details={"product_id": product_id, "location_id": location_id},
            )

        record = InventoryRecord(
            product_id=product_id,
            location_id=location_id,
            quantity=quantity,
            minimum_level=minimum_level,
            reorder_level=reorder_level,
            reorder_qty=reorder_qty,
        )
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with another add for the same pair
            raise AlreadyExistsError(
                "Product already exists in this location's inventory",
                details={"product_id": product_id, "location_id": location_id},
            )

        if quantity > 0:
            self.db.add(InventoryMovement(
                inventory_id=record.id,
                product_id=product_id,
                location_id=location_id,
                quantity=quantity,
                movement_type=MovementType.PURCHASE,
                reason="Initial inventory",
                created_by=user_id,
            ))
            await self.db.flush()

        logger.info(
            f"Inventory record created: inventory_id={record.id} product_id={product_id} "
            f"location_id={location_id} quantity={quantity}"
        )
        return await self.get_record(record.id)

    async def adjust(
        self,
        inventory_id: int,
        delta: int,
        movement_type: Union[MovementType, str],
        reason: Optional[str] = None,
        *,
        notes: Optional[str] = None,
        order_id: Optional[int] = None,
        reference_number: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> InventoryRecord:
        """
        Change a record's quantity by `delta` and log the movement.

        Raises:
            ValidationError: delta is zero or movement_type is unknown
            InventoryNotFoundError: No such record
            InsufficientStockError: quantity + delta would go below zero.
                Nothing is written.
        """
        movement_type = _coerce_movement_type(movement_type)
        if delta == 0:
            raise ValidationError("Adjustment quantity cannot be zero", details={"inventory_id": inventory_id})

        result = await self.db.execute(
            update(InventoryRecord)
            .where(InventoryRecord.id == inventory_id)
            .where(InventoryRecord.quantity + delta >= 0)
            .values(
                quantity=InventoryRecord.quantity + delta,
                last_updated=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            record = await self.db.get(InventoryRecord, inventory_id, populate_existing=True)
            if not record:
                raise InventoryNotFoundError(inventory_id)
            logger.warning(
                f"Inventory adjustment rejected: inventory_id={inventory_id} "
                f"quantity={record.quantity} delta={delta}"
            )
            raise InsufficientStockError(
                f"Insufficient stock for product {record.product_id}: "
                f"requested {-delta}, available {record.quantity}",
                product_id=record.product_id,
                requested=-delta,
                available=record.quantity,
                inventory_id=inventory_id,
            )

        record = await self.get_record(inventory_id)

        self.db.add(InventoryMovement(
            inventory_id=record.id,
            product_id=record.product_id,
            location_id=record.location_id,
            order_id=order_id,
            quantity=delta,
            movement_type=movement_type,
            reason=reason,
            notes=notes,
            reference_number=reference_number,
            created_by=user_id,
        ))
        await self.db.flush()

        logger.info(
            f"Inventory adjusted: inventory_id={inventory_id} delta={delta:+d} "
            f"type={movement_type.value} quantity={record.quantity}"
        )
        return record

    async def update_settings(
        self,
        inventory_id: int,
        minimum_level: Optional[int] = None,
        reorder_level: Optional[int] = None,
        reorder_qty: Optional[int] = None,
    ) -> InventoryRecord:
        """Change reorder thresholds. Quantity is only changed through adjust()."""
        _require_non_negative(
            minimum_level=minimum_level,
            reorder_level=reorder_level,
            reorder_qty=reorder_qty,
        )
        record = await self.get_record(inventory_id)

        if minimum_level is not None:
            record.minimum_level = minimum_level
        if reorder_level is not None:
            record.reorder_level = reorder_level
        if reorder_qty is not None:
            record.reorder_qty = reorder_qty

        await self.db.flush()
        return record

    async def remove(self, inventory_id: int, user_id: Optional[int] = None) -> None:
        """
        Delete a record, zeroing it first with a closing OTHER movement.

        Raises:
            InventoryNotFoundError: No such record
            ConflictError: Stock moved while the record was being removed
        """
        record = await self.get_record(inventory_id)

        if record.quantity > 0:
            try:
                await self.adjust(
                    inventory_id,
                    -record.quantity,
                    MovementType.OTHER,
                    "Inventory removed",
                    user_id=user_id,
                )
            except InsufficientStockError as e:
                raise ConflictError(
                    "Inventory changed while it was being removed",
                    details={"inventory_id": inventory_id, "available": e.details.get("available")},
                ) from e

        result = await self.db.execute(
            delete(InventoryRecord)
            .where(InventoryRecord.id == inventory_id)
            .where(InventoryRecord.quantity == 0)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(
                "Inventory changed while it was being removed",
                details={"inventory_id": inventory_id},
            )
        self.db.expunge(record)

        logger.info(f"Inventory record removed: inventory_id={inventory_id}")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _get_location(self, location_id: int) -> Location:
        location = await self.db.get(Location, location_id)
        if not location:
            raise LocationNotFoundError(location_id)
        return location
