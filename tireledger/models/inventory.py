"""
Inventory models

InventoryRecord is the stock counter for one product at one location.
InventoryMovement is the append-only audit trail of every change to it:
for any record, the sum of its movements' quantities equals its quantity.

- One record per (product_id, location_id)
- quantity can never go negative (check constraint backs the conditional update)
- Movements are write-once
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text,
    CheckConstraint, Index, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from tireledger.core.database import Base


class MovementType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    SALE = "SALE"
    RETURN = "RETURN"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"
    DAMAGED = "DAMAGED"
    OTHER = "OTHER"


class InventoryRecord(Base):
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    location_id = Column(
        Integer,
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    quantity = Column(Integer, nullable=False, default=0)

    # Reorder thresholds
    minimum_level = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=0)
    reorder_qty = Column(Integer, nullable=False, default=0)

    last_updated = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    product = relationship("Product", back_populates="inventory")
    location = relationship("Location", back_populates="inventory")

    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
        CheckConstraint("quantity >= 0", name="chk_inventory_quantity_non_negative"),
        CheckConstraint(
            "minimum_level >= 0 AND reorder_level >= 0 AND reorder_qty >= 0",
            name="chk_inventory_levels_non_negative"
        ),
    )

    def __repr__(self):
        return f"<InventoryRecord {self.id}: product {self.product_id} @ location {self.location_id} qty={self.quantity}>"


class InventoryMovement(Base):
    """Audit trail for inventory stock changes"""
    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True, index=True)

    # No FK on inventory or location: movements outlive both
    inventory_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    location_id = Column(Integer, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)

    quantity = Column(Integer, nullable=False)  # positive for in, negative for out
    movement_type = Column(SQLEnum(MovementType), nullable=False, index=True)

    # Why
    reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    reference_number = Column(String(64), nullable=True)

    # Who
    created_by = Column(Integer, nullable=True)

    # When
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        index=True
    )

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="chk_movement_quantity_non_zero"),
        Index("ix_inventory_movements_inventory_created", inventory_id, created_at.desc()),
    )

    def __repr__(self):
        return f"<InventoryMovement {self.id}: {self.movement_type} {self.quantity:+d} on inventory {self.inventory_id}>"
