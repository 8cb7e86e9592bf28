"""
Location model

A physical node that can hold stock: warehouse, store, supplier, etc.
Locations that still own inventory records cannot be deleted.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from tireledger.core.database import Base


class LocationType(str, enum.Enum):
    WAREHOUSE = "WAREHOUSE"
    STORE = "STORE"
    SUPPLIER = "SUPPLIER"
    CUSTOMER = "CUSTOMER"
    OTHER = "OTHER"


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    type = Column(SQLEnum(LocationType), nullable=False, default=LocationType.WAREHOUSE)

    # Address
    address = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    postal_code = Column(String(20))
    country = Column(String(100))

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    inventory = relationship("InventoryRecord", back_populates="location")

    def __repr__(self):
        return f"<Location {self.id}: {self.name} ({self.type})>"
