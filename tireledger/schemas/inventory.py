"""
Inventory and location schemas
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from tireledger.models.inventory import MovementType
from tireledger.models.location import LocationType


class LocationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: LocationType = LocationType.WAREHOUSE
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_active: bool = True


class LocationCreate(LocationBase):
    pass


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[LocationType] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_active: Optional[bool] = None


class LocationResponse(LocationBase):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductSummary(BaseModel):
    id: int
    sku: Optional[str] = None
    name: str
    retail_price: float
    discount: float = 0

    class Config:
        from_attributes = True


class InventoryCreate(BaseModel):
    location_id: int
    product_id: int
    quantity: int = Field(default=0, ge=0)
    minimum_level: int = Field(default=0, ge=0)
    reorder_level: int = Field(default=0, ge=0)
    reorder_qty: int = Field(default=0, ge=0)


class InventoryAdjust(BaseModel):
    quantity: int = Field(..., description="Signed change, negative removes stock")
    movement_type: MovementType
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    reference_number: Optional[str] = Field(None, max_length=64)


class InventorySettingsUpdate(BaseModel):
    minimum_level: Optional[int] = Field(None, ge=0)
    reorder_level: Optional[int] = Field(None, ge=0)
    reorder_qty: Optional[int] = Field(None, ge=0)


class InventoryResponse(BaseModel):
    id: int
    product_id: int
    location_id: int
    quantity: int
    minimum_level: int
    reorder_level: int
    reorder_qty: int
    last_updated: Optional[datetime] = None
    product: Optional[ProductSummary] = None
    location_name: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_record(cls, record) -> "InventoryResponse":
        response = cls.model_validate(record)
        response.location_name = record.location.name if record.location else None
        return response


class MovementResponse(BaseModel):
    id: int
    inventory_id: int
    product_id: int
    location_id: int
    order_id: Optional[int] = None
    quantity: int
    movement_type: MovementType
    reason: Optional[str] = None
    notes: Optional[str] = None
    reference_number: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ReorderRecommendationResponse(BaseModel):
    inventory_id: int
    product_id: int
    product_name: str
    location_id: int
    location_name: str
    quantity: int
    reorder_level: int
    suggested_quantity: int

    class Config:
        from_attributes = True


class ProductStockResponse(BaseModel):
    product_id: int
    total_stock: int
    records: List[InventoryResponse]
