"""
Shipping and pricing schemas
"""
from typing import Optional, List
from pydantic import BaseModel, Field

from tireledger.schemas.order import AddressSchema, OrderItemCreate


class PackItemSchema(BaseModel):
    product_id: int = 0
    name: str = ""
    quantity: int = Field(..., gt=0)
    weight_kg: Optional[float] = Field(None, ge=0)
    length_cm: Optional[float] = Field(None, ge=0)
    width_cm: Optional[float] = Field(None, ge=0)
    height_cm: Optional[float] = Field(None, ge=0)


class PackRequest(BaseModel):
    items: List[PackItemSchema] = Field(default_factory=list)


class PackageResponse(BaseModel):
    weight: float
    length: float
    width: float
    height: float
    description: str


class PackResponse(BaseModel):
    packages: List[PackageResponse]
    total_weight: float


class RatesRequest(BaseModel):
    recipient: AddressSchema
    items: List[OrderItemCreate] = Field(default_factory=list)


class ShippingOptionResponse(BaseModel):
    id: str
    name: str
    price: float
    estimated_delivery: Optional[str] = None
    description: Optional[str] = None

    class Config:
        from_attributes = True


class RatesResponse(BaseModel):
    packages: List[PackageResponse]
    options: List[ShippingOptionResponse]


class QuoteRequest(BaseModel):
    shipping_address: AddressSchema
    items: List[OrderItemCreate] = Field(..., min_length=1)
    promotion_codes: List[str] = Field(default_factory=list)
    shipping_option_id: Optional[str] = None


class QuoteResponse(BaseModel):
    subtotal: float
    catalog_discount: float
    promotions_discount: float
    shipping_discount: float
    tax: float
    shipping: float
    total: float
    has_free_shipping: bool
    applied_codes: List[str]
    shipping_option: ShippingOptionResponse
