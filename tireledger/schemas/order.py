"""
Order schemas
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field

from tireledger.models.order import OrderStatus, PaymentStatus


class AddressSchema(BaseModel):
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(default="US", min_length=2, max_length=100)


class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)


class OrderCreate(BaseModel):
    shipping_address: AddressSchema
    billing_address: Optional[AddressSchema] = None
    payment_method: str = Field(..., min_length=1, max_length=30)
    items: List[OrderItemCreate] = Field(..., min_length=1)
    promotion_codes: List[str] = Field(default_factory=list)
    shipping_option_id: Optional[str] = None
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(None, max_length=40)
    notes: Optional[str] = None


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    tracking_number: Optional[str] = Field(None, max_length=64)


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int]
    product_name: str
    product_sku: Optional[str]
    price: float
    original_price: Optional[float] = None
    quantity: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: Optional[int]
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: Optional[str]
    subtotal: float
    catalog_discount: float
    promotions_discount: float
    tax: float
    shipping_cost: float
    total: float
    promotion_codes: Optional[str] = None
    shipping_method_id: Optional[str] = None
    shipping_method_name: Optional[str] = None
    tracking_number: Optional[str] = None
    customer_email: Optional[str] = None
    shipping_address_line1: str
    shipping_address_line2: Optional[str] = None
    shipping_city: str
    shipping_state: Optional[str] = None
    shipping_postal_code: str
    shipping_country: str
    items: List[OrderItemResponse]
    created_at: datetime
    shipped_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderList(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    per_page: int


class OrderHistoryResponse(BaseModel):
    id: int
    status: OrderStatus
    note: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True
