"""
Order routes

Checkout, order lookup and cancellation for customers; status changes for
admins. Service errors are mapped to HTTP responses by the registered
TireLedgerError handler.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, status

from tireledger.api.deps import CurrentUser, get_current_admin, get_current_user, get_order_service
from tireledger.core.config import settings
from tireledger.core.rate_limit import checkout_key, limiter
from tireledger.models.order import OrderStatus
from tireledger.schemas.order import (
    AddressSchema,
    OrderCancel,
    OrderCreate,
    OrderHistoryResponse,
    OrderList,
    OrderResponse,
    OrderStatusUpdate,
)
from tireledger.services.order_service import Address, Customer, LineRequest, OrderService

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def to_address(schema: Optional[AddressSchema]) -> Optional[Address]:
    if schema is None:
        return None
    return Address(
        address_line1=schema.address_line1,
        address_line2=schema.address_line2,
        city=schema.city,
        state=schema.state,
        postal_code=schema.postal_code,
        country=schema.country,
    )


def owner_scope(user: CurrentUser) -> Optional[int]:
    """Admins see every order; customers only their own."""
    return None if user.is_admin else user.id


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_CHECKOUT, key_func=checkout_key)
async def create_order(
    request: Request,
    order_data: OrderCreate,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Create an order from a cart and decrement stock."""
    order = await service.create_order(
        customer=Customer(
            user_id=user.id,
            email=order_data.customer_email or user.email,
            name=order_data.customer_name or user.name,
            phone=order_data.customer_phone,
        ),
        shipping_address=to_address(order_data.shipping_address),
        billing_address=to_address(order_data.billing_address),
        payment_method=order_data.payment_method,
        items=[LineRequest(i.product_id, i.quantity) for i in order_data.items],
        promotion_codes=order_data.promotion_codes,
        shipping_option_id=order_data.shipping_option_id,
        notes=order_data.notes,
    )
    return order


@router.get("", response_model=OrderList)
async def list_orders(
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
):
    """Current user's orders (every order for admins), newest first."""
    orders, total = await service.list_orders(owner_scope(user), page, per_page, status_filter)
    return OrderList(orders=orders, total=total, page=page, per_page=per_page)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Get single order"""
    return await service.get_order(order_id, owner_scope(user))


@router.get("/{order_id}/history", response_model=List[OrderHistoryResponse])
async def get_order_history(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Status change history, oldest first."""
    return await service.history(order_id, owner_scope(user))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    body: Optional[OrderCancel] = None,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Cancel a pending or processing order and return its stock."""
    # Ownership check first so other customers' orders look missing
    await service.get_order(order_id, owner_scope(user))
    return await service.cancel(order_id, reason=body.reason if body else None, user_id=user.id)


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    admin: CurrentUser = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    """Move an order along its lifecycle (admin only)."""
    return await service.update_status(
        order_id,
        body.status,
        note=body.note,
        tracking_number=body.tracking_number,
        user_id=admin.id,
    )
