"""
API dependencies

Bearer tokens are issued by the storefront's auth service and verified here.
Claims used: sub (user id), type == "access", optional email/name, and
is_admin for privileged inventory and order-status operations.
"""
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from tireledger.core.database import get_db
from tireledger.core.security import ACCESS_TOKEN_TYPE, decode_token
from tireledger.modules.shipping.carriers import get_carrier
from tireledger.modules.shipping.carriers.base import BaseCarrier
from tireledger.services.email_hooks import NotificationService, get_notification_service
from tireledger.services.inventory_ledger import InventoryLedger
from tireledger.services.location_service import LocationService
from tireledger.services.order_service import OrderService
from tireledger.services.shipping_service import ShippingService

security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: int
    email: Optional[str] = None
    name: Optional[str] = None
    is_admin: bool = False


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Get current authenticated user from the bearer token."""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    payload = decode_token(credentials.credentials)

    if not payload or payload.get("type") != ACCESS_TOKEN_TYPE:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject"
        )

    return CurrentUser(
        id=user_id,
        email=payload.get("email"),
        name=payload.get("name"),
        is_admin=bool(payload.get("is_admin", False)),
    )


async def get_current_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Require admin user"""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


def get_app_carrier(request: Request) -> BaseCarrier:
    """One rate provider per app, created at startup and closed at shutdown."""
    carrier = getattr(request.app.state, "carrier", None)
    if carrier is None:
        carrier = get_carrier()
        request.app.state.carrier = carrier
    return carrier


def get_notifier() -> NotificationService:
    return get_notification_service()


def get_ledger(db: AsyncSession = Depends(get_db)) -> InventoryLedger:
    return InventoryLedger(db)


def get_location_service(db: AsyncSession = Depends(get_db)) -> LocationService:
    return LocationService(db)


def get_shipping_service(carrier: BaseCarrier = Depends(get_app_carrier)) -> ShippingService:
    return ShippingService(carrier)


def get_order_service(
    db: AsyncSession = Depends(get_db),
    carrier: BaseCarrier = Depends(get_app_carrier),
    notifier: NotificationService = Depends(get_notifier),
) -> OrderService:
    return OrderService(db, carrier=carrier, notifier=notifier)
