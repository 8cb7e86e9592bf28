"""
Shipping and pricing routes

Quote endpoints used by the storefront checkout before an order is placed.
None of them write to the store.
"""
import logging
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tireledger.api.deps import CurrentUser, get_current_user, get_order_service, get_shipping_service
from tireledger.core.database import get_db
from tireledger.core.exceptions import ProductNotFoundError
from tireledger.models.product import Product
from tireledger.modules.shipping.carriers.base import AddressInput, Package
from tireledger.schemas.shipping import (
    PackageResponse,
    PackRequest,
    PackResponse,
    QuoteRequest,
    QuoteResponse,
    RatesRequest,
    RatesResponse,
    ShippingOptionResponse,
)
from tireledger.services.order_service import LineRequest, OrderService
from tireledger.services.packaging import PackItem, pack
from tireledger.services.shipping_service import ShippingService
from tireledger.api.routes.orders import to_address

logger = logging.getLogger(__name__)

router = APIRouter()


def package_responses(packages: List[Package]) -> List[PackageResponse]:
    return [PackageResponse(**p.to_dict()) for p in packages]


@router.post("/shipping/packages", response_model=PackResponse)
async def plan_packages(body: PackRequest):
    """Split cart lines into carrier-compliant packages."""
    packages = pack([
        PackItem(
            product_id=i.product_id,
            name=i.name,
            quantity=i.quantity,
            weight_kg=i.weight_kg,
            length_cm=i.length_cm,
            width_cm=i.width_cm,
            height_cm=i.height_cm,
        )
        for i in body.items
    ])
    return PackResponse(
        packages=package_responses(packages),
        total_weight=round(sum(p.weight for p in packages), 3),
    )


@router.post("/shipping/rates", response_model=RatesResponse)
async def shipping_rates(
    body: RatesRequest,
    db: AsyncSession = Depends(get_db),
    service: ShippingService = Depends(get_shipping_service),
):
    """Shipping options for catalog products going to an address."""
    pack_items = []
    for line in body.items:
        product = await db.get(Product, line.product_id)
        if not product:
            raise ProductNotFoundError(line.product_id)
        pack_items.append(PackItem(
            product_id=product.id,
            name=product.name,
            quantity=line.quantity,
            weight_kg=product.weight_kg,
            length_cm=product.length_cm,
            width_cm=product.width_cm,
            height_cm=product.height_cm,
        ))

    packages = pack(pack_items)
    recipient = AddressInput(
        address_line1=body.recipient.address_line1,
        address_line2=body.recipient.address_line2,
        city=body.recipient.city,
        state_province=body.recipient.state or "",
        postal_code=body.recipient.postal_code,
        country_code=body.recipient.country,
    )
    options = await service.get_shipping_options(recipient, packages)
    return RatesResponse(
        packages=package_responses(packages),
        options=[ShippingOptionResponse.model_validate(o) for o in options],
    )


@router.post("/pricing/quote", response_model=QuoteResponse)
async def pricing_quote(
    body: QuoteRequest,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Price a cart exactly as checkout would, without placing the order."""
    quote = await service.quote(
        [LineRequest(i.product_id, i.quantity) for i in body.items],
        to_address(body.shipping_address),
        body.promotion_codes,
        body.shipping_option_id,
    )
    b = quote.breakdown
    return QuoteResponse(
        subtotal=b.subtotal,
        catalog_discount=b.catalog_discount,
        promotions_discount=b.promotions_discount,
        shipping_discount=b.shipping_discount,
        tax=b.tax,
        shipping=b.shipping,
        total=b.total,
        has_free_shipping=b.has_free_shipping,
        applied_codes=list(b.applied_codes),
        shipping_option=ShippingOptionResponse.model_validate(quote.shipping_option),
    )
