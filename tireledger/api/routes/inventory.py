"""
Inventory routes (admin only)

Locations, per-location stock records, adjustments with their movement
log, and low-stock / reorder reports. Quantities only change through the
adjust endpoint (or add/remove), each of which writes a movement.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from tireledger.api.deps import CurrentUser, get_current_admin, get_ledger, get_location_service
from tireledger.schemas.inventory import (
    InventoryAdjust,
    InventoryCreate,
    InventoryResponse,
    InventorySettingsUpdate,
    LocationCreate,
    LocationResponse,
    LocationUpdate,
    MovementResponse,
    ProductStockResponse,
    ProductSummary,
    ReorderRecommendationResponse,
)
from tireledger.services.inventory_ledger import InventoryLedger
from tireledger.services.location_service import LocationService

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Locations
# =============================================================================

@router.get("/locations", response_model=List[LocationResponse])
async def list_locations(
    active_only: bool = False,
    admin: CurrentUser = Depends(get_current_admin),
    service: LocationService = Depends(get_location_service),
):
    return await service.list_locations(active_only=active_only)


@router.post("/locations", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def create_location(
    body: LocationCreate,
    admin: CurrentUser = Depends(get_current_admin),
    service: LocationService = Depends(get_location_service),
):
    fields = body.model_dump(exclude={"name", "type"})
    return await service.create_location(body.name, body.type, **fields)


@router.get("/locations/{location_id}", response_model=LocationResponse)
async def get_location(
    location_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    service: LocationService = Depends(get_location_service),
):
    return await service.get_location(location_id)


@router.put("/locations/{location_id}", response_model=LocationResponse)
async def update_location(
    location_id: int,
    body: LocationUpdate,
    admin: CurrentUser = Depends(get_current_admin),
    service: LocationService = Depends(get_location_service),
):
    return await service.update_location(location_id, body.model_dump(exclude_unset=True))


@router.delete("/locations/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(
    location_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    service: LocationService = Depends(get_location_service),
):
    """Fails with 409 while the location still holds inventory records."""
    await service.delete_location(location_id)


@router.get("/locations/{location_id}/items", response_model=List[InventoryResponse])
async def list_location_inventory(
    location_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    records = await ledger.list_by_location(location_id)
    return [InventoryResponse.from_record(r) for r in records]


@router.get("/locations/{location_id}/available-products", response_model=List[ProductSummary])
async def list_available_products(
    location_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Products that can still be added to this location."""
    return await ledger.available_products(location_id)


# =============================================================================
# Inventory records
# =============================================================================

@router.post("/items", response_model=InventoryResponse, status_code=status.HTTP_201_CREATED)
async def add_inventory(
    body: InventoryCreate,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    record = await ledger.add_product(
        location_id=body.location_id,
        product_id=body.product_id,
        quantity=body.quantity,
        minimum_level=body.minimum_level,
        reorder_level=body.reorder_level,
        reorder_qty=body.reorder_qty,
        user_id=admin.id,
    )
    return InventoryResponse.from_record(record)


@router.get("/items/{inventory_id}", response_model=InventoryResponse)
async def get_inventory(
    inventory_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    return InventoryResponse.from_record(await ledger.get_record(inventory_id))


@router.post("/items/{inventory_id}/adjust", response_model=InventoryResponse)
async def adjust_inventory(
    inventory_id: int,
    body: InventoryAdjust,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Adjust stock with audit trail."""
    record = await ledger.adjust(
        inventory_id,
        body.quantity,
        body.movement_type,
        body.reason,
        notes=body.notes,
        reference_number=body.reference_number,
        user_id=admin.id,
    )
    logger.info(
        f"Stock adjusted for inventory {inventory_id}: {body.quantity:+d} "
        f"({body.movement_type.value}) by admin {admin.id}"
    )
    return InventoryResponse.from_record(record)


@router.put("/items/{inventory_id}/settings", response_model=InventoryResponse)
async def update_inventory_settings(
    inventory_id: int,
    body: InventorySettingsUpdate,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    record = await ledger.update_settings(
        inventory_id,
        minimum_level=body.minimum_level,
        reorder_level=body.reorder_level,
        reorder_qty=body.reorder_qty,
    )
    return InventoryResponse.from_record(record)


@router.delete("/items/{inventory_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_inventory(
    inventory_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Zero the record with a closing movement, then delete it."""
    await ledger.remove(inventory_id, user_id=admin.id)


@router.get("/items/{inventory_id}/movements", response_model=List[MovementResponse])
async def get_stock_history(
    inventory_id: int,
    limit: int = Query(100, ge=1, le=500),
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Movement log for a record, newest first."""
    return await ledger.movements(inventory_id, limit=limit)


# =============================================================================
# Reports
# =============================================================================

@router.get("/low-stock", response_model=List[InventoryResponse])
async def low_stock(
    location_id: Optional[int] = None,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    records = await ledger.low_stock(location_id)
    return [InventoryResponse.from_record(r) for r in records]


@router.get("/reorder-recommendations", response_model=List[ReorderRecommendationResponse])
async def reorder_recommendations(
    location_id: Optional[int] = None,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    return await ledger.reorder_recommendations(location_id)


@router.get("/products/{product_id}", response_model=ProductStockResponse)
async def product_stock(
    product_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_ledger),
):
    """Stock for one product across every location."""
    records = await ledger.product_inventory(product_id)
    return ProductStockResponse(
        product_id=product_id,
        total_stock=await ledger.total_product_stock(product_id),
        records=[InventoryResponse.from_record(r) for r in records],
    )
