"""
Location management

Administrators create and edit stock locations. A location that still owns
inventory records cannot be deleted; remove or move its stock first.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tireledger.core.exceptions import LocationInUseError, LocationNotFoundError, ValidationError
from tireledger.models.inventory import InventoryRecord
from tireledger.models.location import Location, LocationType

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "type", "address", "city", "state", "postal_code", "country", "is_active")


class LocationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_locations(self, active_only: bool = False) -> List[Location]:
        query = select(Location).order_by(Location.name)
        if active_only:
            query = query.where(Location.is_active.is_(True))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_location(self, location_id: int) -> Location:
        location = await self.db.get(Location, location_id)
        if not location:
            raise LocationNotFoundError(location_id)
        return location

    async def create_location(self, name: str, type: LocationType = LocationType.WAREHOUSE, **fields) -> Location:
        if not name or not name.strip():
            raise ValidationError("Location name is required")

        location = Location(name=name.strip(), type=LocationType(type), **self._clean(fields))
        self.db.add(location)
        await self.db.flush()

        logger.info(f"Location created: location_id={location.id} name={location.name!r}")
        return location

    async def update_location(self, location_id: int, changes: Dict[str, Any]) -> Location:
        location = await self.get_location(location_id)

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Location name is required")
            changes = {**changes, "name": name}
        if changes.get("type") is not None:
            changes = {**changes, "type": LocationType(changes["type"])}

        for field, value in self._clean(changes).items():
            setattr(location, field, value)

        await self.db.flush()
        logger.info(f"Location updated: location_id={location_id} fields={sorted(changes)}")
        return location

    async def delete_location(self, location_id: int) -> None:
        """
        Raises:
            LocationNotFoundError: No such location
            LocationInUseError: It still owns inventory records
        """
        location = await self.get_location(location_id)

        result = await self.db.execute(
            select(func.count(InventoryRecord.id)).where(InventoryRecord.location_id == location_id)
        )
        count = result.scalar_one()
        if count:
            raise LocationInUseError(
                "Cannot delete location with existing inventory. Remove all inventory items first.",
                details={"location_id": location_id, "inventory_count": count},
            )

        await self.db.delete(location)
        await self.db.flush()
        logger.info(f"Location deleted: location_id={location_id}")

    @staticmethod
    def _clean(fields: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
