"""
Base Carrier Interface

Every rate provider implements BaseCarrier.get_rates(). The order flow only
needs rate quotes; labels and tracking stay with the carrier's own tooling.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass
class AddressInput:
    """Origin or destination of a rate request."""
    address_line1: str
    city: str
    state_province: str
    postal_code: str
    country_code: str = "US"
    address_line2: Optional[str] = None
    recipient_name: Optional[str] = None
    company_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    residential: bool = True


@dataclass
class Package:
    """Package dimensions and weight."""
    weight: float  # kilograms
    length: float  # centimetres
    width: float  # centimetres
    height: float  # centimetres
    description: str = ""
    items: List[Any] = field(default_factory=list)  # contributing PackItems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight": self.weight,
            "length": self.length,
            "width": self.width,
            "height": self.height,
            "description": self.description,
        }


@dataclass
class ShippingOption:
    """A rate quote the customer can pick at checkout."""
    id: str
    name: str
    price: Decimal
    estimated_delivery: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingOption":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            price=Decimal(str(data.get("price", "0"))),
            estimated_delivery=data.get("estimated_delivery") or data.get("estimatedDelivery"),
            description=data.get("description"),
        )


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """
    Abstract base class for rate providers.

    Implementations raise CarrierError on failure; the shipping service
    decides whether to fall back.
    """

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Return the human-readable carrier name."""
        pass

    @abstractmethod
    async def get_rates(
        self,
        shipper: AddressInput,
        recipient: AddressInput,
        packages: List[Package],
    ) -> List[ShippingOption]:
        """
        Get shipping options for a set of packages.

        Args:
            shipper: Origin address
            recipient: Destination address
            packages: Packages from the packager

        Returns:
            List of ShippingOption quotes
        """
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None
