"""
Shipping Service

Turns packed cart lines into customer-facing shipping options.

The carrier call runs outside any order transaction with a bounded timeout.
When it fails, times out or returns nothing, checkout continues on the
configured FALLBACK_SHIPPING_OPTIONS instead of blocking.
"""
import asyncio
import logging
from typing import List, Optional, Sequence

from tireledger.core.config import settings
from tireledger.core.exceptions import ValidationError
from tireledger.modules.shipping.carriers import get_carrier
from tireledger.modules.shipping.carriers.base import (
    AddressInput,
    BaseCarrier,
    Package,
    ShippingOption,
)

logger = logging.getLogger(__name__)


def shipper_address() -> AddressInput:
    """Origin address for rate requests, from SHIPPER_* settings."""
    return AddressInput(
        address_line1=settings.SHIPPER_ADDRESS_LINE1,
        address_line2=settings.SHIPPER_ADDRESS_LINE2 or None,
        city=settings.SHIPPER_CITY,
        state_province=settings.SHIPPER_STATE,
        postal_code=settings.SHIPPER_POSTAL_CODE,
        country_code=settings.SHIPPER_COUNTRY_CODE,
        recipient_name=settings.SHIPPER_CONTACT_NAME or None,
        company_name=settings.SHIPPER_COMPANY_NAME or None,
        phone=settings.SHIPPER_PHONE or None,
        email=settings.SHIPPER_EMAIL or None,
        residential=False,
    )


def fallback_options() -> List[ShippingOption]:
    return [ShippingOption.from_dict(option) for option in settings.FALLBACK_SHIPPING_OPTIONS]


def select_option(options: Sequence[ShippingOption], option_id: Optional[str] = None) -> ShippingOption:
    """
    Pick the customer's option, or the cheapest one when none was chosen.

    Raises:
        ValidationError: option_id is not among the offered options
    """
    if not options:
        raise ValidationError("No shipping options available")
    if option_id is None:
        return min(options, key=lambda o: o.price)
    for option in options:
        if option.id == option_id:
            return option
    raise ValidationError(
        f"Unknown shipping option: {option_id}",
        details={"shipping_option_id": option_id, "available": [o.id for o in options]},
    )


class ShippingService:
    def __init__(self, carrier: Optional[BaseCarrier] = None, timeout: Optional[float] = None):
        self.carrier = carrier or get_carrier()
        self.timeout = timeout if timeout is not None else settings.CARRIER_TIMEOUT_SECONDS

    async def get_shipping_options(
        self,
        recipient: AddressInput,
        packages: List[Package],
    ) -> List[ShippingOption]:
        """
        Carrier options for the packages, cheapest first.

        Never raises for carrier failures; returns the fallback set instead.
        """
        try:
            options = await asyncio.wait_for(
                self.carrier.get_rates(shipper_address(), recipient, packages),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"CHECKOUT_METRIC: carrier_fallback reason=timeout "
                f"carrier={self.carrier.carrier_name!r} timeout={self.timeout}"
            )
            options = []
        except Exception as e:
            logger.warning(
                f"CHECKOUT_METRIC: carrier_fallback reason=error "
                f"carrier={self.carrier.carrier_name!r} error={e!r}"
            )
            options = []

        if not options:
            options = fallback_options()

        return sorted(options, key=lambda o: o.price)
