"""
Carrier rate providers

All providers implement BaseCarrier. HTTPCarrierClient talks to the real
rates API when CARRIER_RATES_URL is set; otherwise FakeCarrier serves the
configured fallback options.
"""
import logging

from tireledger.core.config import settings
from tireledger.modules.shipping.carriers.base import (
    AddressInput,
    BaseCarrier,
    Package,
    ShippingOption,
)
from tireledger.modules.shipping.carriers.fake_adapter import FakeCarrier
from tireledger.modules.shipping.carriers.http_carrier import HTTPCarrierClient

logger = logging.getLogger(__name__)


def get_carrier() -> BaseCarrier:
    """Build the rate provider for the current configuration."""
    if settings.CARRIER_RATES_URL:
        return HTTPCarrierClient(settings.CARRIER_RATES_URL)
    logger.debug("CARRIER_RATES_URL not set, using FakeCarrier")
    return FakeCarrier()


__all__ = [
    "AddressInput",
    "BaseCarrier",
    "Package",
    "ShippingOption",
    "FakeCarrier",
    "HTTPCarrierClient",
    "get_carrier",
]
