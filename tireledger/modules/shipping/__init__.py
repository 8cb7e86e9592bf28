"""
Shipping Module

Carrier rate lookup behind the BaseCarrier interface. The packager and the
fallback policy live in tireledger.services.
"""
from tireledger.modules.shipping.carriers import get_carrier
from tireledger.modules.shipping.carriers.base import BaseCarrier

__all__ = [
    "get_carrier",
    "BaseCarrier",
]
