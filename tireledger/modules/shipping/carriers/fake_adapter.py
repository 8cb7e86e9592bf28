"""
In-process rate provider for development and tests.

Returns fixed options (or raises a given error) and records every call.
"""
from typing import List, Optional, Sequence

from tireledger.core.config import settings
from tireledger.modules.shipping.carriers.base import (
    AddressInput,
    BaseCarrier,
    Package,
    ShippingOption,
)


class FakeCarrier(BaseCarrier):
    def __init__(
        self,
        options: Optional[Sequence[ShippingOption]] = None,
        error: Optional[Exception] = None,
    ):
        if options is None:
            options = [ShippingOption.from_dict(o) for o in settings.FALLBACK_SHIPPING_OPTIONS]
        self.options = list(options)
        self.error = error
        self.calls: List[List[Package]] = []

    @property
    def carrier_name(self) -> str:
        return "Fake Carrier"

    async def get_rates(
        self,
        shipper: AddressInput,
        recipient: AddressInput,
        packages: List[Package],
    ) -> List[ShippingOption]:
        self.calls.append(list(packages))
        if self.error:
            raise self.error
        return list(self.options)
