"""
HTTP rate provider

Posts {shipperAddress, recipientAddress, packages} to the configured rates
endpoint and maps the returned rates to ShippingOptions.

Retries transport errors and 429/5xx responses with exponential backoff
(base_delay * 2^attempt). 4xx responses are permanent failures.
"""
import asyncio
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from tireledger.core.config import settings
from tireledger.core.exceptions import CarrierError
from tireledger.modules.shipping.carriers.base import (
    AddressInput,
    BaseCarrier,
    Package,
    ShippingOption,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


def address_payload(address: AddressInput) -> Dict[str, Any]:
    return {
        "contactName": address.recipient_name or "",
        "companyName": address.company_name or "",
        "phone": address.phone or "",
        "email": address.email or "",
        "addressLine1": address.address_line1,
        "addressLine2": address.address_line2 or "",
        "city": address.city,
        "state": address.state_province,
        "postalCode": address.postal_code,
        "countryCode": address.country_code,
    }


def rate_to_option(rate: Dict[str, Any]) -> ShippingOption:
    service_type = str(rate.get("serviceType") or "STANDARD")
    provider = rate.get("providerName") or "Carrier"

    delivery = rate.get("deliveryDate")
    if delivery:
        try:
            estimated = f"Est. delivery by {datetime.fromisoformat(delivery).strftime('%b %d')}"
        except ValueError:
            estimated = f"Est. delivery by {delivery}"
    else:
        estimated = f"{rate.get('transitDays') or 3}-5 days"

    try:
        price = Decimal(str(rate["totalAmount"]))
    except (KeyError, InvalidOperation):
        raise CarrierError("Carrier returned a rate without a valid price", provider=provider)

    return ShippingOption(
        id=str(rate.get("rateId") or service_type),
        name=f"{provider} {service_type.capitalize()}",
        price=price,
        estimated_delivery=estimated,
        description=f"{provider} {service_type} delivery service",
    )


class HTTPCarrierClient(BaseCarrier):
    """
    Rate lookup against an HTTP rates API.

    Usage:
        carrier = HTTPCarrierClient(settings.CARRIER_RATES_URL)
        options = await carrier.get_rates(shipper, recipient, packages)
        await carrier.close()
    """

    def __init__(
        self,
        rates_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_delay: float = 0.1,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rates_url = rates_url or settings.CARRIER_RATES_URL
        self.api_key = api_key if api_key is not None else settings.CARRIER_API_KEY
        self.timeout = timeout if timeout is not None else settings.CARRIER_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.CARRIER_MAX_RETRIES
        self.base_delay = base_delay
        self._client = client

    @property
    def carrier_name(self) -> str:
        return "HTTP Rates API"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_with_retry(self, payload: Dict[str, Any]) -> httpx.Response:
        client = self._get_client()
        last_error: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.base_delay * (2 ** attempt)
                logger.debug(f"Retrying carrier rates in {delay:.2f}s (attempt {attempt + 1})")
                await asyncio.sleep(delay)

            try:
                response = await client.post(self.rates_url, json=payload)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"Carrier rates transport error: {last_error}")
                continue

            if response.status_code in RETRYABLE_STATUS_CODES:
                last_error = f"HTTP {response.status_code}"
                logger.warning(f"Carrier rates returned {response.status_code}, will retry")
                continue

            if response.status_code >= 400:
                raise CarrierError(
                    f"Carrier rates request failed with HTTP {response.status_code}",
                    provider=self.carrier_name,
                )
            return response

        raise CarrierError(
            f"Carrier rates unavailable after {self.max_retries + 1} attempts: {last_error}",
            provider=self.carrier_name,
        )

    async def get_rates(
        self,
        shipper: AddressInput,
        recipient: AddressInput,
        packages: List[Package],
    ) -> List[ShippingOption]:
        if not self.rates_url:
            raise CarrierError("CARRIER_RATES_URL is not configured", provider=self.carrier_name)

        payload = {
            "shipperAddress": address_payload(shipper),
            "recipientAddress": address_payload(recipient),
            "packages": [p.to_dict() for p in packages],
        }
        response = await self._post_with_retry(payload)

        try:
            data = response.json()
        except ValueError:
            raise CarrierError("Carrier returned invalid JSON", provider=self.carrier_name)

        rates = data.get("rates") if isinstance(data, dict) else None
        if not rates:
            raise CarrierError("Carrier returned no rates", provider=self.carrier_name)

        return [rate_to_option(rate) for rate in rates]
