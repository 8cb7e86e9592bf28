"""
Tire Ledger Exception Hierarchy

Structured exception classes for the inventory ledger, order fulfillment
and shipping subsystems. All exceptions carry code, message and details so
they can be logged and returned to the client without string parsing.

Exception Hierarchy:
    TireLedgerError
    ├── ValidationError
    ├── NotFoundError
    │   ├── ProductNotFoundError
    │   ├── LocationNotFoundError
    │   ├── InventoryNotFoundError
    │   └── OrderNotFoundError
    ├── InsufficientStockError
    ├── ConflictError
    │   ├── AlreadyExistsError
    │   ├── LocationInUseError
    │   └── InvalidStatusTransitionError
    ├── ShippingError
    │   └── CarrierError
    └── InternalError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class TireLedgerError(Exception):
    """
    Base exception for all Tire Ledger custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
        status_code: HTTP status the API layer maps this error to
    """

    default_code: str = "TIRE_LEDGER_ERROR"
    default_severity: str = "P2"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(TireLedgerError):
    """Malformed or missing input. Raised before any mutation."""
    default_code = "VALIDATION_ERROR"
    default_severity = "P3"
    status_code = 400


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(TireLedgerError):
    """Unknown product, location, inventory record or order."""
    default_code = "NOT_FOUND"
    default_severity = "P3"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    default_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["product_id"] = product_id
        super().__init__(f"Product {product_id} not found", details=details, **kwargs)
        self.product_id = product_id


class LocationNotFoundError(NotFoundError):
    default_code = "LOCATION_NOT_FOUND"

    def __init__(self, location_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["location_id"] = location_id
        super().__init__(f"Location {location_id} not found", details=details, **kwargs)


class InventoryNotFoundError(NotFoundError):
    default_code = "INVENTORY_NOT_FOUND"

    def __init__(self, inventory_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["inventory_id"] = inventory_id
        super().__init__(f"Inventory item {inventory_id} not found", details=details, **kwargs)


class OrderNotFoundError(NotFoundError):
    default_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__(f"Order {order_id} not found", details=details, **kwargs)


# =============================================================================
# STOCK
# =============================================================================

class InsufficientStockError(TireLedgerError):
    """Requested quantity exceeds what is on hand (oversell prevented)."""
    default_code = "INSUFFICIENT_STOCK"
    default_severity = "P2"
    status_code = 400

    def __init__(
        self,
        message: str,
        product_id: Optional[int] = None,
        requested: Optional[int] = None,
        available: Optional[int] = None,
        inventory_id: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "product_id": product_id,
            "requested": requested,
            "available": available,
        })
        if inventory_id is not None:
            details["inventory_id"] = inventory_id
        super().__init__(message, details=details, **kwargs)
        self.product_id = product_id
        self.requested = requested
        self.available = available


# =============================================================================
# CONFLICTS
# =============================================================================

class ConflictError(TireLedgerError):
    """Operation conflicts with current state. Nothing was written."""
    default_code = "CONFLICT"
    default_severity = "P3"
    status_code = 409


class AlreadyExistsError(ConflictError):
    default_code = "ALREADY_EXISTS"


class LocationInUseError(ConflictError):
    default_code = "LOCATION_IN_USE"


class InvalidStatusTransitionError(ConflictError):
    default_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, target: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"current_status": current, "target_status": target})
        super().__init__(
            f"Order cannot move from {current} to {target}",
            details=details,
            **kwargs
        )


# =============================================================================
# SHIPPING
# =============================================================================

class ShippingError(TireLedgerError):
    """Base exception for shipping-related errors."""
    default_code = "SHIPPING_ERROR"
    default_severity = "P1"
    status_code = 502


class CarrierError(ShippingError):
    """Carrier rate lookup failed."""
    default_code = "CARRIER_RATE_FAILED"

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["provider"] = provider
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# INTERNAL
# =============================================================================

class InternalError(TireLedgerError):
    """Unexpected store/transport failure. Clients only see a generic message."""
    default_code = "INTERNAL_ERROR"
    default_severity = "P1"
    status_code = 500

    def __init__(self, message: str = "An internal error occurred. Please try again later.", **kwargs):
        super().__init__(message, **kwargs)
