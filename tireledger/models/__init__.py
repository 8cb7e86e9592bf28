from tireledger.models.location import Location, LocationType
from tireledger.models.product import Product
from tireledger.models.inventory import InventoryRecord, InventoryMovement, MovementType
from tireledger.models.order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    PaymentStatus,
    ORDER_STATUS_TRANSITIONS,
    CANCELLABLE_STATUSES,
)
from tireledger.models.promotion import Promotion, PromotionType
