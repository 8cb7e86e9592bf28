"""
OrderService - Order Fulfillment

Turns a priced, stock-validated cart into a persisted order.

create_order():
1. Validate lines, load products and check stock. Nothing is written yet.
2. Snapshot unit prices (retail price less catalog discount).
3. Pack the cart, fetch carrier options (fallback on failure), price it.
4. One transaction: Order, OrderItems, first history row and one SALE
   ledger adjustment per allocated inventory record. A stock race lost
   here surfaces as InsufficientStockError and rolls everything back.
5. After commit, best-effort confirmation email.

Unlike the ledger, this service owns its unit of work: it commits or rolls
back itself so notifications only go out for committed orders.
"""
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tireledger.core.config import settings
from tireledger.core.exceptions import (
    ConflictError,
    InsufficientStockError,
    InternalError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    TireLedgerError,
    ValidationError,
)
from tireledger.models import (
    InventoryMovement,
    InventoryRecord,
    MovementType,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    PaymentStatus,
    Product,
    Promotion,
    CANCELLABLE_STATUSES,
)
from tireledger.models.order import can_transition
from tireledger.modules.shipping.carriers.base import AddressInput, BaseCarrier, ShippingOption
from tireledger.services.email_hooks import NotificationService, get_notification_service
from tireledger.services.inventory_ledger import InventoryLedger
from tireledger.services.packaging import PackItem, pack
from tireledger.services.pricing import (
    CartLine,
    PriceBreakdown,
    catalog_price,
    price,
    promotion_rule_from_model,
)
from tireledger.services.shipping_service import ShippingService, select_option

logger = logging.getLogger(__name__)


@dataclass
class Customer:
    user_id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class Address:
    address_line1: str
    city: str
    postal_code: str
    country: str
    state: Optional[str] = None
    address_line2: Optional[str] = None


@dataclass
class LineRequest:
    product_id: int
    quantity: int


@dataclass
class Quote:
    """Everything checkout decided before writing: prices, lines and shipping."""
    breakdown: PriceBreakdown
    products: Dict[int, Product]
    quantities: Dict[int, int]
    promotions: List[Promotion]
    shipping_option: ShippingOption


def generate_order_number() -> str:
    """Order number in the form TIRE-YYYYMMDD-XXXXXXXX."""
    return (
        f"{settings.ORDER_NUMBER_PREFIX}-{datetime.now(timezone.utc).strftime('%Y%m%d')}"
        f"-{uuid.uuid4().hex[:8].upper()}"
    )


def merge_lines(items: Iterable[LineRequest]) -> Dict[int, int]:
    """Validate request lines and merge repeated products, keeping first-seen order."""
    merged: Dict[int, int] = {}
    for item in items:
        if item.quantity is None or item.quantity <= 0:
            raise ValidationError(
                "Quantity must be positive",
                details={"product_id": item.product_id, "quantity": item.quantity},
            )
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity

    if not merged:
        raise ValidationError("Order must contain at least one item")
    return merged


class OrderService:
    """Order creation, cancellation and status management."""

    def __init__(
        self,
        db: AsyncSession,
        carrier: Optional[BaseCarrier] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.ledger = InventoryLedger(db)
        self.shipping = ShippingService(carrier)
        self.notifier = notifier or get_notification_service()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: int, user_id: Optional[int] = None) -> Order:
        """
        Load an order with its items.

        When user_id is given, orders belonging to someone else are reported
        as not found.
        """
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if user_id is not None:
            query = query.where(Order.user_id == user_id)

        result = await self.db.execute(query)
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def list_orders(
        self,
        user_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 20,
        status: Optional[OrderStatus] = None,
    ) -> Tuple[List[Order], int]:
        """Newest first. user_id None lists every customer's orders."""
        query = select(Order).options(selectinload(Order.items))
        count_query = select(func.count(Order.id))
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
            count_query = count_query.where(Order.user_id == user_id)
        if status is not None:
            query = query.where(Order.status == status)
            count_query = count_query.where(Order.status == status)

        total = (await self.db.execute(count_query)).scalar_one()
        result = await self.db.execute(
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def history(self, order_id: int, user_id: Optional[int] = None) -> List[OrderStatusHistory]:
        await self.get_order(order_id, user_id)
        result = await self.db.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.id)
        )
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    async def _load_products(self, quantities: Dict[int, int]) -> Dict[int, Product]:
        result = await self.db.execute(select(Product).where(Product.id.in_(list(quantities))))
        products = {p.id: p for p in result.scalars().all()}

        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if not product:
                raise ProductNotFoundError(product_id)
            if product.is_discontinued or not product.is_visible:
                raise ValidationError(
                    f"{product.name} is no longer available",
                    details={"product_id": product_id},
                )

            available = await self.ledger.total_product_stock(product_id)
            if available < quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.name}: requested {quantity}, available {available}",
                    product_id=product_id,
                    requested=quantity,
                    available=available,
                )
        return products

    async def _load_promotions(self, codes: Sequence[str]) -> List[Promotion]:
        wanted = list(dict.fromkeys(c.strip().upper() for c in codes if c and c.strip()))
        if not wanted:
            return []

        result = await self.db.execute(select(Promotion).where(func.upper(Promotion.code).in_(wanted)))
        found = {p.code.upper(): p for p in result.scalars().all() if p.is_current()}

        invalid = [code for code in wanted if code not in found]
        if invalid:
            raise ValidationError(
                f"Invalid or expired promotion code: {', '.join(invalid)}",
                details={"promotion_codes": invalid},
            )
        return [found[code] for code in wanted]

    async def quote(
        self,
        items: Iterable[LineRequest],
        shipping_address: Address,
        promotion_codes: Sequence[str] = (),
        shipping_option_id: Optional[str] = None,
    ) -> Quote:
        """Steps 1-3 of checkout: validate, snapshot, pack, rate and price. Writes nothing."""
        quantities = merge_lines(items)
        products = await self._load_products(quantities)
        promotions = await self._load_promotions(promotion_codes)

        cart = []
        pack_items = []
        for product_id, quantity in quantities.items():
            product = products[product_id]
            cart.append(CartLine(
                product_id=product_id,
                quantity=quantity,
                price=catalog_price(product.retail_price, product.discount),
                original_price=product.retail_price,
                brand_id=product.brand_id,
                category_id=product.category_id,
                model_id=product.model_id,
            ))
            pack_items.append(PackItem(
                product_id=product_id,
                name=product.name,
                quantity=quantity,
                weight_kg=product.weight_kg,
                length_cm=product.length_cm,
                width_cm=product.width_cm,
                height_cm=product.height_cm,
            ))

        recipient = AddressInput(
            address_line1=shipping_address.address_line1,
            address_line2=shipping_address.address_line2,
            city=shipping_address.city,
            state_province=shipping_address.state or "",
            postal_code=shipping_address.postal_code,
            country_code=shipping_address.country,
        )
        # End the read transaction so no connection is held open across the carrier call
        await self.db.commit()
        options = await self.shipping.get_shipping_options(recipient, pack(pack_items))
        option = select_option(options, shipping_option_id)

        breakdown = price(
            cart,
            [promotion_rule_from_model(p) for p in promotions],
            settings.TAX_RATE,
            option,
        )
        return Quote(breakdown, products, quantities, promotions, option)

    async def create_order(
        self,
        customer: Customer,
        shipping_address: Address,
        billing_address: Optional[Address],
        payment_method: str,
        items: Iterable[LineRequest],
        promotion_codes: Sequence[str] = (),
        shipping_option_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Create an order and decrement stock, all or nothing.

        Raises:
            ValidationError: Empty cart, bad quantity, unknown promotion or
                shipping option
            ProductNotFoundError: A requested product does not exist
            InsufficientStockError: Not enough stock, before or during the write
            InternalError: Unexpected store failure
        """
        quote = await self.quote(items, shipping_address, promotion_codes, shipping_option_id)
        breakdown, products, quantities = quote.breakdown, quote.products, quote.quantities
        promotions, option = quote.promotions, quote.shipping_option
        billing = billing_address or shipping_address
        order_number = generate_order_number()

        try:
            order = Order(
                order_number=order_number,
                user_id=customer.user_id,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                payment_method=payment_method,
                subtotal=breakdown.subtotal,
                catalog_discount=breakdown.catalog_discount,
                promotions_discount=breakdown.promotions_discount,
                tax=breakdown.tax,
                shipping_cost=breakdown.shipping,
                total=breakdown.total,
                promotion_codes=",".join(p.code for p in promotions) or None,
                shipping_method_id=option.id,
                shipping_method_name=option.name,
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
                shipping_address_line1=shipping_address.address_line1,
                shipping_address_line2=shipping_address.address_line2,
                shipping_city=shipping_address.city,
                shipping_state=shipping_address.state,
                shipping_postal_code=shipping_address.postal_code,
                shipping_country=shipping_address.country,
                billing_address_line1=billing.address_line1,
                billing_address_line2=billing.address_line2,
                billing_city=billing.city,
                billing_state=billing.state,
                billing_postal_code=billing.postal_code,
                billing_country=billing.country,
                notes=notes,
            )
            self.db.add(order)
            await self.db.flush()

            for product_id, quantity in quantities.items():
                product = products[product_id]
                self.db.add(OrderItem(
                    order_id=order.id,
                    product_id=product_id,
                    product_name=product.name,
                    product_sku=product.sku,
                    price=catalog_price(product.retail_price, product.discount),
                    original_price=product.retail_price,
                    quantity=quantity,
                ))

            self.db.add(OrderStatusHistory(
                order_id=order.id,
                status=OrderStatus.PENDING,
                note="Order created",
                user_id=customer.user_id,
            ))

            for product_id, quantity in quantities.items():
                for allocation in await self.ledger.allocate(product_id, quantity):
                    await self.ledger.adjust(
                        allocation.inventory_id,
                        -allocation.quantity,
                        MovementType.SALE,
                        f"order {order_number}",
                        order_id=order.id,
                        reference_number=order_number,
                        user_id=customer.user_id,
                    )

            await self.db.commit()

        except TireLedgerError as e:
            await self.db.rollback()
            logger.warning(
                f"CHECKOUT_METRIC: order_failed order_number={order_number} "
                f"code={e.code} details={e.details}"
            )
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Order transaction failed for {order_number}: {e!r}")
            raise InternalError() from e

        order = await self.get_order(order.id)
        logger.info(
            f"CHECKOUT_METRIC: order_created order_number={order_number} user_id={customer.user_id} "
            f"items={sum(quantities.values())} subtotal={breakdown.subtotal} "
            f"discount={breakdown.promotions_discount} total={breakdown.total} shipping={option.id}"
        )

        await self.notifier.order_confirmed(order)
        return order

    # -------------------------------------------------------------------------
    # Status changes
    # -------------------------------------------------------------------------

    async def _restock_target(self, movement: InventoryMovement) -> InventoryRecord:
        record = await self.db.get(InventoryRecord, movement.inventory_id)
        if record:
            return record

        # Original record was removed; put the stock back anywhere the product lives
        result = await self.db.execute(
            select(InventoryRecord)
            .where(InventoryRecord.product_id == movement.product_id)
            .order_by((InventoryRecord.location_id == movement.location_id).desc(), InventoryRecord.id)
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise ConflictError(
                "No inventory record left to return stock to",
                details={"product_id": movement.product_id, "inventory_id": movement.inventory_id},
            )
        return record

    async def cancel(self, order_id: int, reason: Optional[str] = None, user_id: Optional[int] = None) -> Order:
        """
        Cancel a PENDING or PROCESSING order and return its stock.

        Raises:
            OrderNotFoundError: No such order
            InvalidStatusTransitionError: Order is past the cancellable states
        """
        order = await self.get_order(order_id)

        try:
            # Conditional write so two concurrent cancels cannot both restock
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id)
                .where(Order.status.in_(list(CANCELLABLE_STATUSES)))
                .values(
                    status=OrderStatus.CANCELLED,
                    payment_status=PaymentStatus.CANCELLED,
                    cancelled_at=datetime.now(timezone.utc),
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InvalidStatusTransitionError(OrderStatus(order.status).value, OrderStatus.CANCELLED.value)

            movements = await self.db.execute(
                select(InventoryMovement)
                .where(InventoryMovement.order_id == order_id)
                .where(InventoryMovement.movement_type == MovementType.SALE)
                .order_by(InventoryMovement.id)
            )
            for movement in movements.scalars().all():
                record = await self._restock_target(movement)
                await self.ledger.adjust(
                    record.id,
                    -movement.quantity,
                    MovementType.RETURN,
                    "order cancelled",
                    notes=reason,
                    order_id=order_id,
                    reference_number=order.order_number,
                    user_id=user_id,
                )

            self.db.add(OrderStatusHistory(
                order_id=order_id,
                status=OrderStatus.CANCELLED,
                note=reason or "Order cancelled",
                user_id=user_id,
            ))
            await self.db.commit()

        except TireLedgerError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Cancellation failed for order {order_id}: {e!r}")
            raise InternalError() from e

        order = await self.get_order(order_id)
        logger.info(f"CHECKOUT_METRIC: order_cancelled order_number={order.order_number} user_id={user_id}")

        await self.notifier.order_cancelled(order, reason)
        return order

    async def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Order:
        """
        Move an order along its state machine. Cancelling goes through cancel().

        Raises:
            OrderNotFoundError: No such order
            InvalidStatusTransitionError: Transition not allowed from the current state
        """
        status = OrderStatus(status)
        if status == OrderStatus.CANCELLED:
            return await self.cancel(order_id, note, user_id)

        order = await self.get_order(order_id)
        current = OrderStatus(order.status)
        if not can_transition(current, status):
            raise InvalidStatusTransitionError(current.value, status.value)

        values = {"status": status, "updated_at": datetime.now(timezone.utc)}
        if status == OrderStatus.SHIPPED:
            values["shipped_at"] = datetime.now(timezone.utc)
        if tracking_number:
            values["tracking_number"] = tracking_number

        try:
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id)
                .where(Order.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Someone else moved it first
                raise InvalidStatusTransitionError(current.value, status.value)

            self.db.add(OrderStatusHistory(
                order_id=order_id,
                status=status,
                note=note,
                user_id=user_id,
            ))
            await self.db.commit()

        except TireLedgerError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Status update failed for order {order_id}: {e!r}")
            raise InternalError() from e

        logger.info(f"Order {order.order_number} status {current.value} -> {status.value} by user {user_id}")
        return await self.get_order(order_id)
