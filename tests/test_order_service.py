"""
Tests for order fulfillment: checkout, cancellation and status changes.
"""
import re
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from tireledger.core.exceptions import (
    CarrierError,
    ConflictError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from tireledger.models import (
    InventoryMovement,
    MovementType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from tireledger.modules.shipping.carriers import FakeCarrier
from tireledger.services.inventory_ledger import InventoryLedger
from tireledger.services.order_service import (
    Address,
    Customer,
    LineRequest,
    OrderService,
    generate_order_number,
    merge_lines,
)

CUSTOMER = Customer(user_id=7, email="dana@example.com", name="Dana Driver", phone="512-555-0100")
ADDRESS = Address(address_line1="500 Congress Ave", city="Austin", state="TX", postal_code="78701", country="US")


async def place(service, catalog, lines=None, **kwargs):
    if lines is None:
        lines = [LineRequest(catalog.all_season.id, 2), LineRequest(catalog.winter.id, 1)]
    return await service.create_order(
        kwargs.pop("customer", CUSTOMER),
        ADDRESS,
        None,
        "card",
        lines,
        **kwargs,
    )


class DrainingCarrier(FakeCarrier):
    """Sells out an inventory record from another session while rates are fetched."""

    def __init__(self, session_factory, inventory_id):
        super().__init__()
        self.session_factory = session_factory
        self.inventory_id = inventory_id

    async def get_rates(self, shipper, recipient, packages):
        async with self.session_factory() as other:
            ledger = InventoryLedger(other)
            record = await ledger.get_record(self.inventory_id)
            await ledger.adjust(self.inventory_id, -record.quantity, MovementType.SALE, "walk-in sale")
            await other.commit()
        return await super().get_rates(shipper, recipient, packages)


class SessionWatchingCarrier(FakeCarrier):
    """Records whether the checkout session had an open transaction during the rate call."""

    def __init__(self, db):
        super().__init__()
        self.db = db
        self.in_transaction = []

    async def get_rates(self, shipper, recipient, packages):
        self.in_transaction.append(self.db.in_transaction())
        return await super().get_rates(shipper, recipient, packages)


class TestCreateOrder:
    """Checkout writes the order and the stock decrement together."""

    @pytest.mark.asyncio
    async def test_totals_items_and_stock(self, db, catalog, carrier, notifier, provider):
        """Test a standard order is priced, persisted and decrements stock."""
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)

        assert re.fullmatch(r"TIRE-\d{8}-[0-9A-F]{8}", order.order_number)
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.subtotal == Decimal("250.00")
        assert order.shipping_cost == Decimal("9.99")
        assert order.tax == Decimal("20.63")
        assert order.total == Decimal("280.62")
        assert order.shipping_method_id == "standard"
        assert order.billing_city == "Austin"

        assert sorted((i.product_sku, i.quantity, i.price) for i in order.items) == [
            ("AS-205-55R16", 2, Decimal("100.00")),
            ("WN-195-65R15", 1, Decimal("50.00")),
        ]

        ledger = InventoryLedger(db)
        assert (await ledger.get_record(catalog.all_season_stock)).quantity == 8
        assert (await ledger.get_record(catalog.winter_stock)).quantity == 4

        sale = (await ledger.movements(catalog.all_season_stock))[0]
        assert sale.movement_type == MovementType.SALE
        assert sale.quantity == -2
        assert sale.order_id == order.id
        assert sale.reference_number == order.order_number
        assert await ledger.ledger_balance(catalog.all_season_stock) == 8

        history = await service.history(order.id)
        assert [(h.status, h.note) for h in history] == [(OrderStatus.PENDING, "Order created")]

        assert provider.confirmations == [order.order_number]
        assert len(carrier.calls) == 1

    @pytest.mark.asyncio
    async def test_catalog_discount_and_split_allocation(self, db, catalog, carrier, notifier):
        """Test a sale spanning two locations, skipping the inactive one."""
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog, [LineRequest(catalog.performance.id, 4)])

        assert order.subtotal == Decimal("680.00")
        assert order.catalog_discount == Decimal("120.00")
        assert order.items[0].price == Decimal("170.00")
        assert order.items[0].original_price == Decimal("200.00")

        result = await db.execute(
            select(InventoryMovement.location_id, InventoryMovement.quantity)
            .where(InventoryMovement.order_id == order.id)
            .order_by(InventoryMovement.id)
        )
        assert result.all() == [(catalog.warehouse.id, -3), (catalog.store.id, -1)]

    @pytest.mark.asyncio
    async def test_promotions_applied(self, db, catalog, promotions, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog, promotion_codes=["save10", "SAVE10"])

        assert order.promotions_discount == Decimal("25.00")
        assert order.promotion_codes == "SAVE10"

    @pytest.mark.asyncio
    async def test_free_shipping(self, db, catalog, promotions, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog, promotion_codes=["TENOFF", "SHIPFREE"])

        assert order.shipping_cost == Decimal("0.00")
        assert order.promotions_discount == Decimal("19.99")

    @pytest.mark.asyncio
    async def test_selected_shipping_option(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog, shipping_option_id="express")

        assert order.shipping_cost == Decimal("19.99")
        assert order.shipping_method_name == "Express Shipping"

    @pytest.mark.asyncio
    async def test_duplicate_lines_merged(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(
            service, catalog, [LineRequest(catalog.winter.id, 1), LineRequest(catalog.winter.id, 2)]
        )

        assert len(order.items) == 1
        assert order.items[0].quantity == 3

    @pytest.mark.asyncio
    async def test_carrier_called_outside_transaction(self, db, catalog, notifier):
        """Test no database transaction is open while rates are fetched."""
        carrier = SessionWatchingCarrier(db)
        order = await place(OrderService(db, carrier, notifier), catalog)

        assert carrier.in_transaction == [False]
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_carrier_failure_uses_fallback(self, db, catalog, notifier):
        service = OrderService(db, FakeCarrier(error=CarrierError("rates down")), notifier)
        order = await place(service, catalog)

        assert order.shipping_method_id == "standard"
        assert order.total == Decimal("280.62")

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_order(self, db, catalog, carrier, notifier, provider):
        provider.fail = True
        service = OrderService(db, carrier, notifier)

        order = await place(service, catalog)

        assert order.id is not None
        assert (await db.execute(select(func.count(Order.id)))).scalar_one() == 1

    @pytest.mark.asyncio
    async def test_no_email_skips_confirmation(self, db, catalog, carrier, notifier, provider):
        service = OrderService(db, carrier, notifier)
        await place(service, catalog, customer=Customer(user_id=7))
        assert provider.confirmations == []


class TestCreateOrderRejections:
    """Nothing is written when checkout is rejected."""

    async def assert_nothing_written(self, db, catalog):
        assert (await db.execute(select(func.count(Order.id)))).scalar_one() == 0
        assert (await db.execute(select(func.count(OrderItem.id)))).scalar_one() == 0
        ledger = InventoryLedger(db)
        assert (await ledger.get_record(catalog.all_season_stock)).quantity == 10
        assert (await ledger.get_record(catalog.winter_stock)).quantity == 5

    @pytest.mark.asyncio
    async def test_unknown_product(self, db, catalog, carrier, notifier, provider):
        service = OrderService(db, carrier, notifier)
        with pytest.raises(ProductNotFoundError):
            await place(service, catalog, [LineRequest(catalog.winter.id, 1), LineRequest(9999, 1)])

        await self.assert_nothing_written(db, catalog)
        assert provider.confirmations == []

    @pytest.mark.asyncio
    async def test_insufficient_stock(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        with pytest.raises(InsufficientStockError) as exc_info:
            await place(service, catalog, [LineRequest(catalog.winter.id, 6)])

        assert "Winter 195/65R15" in exc_info.value.message
        assert exc_info.value.available == 5
        await self.assert_nothing_written(db, catalog)

    @pytest.mark.asyncio
    async def test_inactive_location_stock_not_sellable(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        with pytest.raises(InsufficientStockError):
            await place(service, catalog, [LineRequest(catalog.performance.id, 6)])

    @pytest.mark.asyncio
    async def test_discontinued_product(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        with pytest.raises(ValidationError):
            await place(service, catalog, [LineRequest(catalog.discontinued.id, 1)])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("codes", [["NOPE"], ["EXPIRED"]])
    async def test_invalid_promotion(self, db, catalog, promotions, carrier, notifier, codes):
        service = OrderService(db, carrier, notifier)
        with pytest.raises(ValidationError):
            await place(service, catalog, promotion_codes=codes)
        await self.assert_nothing_written(db, catalog)

    @pytest.mark.asyncio
    async def test_unknown_shipping_option(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        with pytest.raises(ValidationError):
            await place(service, catalog, shipping_option_id="teleport")

    @pytest.mark.asyncio
    async def test_empty_and_non_positive_lines(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        with pytest.raises(ValidationError):
            await place(service, catalog, [])
        with pytest.raises(ValidationError):
            await place(service, catalog, [LineRequest(catalog.winter.id, 0)])

    @pytest.mark.asyncio
    async def test_stock_lost_during_checkout_rolls_back(self, db, session_factory, catalog, notifier, provider):
        """The second line's stock sells out mid-checkout; the first line's decrement is undone."""
        carrier = DrainingCarrier(session_factory, catalog.all_season_stock)
        service = OrderService(db, carrier, notifier)

        with pytest.raises(InsufficientStockError):
            await place(
                service, catalog, [LineRequest(catalog.winter.id, 1), LineRequest(catalog.all_season.id, 2)]
            )

        async with session_factory() as check:
            ledger = InventoryLedger(check)
            assert (await check.execute(select(func.count(Order.id)))).scalar_one() == 0
            assert (await check.execute(select(func.count(OrderItem.id)))).scalar_one() == 0
            assert (await ledger.get_record(catalog.winter_stock)).quantity == 5
            assert len(await ledger.movements(catalog.winter_stock)) == 1
            assert (await ledger.get_record(catalog.all_season_stock)).quantity == 0
            assert await ledger.ledger_balance(catalog.all_season_stock) == 0

        assert provider.confirmations == []


class TestCancel:
    """Cancelling returns stock exactly once."""

    @pytest.mark.asyncio
    async def test_cancel_restocks(self, db, catalog, carrier, notifier, provider):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)

        cancelled = await service.cancel(order.id, "changed my mind", user_id=7)

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.payment_status == PaymentStatus.CANCELLED
        assert cancelled.cancelled_at is not None

        ledger = InventoryLedger(db)
        assert (await ledger.get_record(catalog.all_season_stock)).quantity == 10
        assert (await ledger.get_record(catalog.winter_stock)).quantity == 5

        returned = (await ledger.movements(catalog.all_season_stock))[0]
        assert returned.movement_type == MovementType.RETURN
        assert returned.quantity == 2
        assert returned.notes == "changed my mind"
        assert await ledger.ledger_balance(catalog.all_season_stock) == 10

        history = await service.history(order.id)
        assert [h.status for h in history] == [OrderStatus.PENDING, OrderStatus.CANCELLED]
        assert provider.cancellations == [order.order_number]

    @pytest.mark.asyncio
    async def test_second_cancel_rejected(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)
        await service.cancel(order.id)

        with pytest.raises(InvalidStatusTransitionError):
            await service.cancel(order.id)

        assert (await InventoryLedger(db).get_record(catalog.all_season_stock)).quantity == 10

    @pytest.mark.asyncio
    async def test_shipped_order_not_cancellable(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)
        await service.update_status(order.id, OrderStatus.PROCESSING)
        await service.update_status(order.id, OrderStatus.SHIPPED, tracking_number="1Z999")

        with pytest.raises(InvalidStatusTransitionError):
            await service.cancel(order.id)

    @pytest.mark.asyncio
    async def test_restock_after_record_removed(self, db, catalog, carrier, notifier):
        """Stock goes to another record of the product when the original one is gone."""
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog, [LineRequest(catalog.winter.id, 2)])

        ledger = InventoryLedger(db)
        await ledger.remove(catalog.winter_stock)
        store_record = await ledger.add_product(catalog.store.id, catalog.winter.id, 0)
        await db.commit()

        await service.cancel(order.id)

        assert (await ledger.get_record(store_record.id)).quantity == 2

    @pytest.mark.asyncio
    async def test_restock_with_no_record_left(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog, [LineRequest(catalog.winter.id, 2)])
        order_id = order.id

        await InventoryLedger(db).remove(catalog.winter_stock)
        await db.commit()

        with pytest.raises(ConflictError):
            await service.cancel(order_id)

        assert (await service.get_order(order_id)).status == OrderStatus.PENDING


class TestStatusAndQueries:
    """State machine, ownership and listing."""

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)

        order = await service.update_status(order.id, OrderStatus.PROCESSING, note="picking", user_id=1)
        assert order.status == OrderStatus.PROCESSING

        order = await service.update_status(order.id, OrderStatus.SHIPPED, tracking_number="1Z999")
        assert order.tracking_number == "1Z999"
        assert order.shipped_at is not None

        order = await service.update_status(order.id, OrderStatus.COMPLETED)
        assert order.status == OrderStatus.COMPLETED

        history = await service.history(order.id)
        assert [h.status for h in history] == [
            OrderStatus.PENDING,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_invalid_transition(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)

        with pytest.raises(InvalidStatusTransitionError):
            await service.update_status(order.id, OrderStatus.SHIPPED)

    @pytest.mark.asyncio
    async def test_status_cancelled_delegates_to_cancel(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)

        order = await service.update_status(order.id, OrderStatus.CANCELLED, note="fraud check")
        assert order.status == OrderStatus.CANCELLED
        assert (await InventoryLedger(db).get_record(catalog.winter_stock)).quantity == 5

    @pytest.mark.asyncio
    async def test_other_customers_order_not_found(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        order = await place(service, catalog)

        assert (await service.get_order(order.id, user_id=7)).id == order.id
        with pytest.raises(OrderNotFoundError):
            await service.get_order(order.id, user_id=8)
        with pytest.raises(OrderNotFoundError):
            await service.history(order.id, user_id=8)

    @pytest.mark.asyncio
    async def test_list_orders_paginated(self, db, catalog, carrier, notifier):
        service = OrderService(db, carrier, notifier)
        placed = [await place(service, catalog, [LineRequest(catalog.all_season.id, 1)]) for _ in range(3)]
        await place(service, catalog, [LineRequest(catalog.winter.id, 1)], customer=Customer(user_id=9))

        orders, total = await service.list_orders(user_id=7, page=1, per_page=2)
        assert total == 3
        assert [o.id for o in orders] == [placed[2].id, placed[1].id]

        orders, total = await service.list_orders(user_id=7, page=2, per_page=2)
        assert [o.id for o in orders] == [placed[0].id]

        _, everyone = await service.list_orders()
        assert everyone == 4

        await service.cancel(placed[0].id)
        orders, total = await service.list_orders(status=OrderStatus.CANCELLED)
        assert total == 1


class TestHelpers:
    def test_merge_lines(self):
        merged = merge_lines([LineRequest(2, 1), LineRequest(1, 2), LineRequest(2, 3)])
        assert merged == {2: 4, 1: 2}
        assert list(merged) == [2, 1]

    def test_order_numbers_unique(self):
        numbers = {generate_order_number() for _ in range(100)}
        assert len(numbers) == 100
