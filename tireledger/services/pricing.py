"""
Pricing Engine

Pure function of a cart, the applied promotions, a tax rate and a shipping
option. No stock or network access, so it is safe to call from quotes,
checkout and tests alike.

Promotions stack additively with no precedence or cap:
- PERCENTAGE: value% of every eligible line
- FIXED: value once, when the whole cart subtotal meets min_purchase_amount
- FREE_SHIPPING: waives the shipping option price (reported inside
  promotions_discount, shipping becomes 0)

All money is Decimal; outputs are rounded half-up to cents.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import FrozenSet, Iterable, Optional, Sequence, Tuple, Union

from tireledger.models.promotion import Promotion, PromotionType
from tireledger.modules.shipping.carriers.base import ShippingOption

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def to_cents(amount) -> Decimal:
    """Round a money amount half-up to cents."""
    return Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)


def catalog_price(retail_price, discount_percent) -> Decimal:
    """Unit price after the product's own catalog discount."""
    retail = Decimal(str(retail_price))
    discount = Decimal(str(discount_percent or 0))
    return to_cents(retail * (Decimal("1") - discount / Decimal("100")))


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    price: Decimal  # unit sale price
    original_price: Optional[Decimal] = None  # list price before catalog discount
    brand_id: Optional[int] = None
    category_id: Optional[int] = None
    model_id: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


# =============================================================================
# Promotion scope
# =============================================================================

@dataclass(frozen=True)
class Unscoped:
    """Applies to every line."""

    def matches(self, line: CartLine) -> bool:
        return True


@dataclass(frozen=True)
class Scoped:
    """Applies to a line that matches any of the listed ids."""
    product_ids: FrozenSet[int] = frozenset()
    brand_ids: FrozenSet[int] = frozenset()
    category_ids: FrozenSet[int] = frozenset()
    model_ids: FrozenSet[int] = frozenset()

    def matches(self, line: CartLine) -> bool:
        return (
            line.product_id in self.product_ids
            or (line.brand_id is not None and line.brand_id in self.brand_ids)
            or (line.category_id is not None and line.category_id in self.category_ids)
            or (line.model_id is not None and line.model_id in self.model_ids)
        )


PromotionScope = Union[Unscoped, Scoped]


def scope_from_ids(
    product_ids: Optional[Iterable[int]] = None,
    brand_ids: Optional[Iterable[int]] = None,
    category_ids: Optional[Iterable[int]] = None,
    model_ids: Optional[Iterable[int]] = None,
) -> PromotionScope:
    """Empty or missing id lists everywhere means Unscoped."""
    scoped = Scoped(
        product_ids=frozenset(int(i) for i in product_ids or ()),
        brand_ids=frozenset(int(i) for i in brand_ids or ()),
        category_ids=frozenset(int(i) for i in category_ids or ()),
        model_ids=frozenset(int(i) for i in model_ids or ()),
    )
    if not (scoped.product_ids or scoped.brand_ids or scoped.category_ids or scoped.model_ids):
        return Unscoped()
    return scoped


@dataclass(frozen=True)
class PromotionRule:
    code: str
    type: PromotionType
    value: Decimal = ZERO
    scope: PromotionScope = field(default_factory=Unscoped)
    min_purchase_amount: Optional[Decimal] = None


def promotion_rule_from_model(promotion: Promotion) -> PromotionRule:
    return PromotionRule(
        code=promotion.code,
        type=PromotionType(promotion.type),
        value=Decimal(str(promotion.value or 0)),
        scope=scope_from_ids(
            promotion.product_ids,
            promotion.brand_ids,
            promotion.category_ids,
            promotion.model_ids,
        ),
        min_purchase_amount=(
            Decimal(str(promotion.min_purchase_amount))
            if promotion.min_purchase_amount is not None else None
        ),
    )


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    catalog_discount: Decimal
    promotions_discount: Decimal  # includes shipping_discount
    shipping_discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    has_free_shipping: bool = False
    applied_codes: Tuple[str, ...] = ()


def promotion_discount(rule: PromotionRule, cart: Sequence[CartLine], subtotal: Decimal) -> Decimal:
    """Monetary discount of one promotion, before shipping is considered."""
    if rule.type == PromotionType.PERCENTAGE:
        eligible = sum(
            (line.line_total for line in cart if rule.scope.matches(line)),
            ZERO,
        )
        return eligible * rule.value / Decimal("100")

    if rule.type == PromotionType.FIXED:
        minimum = rule.min_purchase_amount or ZERO
        # Applied once against the whole cart, not prorated by eligibility
        if subtotal >= minimum:
            return rule.value
        return ZERO

    return ZERO


def price(
    cart: Sequence[CartLine],
    promotions: Sequence[PromotionRule],
    tax_rate,
    shipping_option: Optional[ShippingOption] = None,
) -> PriceBreakdown:
    """
    Price a cart.

    Args:
        cart: Lines with their unit sale price snapshot
        promotions: Promotions to apply, all of them stack
        tax_rate: e.g. 0.0825
        shipping_option: Selected option, None for no shipping charge

    Returns:
        PriceBreakdown with every money field rounded to cents
    """
    rate = Decimal(str(tax_rate))
    subtotal = sum((line.line_total for line in cart), ZERO)

    catalog_discount = ZERO
    for line in cart:
        if line.original_price is not None and line.original_price > line.price:
            catalog_discount += (line.original_price - line.price) * line.quantity

    discount = ZERO
    has_free_shipping = False
    for rule in promotions:
        if rule.type == PromotionType.FREE_SHIPPING:
            has_free_shipping = True
        discount += promotion_discount(rule, cart, subtotal)

    shipping_price = to_cents(shipping_option.price) if shipping_option else ZERO
    if has_free_shipping:
        shipping_discount = shipping_price
        shipping = ZERO
    else:
        shipping_discount = ZERO
        shipping = shipping_price

    subtotal = to_cents(subtotal)
    promotions_discount = to_cents(discount + shipping_discount)
    tax = to_cents(max(ZERO, subtotal - promotions_discount) * rate)
    total = subtotal - promotions_discount + tax + shipping

    return PriceBreakdown(
        subtotal=subtotal,
        catalog_discount=to_cents(catalog_discount),
        promotions_discount=promotions_discount,
        shipping_discount=shipping_discount,
        tax=tax,
        shipping=shipping,
        total=to_cents(total),
        has_free_shipping=has_free_shipping,
        applied_codes=tuple(rule.code for rule in promotions),
    )
