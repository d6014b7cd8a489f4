# Overview: Pure pricing and totals calculation for order lines.

"""
Pricing rules

- Money is integer minor units end to end. The only fractional step is the
  percent discount, rounded half-up to the minor unit.
- Unit price precedence: in-window promotion > wholesale (BUSINESS only) > base.
- Nothing here touches the database; callers pass product snapshots and "now".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from flask import current_app

from ..models import ShippingMethod, UserType
from ..validation import ValidationError
from supplydesk.time_utils import as_utc_naive

PRICE_SOURCE_PROMOTION = "PROMOTION"
PRICE_SOURCE_WHOLESALE = "WHOLESALE"
PRICE_SOURCE_BASE = "BASE"

_HUNDRED = Decimal(100)
_ONE_CENT = Decimal(1)


@dataclass(frozen=True)
class ShippingRules:
    free_threshold_cents: int
    standard_cents: int
    courier_cents: int

    @classmethod
    def from_config(cls, config: Mapping) -> "ShippingRules":
        return cls(
            free_threshold_cents=int(config["SHIPPING_FREE_THRESHOLD_CENTS"]),
            standard_cents=int(config["SHIPPING_STANDARD_CENTS"]),
            courier_cents=int(config["SHIPPING_COURIER_CENTS"]),
        )


def shipping_rules() -> ShippingRules:
    return ShippingRules.from_config(current_app.config)


@dataclass(frozen=True)
class ProductSnapshot:
    """The catalog fields pricing needs, copied off a Product row."""
    id: int
    sku: str
    name: str
    unit: str
    base_price_cents: int
    wholesale_price_cents: Optional[int] = None
    promotion_active: bool = False
    promotion_price_cents: Optional[int] = None
    promotion_starts_at: Optional[datetime] = None
    promotion_ends_at: Optional[datetime] = None

    @classmethod
    def from_product(cls, product) -> "ProductSnapshot":
        return cls(
            id=product.id,
            sku=product.sku,
            name=product.name,
            unit=product.unit,
            base_price_cents=product.base_price_cents,
            wholesale_price_cents=product.wholesale_price_cents,
            promotion_active=bool(product.promotion_active),
            promotion_price_cents=product.promotion_price_cents,
            promotion_starts_at=as_utc_naive(product.promotion_starts_at),
            promotion_ends_at=as_utc_naive(product.promotion_ends_at),
        )


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_sku: str
    product_name: str
    product_unit: str
    quantity: int
    unit_price_cents: int
    price_source: str
    discount_percent: Decimal
    discount_cents: int
    subtotal_cents: int


@dataclass(frozen=True)
class OrderTotals:
    lines: tuple[PricedLine, ...]
    subtotal_cents: int
    discount_cents: int
    shipping_cost_cents: int
    total_cents: int


def promotion_in_window(product: ProductSnapshot, now: datetime) -> bool:
    """An open-ended window side (None) does not constrain."""
    if not product.promotion_active or product.promotion_price_cents is None:
        return False
    now = as_utc_naive(now)
    if product.promotion_starts_at is not None and now < product.promotion_starts_at:
        return False
    if product.promotion_ends_at is not None and now > product.promotion_ends_at:
        return False
    return True


def resolve_unit_price(product: ProductSnapshot, user_type: str, now: datetime) -> tuple[int, str]:
    if promotion_in_window(product, now):
        return product.promotion_price_cents, PRICE_SOURCE_PROMOTION
    if user_type == UserType.BUSINESS.value and product.wholesale_price_cents is not None:
        return product.wholesale_price_cents, PRICE_SOURCE_WHOLESALE
    return product.base_price_cents, PRICE_SOURCE_BASE


def line_discount_cents(gross_cents: int, discount_percent: Decimal) -> int:
    if not discount_percent:
        return 0
    raw = Decimal(gross_cents) * Decimal(discount_percent) / _HUNDRED
    return int(raw.quantize(_ONE_CENT, rounding=ROUND_HALF_UP))


def price_line(
    *,
    product: ProductSnapshot,
    quantity: int,
    discount_percent: Decimal,
    user_type: str,
    now: datetime,
) -> PricedLine:
    if quantity <= 0:
        raise ValidationError(f"Quantity for product {product.id} must be positive")
    if discount_percent < 0 or discount_percent > _HUNDRED:
        raise ValidationError(f"Discount for product {product.id} must be between 0 and 100")

    unit_price, source = resolve_unit_price(product, user_type, now)
    gross = quantity * unit_price
    discount = line_discount_cents(gross, discount_percent)
    return PricedLine(
        product_id=product.id,
        product_sku=product.sku,
        product_name=product.name,
        product_unit=product.unit,
        quantity=quantity,
        unit_price_cents=unit_price,
        price_source=source,
        discount_percent=Decimal(discount_percent),
        discount_cents=discount,
        subtotal_cents=gross - discount,
    )


def calculate_shipping_cost(method: str, subtotal_cents: int, rules: ShippingRules) -> int:
    try:
        method = ShippingMethod(method)
    except ValueError:
        raise ValidationError(f"Unknown shipping method: {method}")

    if method == ShippingMethod.PICKUP:
        return 0
    if method == ShippingMethod.COURIER:
        return rules.courier_cents
    if method == ShippingMethod.FREE_SHIPPING:
        return 0 if subtotal_cents >= rules.free_threshold_cents else rules.standard_cents
    # SCHEDULED_ROUTE, SPECIAL_DELIVERY
    return rules.standard_cents


def calculate_order_totals(
    *,
    lines: Iterable,
    products: Mapping[int, ProductSnapshot],
    user_type: str,
    shipping_method: str,
    rules: ShippingRules,
    now: datetime,
) -> OrderTotals:
    """
    Price every line and roll up the order totals.

    lines: objects with product_id, quantity and discount_percent (see
    commands.OrderLine). Every product_id must be present in products.
    """
    priced = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise ValidationError(f"No price data for product {line.product_id}")
        priced.append(
            price_line(
                product=product,
                quantity=line.quantity,
                discount_percent=line.discount_percent,
                user_type=user_type,
                now=now,
            )
        )

    subtotal = sum(p.subtotal_cents for p in priced)
    discount = sum(p.discount_cents for p in priced)
    shipping = calculate_shipping_cost(shipping_method, subtotal, rules)
    return OrderTotals(
        lines=tuple(priced),
        subtotal_cents=subtotal,
        discount_cents=discount,
        shipping_cost_cents=shipping,
        total_cents=subtotal + shipping,
    )
