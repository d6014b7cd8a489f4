# Overview: Typed command objects for order operations, parsed from JSON payloads.

"""
Commands are the only way order mutations enter the engine.

Each from_payload() rejects unknown or malformed input with ValidationError
before any database work starts. Limits (max items, quantity, note length)
come from the app config.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from flask import current_app

from ..models import OrderStatus, OrderType, ShippingMethod, UserRole, UserType
from ..validation import ValidationError, coerce_datetime, coerce_int

STAFF_ROLES = frozenset({UserRole.ADMIN.value, UserRole.STAFF.value})

MAX_REASON_LENGTH = 500
MIN_REASON_LENGTH = 5


def _limits(config: Optional[Mapping]) -> Mapping:
    return config if config is not None else current_app.config


def _require_mapping(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _reject_unknown(payload: dict, allowed: frozenset[str]) -> None:
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")


def _optional_text(payload: dict, key: str, max_length: int) -> Optional[str]:
    raw = payload.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{key} must be a string")
    value = raw.strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value or None


def _optional_datetime(payload: dict, key: str) -> Optional[datetime]:
    raw = payload.get(key)
    if raw is None or raw == "":
        return None
    return coerce_datetime(key, raw)


def _optional_int(payload: dict, key: str) -> Optional[int]:
    raw = payload.get(key)
    if raw is None:
        return None
    return coerce_int(key, raw)


def _expected_version(payload: dict) -> Optional[int]:
    version = _optional_int(payload, "expected_version")
    if version is not None and version < 1:
        raise ValidationError("expected_version must be >= 1")
    return version


def _reason(payload: dict, *, required: bool) -> Optional[str]:
    reason = _optional_text(payload, "reason", MAX_REASON_LENGTH)
    if reason is None:
        if required:
            raise ValidationError("reason is required")
        return None
    if len(reason) < MIN_REASON_LENGTH:
        raise ValidationError(f"reason must be at least {MIN_REASON_LENGTH} characters")
    return reason


def parse_discount_percent(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, bool):
        raise ValidationError("discount_percent must be a number")
    try:
        pct = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("discount_percent must be a number")
    if not pct.is_finite():
        raise ValidationError("discount_percent must be a number")
    if pct < 0 or pct > 100:
        raise ValidationError("discount_percent must be between 0 and 100")
    if pct.as_tuple().exponent < -2:
        raise ValidationError("discount_percent allows at most two decimal places")
    return pct


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the identity collaborator."""
    user_id: int
    user_type: str
    role: str
    validated: bool

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def build(cls, *, user_id: Any, user_type: Any, role: Any, validated: Any) -> "Actor":
        uid = coerce_int("user_id", user_id)
        if uid < 1:
            raise ValidationError("user_id must be >= 1")
        utype = str(user_type or "").upper()
        if utype not in {t.value for t in UserType}:
            raise ValidationError(f"Unknown user type: {user_type}")
        urole = str(role or "").upper()
        if urole not in {r.value for r in UserRole}:
            raise ValidationError(f"Unknown role: {role}")
        if isinstance(validated, str):
            validated = validated.strip().lower() in {"1", "true", "yes"}
        return cls(user_id=uid, user_type=utype, role=urole, validated=bool(validated))

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            user_id=user.id,
            user_type=user.user_type,
            role=user.role,
            validated=bool(user.validated),
        )


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    discount_percent: Decimal = Decimal("0")

    @classmethod
    def from_payload(cls, payload: Any, *, max_quantity: int) -> "OrderLine":
        if not isinstance(payload, dict):
            raise ValidationError("Each item must be an object")
        _reject_unknown(payload, frozenset({"product_id", "quantity", "discount_percent"}))
        if "product_id" not in payload or "quantity" not in payload:
            raise ValidationError("Each item needs product_id and quantity")

        product_id = coerce_int("product_id", payload["product_id"])
        quantity = coerce_int("quantity", payload["quantity"])
        if quantity <= 0:
            raise ValidationError(
                f"Quantity for product {product_id} must be positive",
                details={"product_id": product_id, "quantity": quantity},
            )
        if quantity > max_quantity:
            raise ValidationError(f"Quantity for product {product_id} cannot exceed {max_quantity}")
        return cls(
            product_id=product_id,
            quantity=quantity,
            discount_percent=parse_discount_percent(payload.get("discount_percent")),
        )


@dataclass(frozen=True)
class ShippingInfo:
    method: str
    address: str
    billing_address: Optional[str] = None
    city: Optional[str] = None
    zone: Optional[str] = None


@dataclass(frozen=True)
class CreateOrderCommand:
    lines: tuple[OrderLine, ...]
    shipping: ShippingInfo
    order_type: str = OrderType.PURCHASE.value
    customer_notes: Optional[str] = None
    estimated_date: Optional[datetime] = None

    FIELDS = frozenset({
        "order_type",
        "items",
        "shipping_method",
        "shipping_address",
        "billing_address",
        "shipping_city",
        "shipping_zone",
        "customer_notes",
        "estimated_date",
    })

    @property
    def is_quote(self) -> bool:
        return self.order_type == OrderType.QUOTE.value

    @classmethod
    def from_payload(cls, payload: Any, *, config: Optional[Mapping] = None) -> "CreateOrderCommand":
        payload = _require_mapping(payload)
        limits = _limits(config)
        _reject_unknown(payload, cls.FIELDS)

        order_type = str(payload.get("order_type") or OrderType.PURCHASE.value).upper()
        if order_type not in {t.value for t in OrderType}:
            raise ValidationError(f"Unknown order type: {payload.get('order_type')}")

        items = payload.get("items")
        if not isinstance(items, list) or not items:
            raise ValidationError("Order must contain at least one item")
        max_items = limits["ORDER_MAX_ITEMS"]
        if len(items) > max_items:
            raise ValidationError(f"Order cannot contain more than {max_items} items")
        lines = tuple(
            OrderLine.from_payload(item, max_quantity=limits["ORDER_MAX_QUANTITY"])
            for item in items
        )

        method = str(payload.get("shipping_method") or "").upper()
        if method not in {m.value for m in ShippingMethod}:
            raise ValidationError(f"Unknown shipping method: {payload.get('shipping_method')}")

        address = _optional_text(payload, "shipping_address", 500)
        min_address = limits["ORDER_MIN_ADDRESS_LENGTH"]
        if address is None or len(address) < min_address:
            raise ValidationError(f"shipping_address must be at least {min_address} characters")

        shipping = ShippingInfo(
            method=method,
            address=address,
            billing_address=_optional_text(payload, "billing_address", 500),
            city=_optional_text(payload, "shipping_city", 128),
            zone=_optional_text(payload, "shipping_zone", 128),
        )
        return cls(
            lines=lines,
            shipping=shipping,
            order_type=order_type,
            customer_notes=_optional_text(payload, "customer_notes", limits["ORDER_MAX_NOTES_LENGTH"]),
            estimated_date=_optional_datetime(payload, "estimated_date"),
        )


@dataclass(frozen=True)
class TransitionStatusCommand:
    order_id: int
    new_status: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_date: Optional[datetime] = None
    assigned_to_user_id: Optional[int] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_received_by: Optional[str] = None
    expected_version: Optional[int] = None

    FIELDS = frozenset({
        "status",
        "reason",
        "notes",
        "tracking_number",
        "tracking_url",
        "estimated_date",
        "assigned_to_user_id",
        "shipped_at",
        "delivered_at",
        "delivery_received_by",
        "expected_version",
    })

    @classmethod
    def from_payload(
        cls, order_id: int, payload: Any, *, config: Optional[Mapping] = None
    ) -> "TransitionStatusCommand":
        payload = _require_mapping(payload)
        limits = _limits(config)
        _reject_unknown(payload, cls.FIELDS)

        raw_status = str(payload.get("status") or "").upper()
        if raw_status not in {s.value for s in OrderStatus}:
            raise ValidationError(f"Unknown order status: {payload.get('status')}")

        return cls(
            order_id=order_id,
            new_status=raw_status,
            reason=_reason(payload, required=False),
            notes=_optional_text(payload, "notes", limits["ORDER_MAX_NOTES_LENGTH"]),
            tracking_number=_optional_text(payload, "tracking_number", 128),
            tracking_url=_optional_text(payload, "tracking_url", 500),
            estimated_date=_optional_datetime(payload, "estimated_date"),
            assigned_to_user_id=_optional_int(payload, "assigned_to_user_id"),
            shipped_at=_optional_datetime(payload, "shipped_at"),
            delivered_at=_optional_datetime(payload, "delivered_at"),
            delivery_received_by=_optional_text(payload, "delivery_received_by", 255),
            expected_version=_expected_version(payload),
        )


@dataclass(frozen=True)
class CancelOrderCommand:
    order_id: int
    reason: str
    expected_version: Optional[int] = None

    FIELDS = frozenset({"reason", "expected_version"})

    @classmethod
    def from_payload(cls, order_id: int, payload: Any) -> "CancelOrderCommand":
        payload = _require_mapping(payload)
        _reject_unknown(payload, cls.FIELDS)
        return cls(
            order_id=order_id,
            reason=_reason(payload, required=True),
            expected_version=_expected_version(payload),
        )
