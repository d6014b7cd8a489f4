# Overview: Stock validation, reservation and release through conditional updates.

"""
Stock invariants

- products.stock never goes below zero: every decrement is a single
  UPDATE ... WHERE stock >= qty, checked by rowcount. No read-compute-write.
- validate_stock() is a fast, friendly pre-check only. reserve() is the
  guarantee and must run inside the caller's transaction.
- Stock arithmetic does not bump Product.version; version guards the
  client-editable fields, and stock is never part of a client patch.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..validation import BusinessRuleError, NotFoundError, ValidationError
from .activity_service import append_activity
from .concurrency import run_in_transaction


def aggregate_quantities(lines: Iterable) -> "OrderedDict[int, int]":
    """Sum requested quantities per product, keeping first-seen order."""
    totals: OrderedDict[int, int] = OrderedDict()
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError(
                f"Quantity for product {line.product_id} must be positive",
                details={"product_id": line.product_id, "quantity": line.quantity},
            )
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def validate_stock(lines: Iterable) -> dict[int, Product]:
    """
    Check that every referenced product exists, is active and has enough
    stock for the aggregated quantity. Returns the loaded products by id.
    """
    requested = aggregate_quantities(lines)
    if not requested:
        raise ValidationError("Order must contain at least one item")

    rows = (
        db.session.query(Product)
        .filter(Product.id.in_(list(requested)), Product.deleted_at.is_(None))
        .all()
    )
    products = {p.id: p for p in rows}

    for product_id in requested:
        product = products.get(product_id)
        if product is None:
            raise BusinessRuleError(
                f"Product {product_id} is not available",
                details={"product_id": product_id},
            )
        if not product.is_active:
            raise BusinessRuleError(
                f"Product {product.name} ({product.sku}) is not active",
                details={"product_id": product.id, "sku": product.sku},
            )

    for product_id, quantity in requested.items():
        product = products[product_id]
        if product.stock < quantity:
            raise BusinessRuleError(
                f"Insufficient stock for {product.name} ({product.sku}): "
                f"requested {quantity}, available {product.stock}",
                details={
                    "product_id": product.id,
                    "sku": product.sku,
                    "name": product.name,
                    "requested": quantity,
                    "available": product.stock,
                },
            )

    return products


def reserve(product_id: int, quantity: int) -> None:
    """
    Atomically take quantity units of stock.

    Must run inside the caller's transaction; the raised error rolls the
    whole command back.
    """
    if quantity <= 0:
        raise ValidationError(f"Quantity for product {product_id} must be positive")

    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.stock >= quantity,
            Product.is_active.is_(True),
            Product.deleted_at.is_(None),
        )
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 1:
        return

    row = (
        db.session.query(Product.sku, Product.name, Product.stock)
        .filter(Product.id == product_id)
        .first()
    )
    if row is None:
        raise BusinessRuleError(
            f"Product {product_id} is not available",
            details={"product_id": product_id},
        )
    raise BusinessRuleError(
        f"Insufficient stock for {row.name} ({row.sku}): requested {quantity}, available {row.stock}",
        details={
            "product_id": product_id,
            "sku": row.sku,
            "name": row.name,
            "requested": quantity,
            "available": row.stock,
        },
    )


def reserve_all(quantities: dict[int, int]) -> None:
    for product_id, quantity in quantities.items():
        reserve(product_id, quantity)


def release(product_id: int, quantity: int) -> bool:
    """
    Give quantity units back. Targets the row by id only, so a soft-deleted
    product still gets its units back. Returns False if the row is gone.
    """
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 1:
        return True

    current_app.logger.warning(
        "Stock release skipped: product %s no longer exists (qty=%s)", product_id, quantity
    )
    return False


def adjust_stock(*, product_id: int, delta: int, actor_user_id: int, reason: str) -> Product:
    """
    Admin restock (delta > 0) or shrink (delta < 0) as one transaction.

    Shrinks use the same conditional arithmetic as reserve(), so a concurrent
    order can never push stock negative.
    """
    if delta == 0:
        raise ValidationError("delta must not be zero")
    if not reason or not reason.strip():
        raise ValidationError("reason is required for stock adjustments")

    def _op() -> Product:
        stmt = update(Product).where(Product.id == product_id, Product.deleted_at.is_(None))
        if delta < 0:
            stmt = stmt.where(Product.stock >= -delta)
        stmt = stmt.values(stock=Product.stock + delta).execution_options(synchronize_session=False)

        result = db.session.execute(stmt)
        if result.rowcount != 1:
            product = db.session.get(Product, product_id)
            if product is None or product.deleted_at is not None:
                raise NotFoundError(f"Product {product_id} not found")
            raise BusinessRuleError(
                f"Cannot remove {-delta} units of {product.sku}: only {product.stock} in stock",
                details={"product_id": product_id, "requested": -delta, "available": product.stock},
            )

        product = db.session.get(Product, product_id, populate_existing=True)
        append_activity(
            user_id=actor_user_id,
            action="stock_adjusted",
            description=f"Stock of {product.sku} adjusted by {delta:+d}: {reason.strip()}",
            entity_type="product",
            entity_id=product_id,
            metadata={"delta": delta, "stock_after": product.stock, "reason": reason.strip()},
        )
        return product

    product = run_in_transaction(_op)
    current_app.logger.info("Stock of product %s adjusted by %+d to %s", product_id, delta, product.stock)
    return product
