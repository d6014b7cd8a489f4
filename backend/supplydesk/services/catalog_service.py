# Overview: Versioned catalog writes for products and categories.

from __future__ import annotations

from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Category, Product
from ..validation import (
    BusinessRuleError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)
from . import versioning_service
from .activity_service import append_activity
from .concurrency import lock_for_update, run_in_transaction
from .stock_service import adjust_stock

# stock is deliberately absent: it only moves through stock_service
PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name",
        "description",
        "unit",
        "category_id",
        "base_price_cents",
        "wholesale_price_cents",
        "promotion_active",
        "promotion_price_cents",
        "promotion_starts_at",
        "promotion_ends_at",
        "is_active",
    }),
)


def _lock_category(category_id: int) -> Optional[Category]:
    query = db.session.query(Category).filter(Category.id == category_id).populate_existing()
    return lock_for_update(query).first()


def _guard_category(product_id: int, category_id: Optional[int], *, moving: bool, active: bool) -> None:
    """
    An active product may only live in a live category.

    Takes the same category row lock as soft_delete_category(), so a category
    delete and a product attach or reactivation cannot interleave.
    """
    if category_id is None:
        return
    category = _lock_category(category_id)
    if category is None or (moving and category.deleted_at is not None):
        raise NotFoundError(
            f"Category {category_id} not found",
            details={"entity": "Category", "id": category_id},
        )
    if active and category.deleted_at is not None:
        raise BusinessRuleError(
            f"Category {category.name} is deleted; restore it before activating product {product_id}",
            details={"category_id": category_id, "product_id": product_id},
        )


def update_product(
    *, product_id: int, expected_version: int, payload: dict, actor_user_id: int
) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY)
    enforce_rules_product(patch)
    if not patch:
        raise ValidationError("No fields to update")

    def _op() -> Product:
        if "category_id" in patch or patch.get("is_active") is True:
            product = versioning_service.get_active(Product, product_id)
            _guard_category(
                product_id,
                patch.get("category_id", product.category_id),
                moving="category_id" in patch,
                active=patch.get("is_active", product.is_active),
            )
        versioning_service.update_with_version(Product, product_id, expected_version, patch)
        append_activity(
            user_id=actor_user_id,
            action="product_updated",
            description=f"Product {product_id} updated ({', '.join(sorted(patch))})",
            entity_type="product",
            entity_id=product_id,
            metadata={"fields": sorted(patch), "from_version": expected_version},
        )
        return db.session.get(Product, product_id, populate_existing=True)

    product = run_in_transaction(_op)
    current_app.logger.info("Product %s updated to version %s", product_id, product.version)
    return product


def delete_product(
    *, product_id: int, actor_user_id: int, expected_version: Optional[int] = None
) -> Product:
    def _op() -> Product:
        versioning_service.soft_delete(Product, product_id, expected_version)
        append_activity(
            user_id=actor_user_id,
            action="product_deleted",
            description=f"Product {product_id} deleted",
            entity_type="product",
            entity_id=product_id,
        )
        return db.session.get(Product, product_id, populate_existing=True)

    return run_in_transaction(_op)


def restore_product(*, product_id: int, actor_user_id: int) -> Product:
    def _op() -> Product:
        product = db.session.get(Product, product_id, populate_existing=True)
        if product is not None and product.deleted_at is not None:
            _guard_category(product_id, product.category_id, moving=False, active=product.is_active)
        versioning_service.restore(Product, product_id)
        append_activity(
            user_id=actor_user_id,
            action="product_restored",
            description=f"Product {product_id} restored",
            entity_type="product",
            entity_id=product_id,
        )
        return db.session.get(Product, product_id, populate_existing=True)

    return run_in_transaction(_op)


def adjust_product_stock(*, product_id: int, delta: int, actor_user_id: int, reason: str) -> Product:
    return adjust_stock(product_id=product_id, delta=delta, actor_user_id=actor_user_id, reason=reason)


def delete_category(
    *, category_id: int, actor_user_id: int, expected_version: Optional[int] = None
) -> Category:
    return versioning_service.soft_delete_category(
        category_id, expected_version, actor_user_id=actor_user_id
    )


def restore_category(*, category_id: int, actor_user_id: int) -> Category:
    def _op() -> Category:
        versioning_service.restore(Category, category_id)
        append_activity(
            user_id=actor_user_id,
            action="category_restored",
            description=f"Category {category_id} restored",
            entity_type="category",
            entity_id=category_id,
        )
        return db.session.get(Category, category_id, populate_existing=True)

    return run_in_transaction(_op)
