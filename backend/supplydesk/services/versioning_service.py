# Overview: Optimistic-lock writes and the soft-delete guard for versioned entities.

"""
Versioning rules

- Every write to a versioned row is a single UPDATE ... WHERE id = ? AND
  version = ?, bumping version by one. Zero rows means someone else got
  there first (ConflictError) or the row is gone (NotFoundError).
- Soft-deleted rows are invisible to every read and write path except
  restore().
- These helpers run inside the caller's transaction and never commit,
  except soft_delete_category(), which is its own unit of work.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func, update

from ..extensions import db
from ..models import Category, Product
from ..validation import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from .activity_service import append_activity
from .concurrency import lock_for_update, run_in_transaction
from supplydesk.time_utils import utcnow


def _label(model) -> str:
    return model.__name__


def active_query(model):
    return db.session.query(model).filter(model.deleted_at.is_(None))


def get_active(model, entity_id: int):
    entity = active_query(model).filter(model.id == entity_id).first()
    if entity is None:
        raise NotFoundError(
            f"{_label(model)} {entity_id} not found",
            details={"entity": _label(model), "id": entity_id},
        )
    return entity


def _raise_for_missed_write(model, entity_id: int, expected_version: Optional[int]) -> None:
    row = (
        db.session.query(model.version, model.deleted_at)
        .filter(model.id == entity_id)
        .first()
    )
    if row is None or row.deleted_at is not None:
        raise NotFoundError(
            f"{_label(model)} {entity_id} not found",
            details={"entity": _label(model), "id": entity_id},
        )
    raise ConflictError(
        f"{_label(model)} {entity_id} was modified by someone else "
        f"(current version {row.version}, yours {expected_version}). Reload and retry.",
        details={
            "entity": _label(model),
            "id": entity_id,
            "current_version": row.version,
            "expected_version": expected_version,
        },
    )


def update_with_version(model, entity_id: int, expected_version: int, patch: dict) -> None:
    if not patch:
        raise ValidationError("No fields to update")
    forbidden = {"id", "version", "deleted_at"} & set(patch)
    if forbidden:
        raise ValidationError(f"Field not allowed: {sorted(forbidden)[0]}")

    values = dict(patch)
    values["version"] = model.version + 1
    stmt = (
        update(model)
        .where(
            model.id == entity_id,
            model.version == expected_version,
            model.deleted_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        _raise_for_missed_write(model, entity_id, expected_version)


def soft_delete(model, entity_id: int, expected_version: Optional[int] = None) -> None:
    conditions = [model.id == entity_id, model.deleted_at.is_(None)]
    if expected_version is not None:
        conditions.append(model.version == expected_version)

    stmt = (
        update(model)
        .where(*conditions)
        .values(deleted_at=utcnow(), version=model.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        _raise_for_missed_write(model, entity_id, expected_version)


def restore(model, entity_id: int) -> None:
    stmt = (
        update(model)
        .where(model.id == entity_id, model.deleted_at.is_not(None))
        .values(deleted_at=None, version=model.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 1:
        return

    exists = db.session.query(model.id).filter(model.id == entity_id).first()
    if exists is None:
        raise NotFoundError(
            f"{_label(model)} {entity_id} not found",
            details={"entity": _label(model), "id": entity_id},
        )
    raise ConflictError(
        f"{_label(model)} {entity_id} is not deleted",
        details={"entity": _label(model), "id": entity_id},
    )


def count_live_products(category_id: int) -> int:
    return (
        db.session.query(func.count(Product.id))
        .filter(
            Product.category_id == category_id,
            Product.is_active.is_(True),
            Product.deleted_at.is_(None),
        )
        .scalar()
    )


def soft_delete_category(
    category_id: int,
    expected_version: Optional[int] = None,
    *,
    actor_user_id: Optional[int] = None,
) -> Category:
    """
    Soft-delete a category unless active products still reference it.

    The check and the write share one write-locked transaction, so a product
    attached concurrently cannot slip in between them.
    """
    def _op() -> Category:
        category = lock_for_update(active_query(Category).filter(Category.id == category_id)).first()
        if category is None:
            raise NotFoundError(
                f"Category {category_id} not found",
                details={"entity": "Category", "id": category_id},
            )

        live = count_live_products(category_id)
        if live:
            raise BusinessRuleError(
                f"Category {category.name} still has {live} active product(s)",
                details={"category_id": category_id, "active_products": live},
            )

        soft_delete(Category, category_id, expected_version)
        append_activity(
            user_id=actor_user_id,
            action="category_deleted",
            description=f"Category {category.name} deleted",
            entity_type="category",
            entity_id=category_id,
        )
        return category

    category = run_in_transaction(_op)
    db.session.refresh(category)
    return category
