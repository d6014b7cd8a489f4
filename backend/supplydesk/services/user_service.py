# Overview: Versioned writes for user accounts.

from __future__ import annotations

from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import User, UserRole, UserType
from ..validation import ModelValidationPolicy, ValidationError, validate_payload
from . import versioning_service
from .activity_service import append_activity
from .concurrency import run_in_transaction

USER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name",
        "company",
        "phone",
        "user_type",
        "role",
        "validated",
        "shipping_address",
        "billing_address",
    }),
)


def _normalize_user_patch(patch: dict) -> dict:
    if "user_type" in patch:
        value = str(patch["user_type"] or "").upper()
        if value not in {t.value for t in UserType}:
            raise ValidationError(f"Unknown user type: {patch['user_type']}")
        patch["user_type"] = value
    if "role" in patch:
        value = str(patch["role"] or "").upper()
        if value not in {r.value for r in UserRole}:
            raise ValidationError(f"Unknown role: {patch['role']}")
        patch["role"] = value
    return patch


def update_user(*, user_id: int, expected_version: int, payload: dict, actor_user_id: int) -> User:
    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY)
    patch = _normalize_user_patch(patch)
    if not patch:
        raise ValidationError("No fields to update")

    def _op() -> User:
        versioning_service.update_with_version(User, user_id, expected_version, patch)
        append_activity(
            user_id=actor_user_id,
            action="user_updated",
            description=f"User {user_id} updated ({', '.join(sorted(patch))})",
            entity_type="user",
            entity_id=user_id,
            metadata={"fields": sorted(patch), "from_version": expected_version},
        )
        return db.session.get(User, user_id, populate_existing=True)

    user = run_in_transaction(_op)
    current_app.logger.info("User %s updated to version %s", user_id, user.version)
    return user


def delete_user(*, user_id: int, actor_user_id: int, expected_version: Optional[int] = None) -> User:
    if user_id == actor_user_id:
        raise ValidationError("You cannot delete your own account")

    def _op() -> User:
        versioning_service.soft_delete(User, user_id, expected_version)
        append_activity(
            user_id=actor_user_id,
            action="user_deleted",
            description=f"User {user_id} deleted",
            entity_type="user",
            entity_id=user_id,
        )
        return db.session.get(User, user_id, populate_existing=True)

    return run_in_transaction(_op)


def restore_user(*, user_id: int, actor_user_id: int) -> User:
    def _op() -> User:
        versioning_service.restore(User, user_id)
        append_activity(
            user_id=actor_user_id,
            action="user_restored",
            description=f"User {user_id} restored",
            entity_type="user",
            entity_id=user_id,
        )
        return db.session.get(User, user_id, populate_existing=True)

    return run_in_transaction(_op)
