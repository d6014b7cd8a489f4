from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from supplydesk.time_utils import parse_iso_datetime


# Largest accepted unit price: 99,999,999.99 in minor units
MAX_PRICE_CENTS = 9_999_999_999


class EngineError(Exception):
    """Base class for errors the order engine surfaces to callers."""

    status_code = 500
    code = "ENGINE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self), "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(EngineError, ValueError):
    """400-level input problem."""

    status_code = 400
    code = "VALIDATION_ERROR"


class BusinessRuleError(EngineError, ValueError):
    """Well-formed request that breaks a business rule (stock, transition, ...)."""

    status_code = 422
    code = "BUSINESS_RULE_ERROR"


class PermissionDeniedError(BusinessRuleError):
    status_code = 403
    code = "PERMISSION_DENIED"


class ConflictError(EngineError, ValueError):
    """409-level conflict: stale version or uniqueness clash. Reload and retry."""

    status_code = 409
    code = "CONFLICT_ERROR"


class NotFoundError(EngineError, LookupError):
    """Referenced entity is missing or soft-deleted."""

    status_code = 404
    code = "NOT_FOUND_ERROR"


class StorageError(EngineError, RuntimeError):
    """The underlying store failed. Never retried inside the engine."""

    status_code = 500
    code = "STORAGE_ERROR"


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Allowlist for client-writable columns of a model.

    writable_fields is the security boundary: anything else in a payload is
    rejected, which keeps version, deleted_at and stock out of patches.
    """
    writable_fields: frozenset[str]


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def coerce_int(name: str, value: Any) -> int:
    """Strict integer coercion: no bools, floats, decimals or exponents."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{name} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    raise ValidationError(f"{name} must be an integer")


def coerce_datetime(name: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
    raise ValidationError(f"{name} must be an ISO-8601 datetime")


def _coerce_column(col, value: Any):
    if value is None:
        return None
    coltype = col.type
    if isinstance(coltype, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a boolean")
        return value
    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)
    if isinstance(coltype, DateTime):
        return coerce_datetime(col.key, value)
    if isinstance(coltype, (String, Text)):
        return str(value).strip()
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
) -> dict:
    """
    Validate and normalize a JSON payload against column metadata and a policy.

    Only the keys present are validated. Returns a cleaned patch dict.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    cols = _columns_by_key(model)
    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        if key not in cols:
            raise ValidationError(f"Unknown field: {key}")
        col = cols[key]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce_column(col, raw)
        if isinstance(col.type, (String, Text)) and not col.nullable and value == "":
            raise ValidationError(f"{key} cannot be blank")
        if isinstance(col.type, String) and col.type.length and len(value) > col.type.length:
            raise ValidationError(f"{key} exceeds max length {col.type.length}")
        patch[key] = value

    return patch


def _check_price(patch: dict, key: str) -> None:
    price = patch.get(key)
    if price is None:
        return
    if price < 0:
        raise ValidationError(f"{key} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_product(patch: dict) -> None:
    """Product rules not captured by column metadata alone."""
    for key in ("base_price_cents", "wholesale_price_cents", "promotion_price_cents"):
        _check_price(patch, key)

    if patch.get("base_price_cents") is None and "base_price_cents" in patch:
        raise ValidationError("base_price_cents cannot be null")

    starts = patch.get("promotion_starts_at")
    ends = patch.get("promotion_ends_at")
    if starts and ends and ends < starts:
        raise ValidationError("promotion_ends_at must not be before promotion_starts_at")


def require_version(payload: dict) -> int:
    """Pop and validate the version a client last read."""
    if "version" not in payload:
        raise ValidationError("version is required for updates")
    version = coerce_int("version", payload.pop("version"))
    if version < 1:
        raise ValidationError("version must be >= 1")
    return version
