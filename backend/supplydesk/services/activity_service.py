# Overview: Append-only activity log writes.

"""
ActivityLog invariants

- Append-only; rows are never updated or deleted.
- Written inside the same DB transaction as the change they describe.
- occurred_at is business time; created_at is system time (DB default).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import ActivityLog


def append_activity(
    *,
    user_id: int | None,
    action: str,
    description: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict | None = None,
    occurred_at: Optional[datetime] = None,
) -> ActivityLog:
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        description=description,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata_json=metadata,
        occurred_at=occurred_at,  # if None, db default applies
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_activity(*, entity_type: str, entity_id: int, limit: int = 100) -> list[ActivityLog]:
    return (
        db.session.query(ActivityLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(ActivityLog.id.asc())
        .limit(limit)
        .all()
    )
