# Overview: Allocation of human-readable order numbers (ECO26-0001).

from __future__ import annotations

from datetime import datetime
from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderNumberSequence
from ..validation import ValidationError
from supplydesk.time_utils import two_digit_year, utcnow


class ParsedOrderNumber(NamedTuple):
    prefix: str
    year: str
    sequence: int


def order_number_prefix(now: Optional[datetime] = None) -> str:
    """Counter key for the year, e.g. 'ECO26-'."""
    base = current_app.config["ORDER_NUMBER_PREFIX"]
    return f"{base}{two_digit_year(now or utcnow())}-"


def format_order_number(prefix: str, sequence: int, pad: Optional[int] = None) -> str:
    if pad is None:
        pad = current_app.config["ORDER_NUMBER_PADDING"]
    return f"{prefix}{sequence:0{pad}d}"


def parse_order_number(number: str) -> ParsedOrderNumber:
    """
    Split 'ECO26-0042' into ('ECO', '26', 42).

    The sequence is parsed numerically so 'ECO26-10000' sorts after
    'ECO26-9999'.
    """
    head, sep, tail = (number or "").rpartition("-")
    if not sep or len(head) < 3 or not tail.isdigit():
        raise ValidationError(f"Malformed order number: {number!r}")
    prefix, year = head[:-2], head[-2:]
    if not prefix or not year.isdigit():
        raise ValidationError(f"Malformed order number: {number!r}")
    return ParsedOrderNumber(prefix=prefix, year=year, sequence=int(tail))


def _highest_existing_sequence(prefix: str) -> int:
    numbers = (
        db.session.query(Order.order_number)
        .filter(Order.order_number.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (number,) in numbers:
        try:
            highest = max(highest, parse_order_number(number).sequence)
        except ValidationError:
            continue
    return highest


def _current_value(prefix: str) -> int:
    return (
        db.session.query(OrderNumberSequence.last_value)
        .filter_by(prefix=prefix)
        .scalar()
    )


def next_order_number(now: Optional[datetime] = None) -> str:
    """
    Allocate the next order number for the current year.

    Runs inside the caller's transaction and never commits. The counter row
    is bumped with a single conditional UPDATE, so two concurrent creates can
    never read the same value. The first number of a year seeds the counter
    from the highest existing order number under a SAVEPOINT; losing that
    insert race falls back to the increment.
    """
    prefix = order_number_prefix(now)
    bump = (
        update(OrderNumberSequence)
        .where(OrderNumberSequence.prefix == prefix)
        .values(last_value=OrderNumberSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(bump)
    if result.rowcount:
        return format_order_number(prefix, _current_value(prefix))

    seed = _highest_existing_sequence(prefix)
    try:
        with db.session.begin_nested():
            db.session.add(OrderNumberSequence(prefix=prefix, last_value=seed + 1))
        return format_order_number(prefix, seed + 1)
    except IntegrityError:
        result = db.session.execute(bump)
        if not result.rowcount:
            raise
        return format_order_number(prefix, _current_value(prefix))
