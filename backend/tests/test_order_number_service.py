from datetime import datetime

import pytest

from supplydesk.extensions import db
from supplydesk.models import Order, OrderNumberSequence
from supplydesk.services.concurrency import run_in_transaction
from supplydesk.services.order_number_service import (
    format_order_number,
    next_order_number,
    order_number_prefix,
    parse_order_number,
)
from supplydesk.validation import ValidationError

NOW = datetime(2026, 3, 14, 12, 0, 0)


def test_prefix_uses_two_digit_year(db_session):
    assert order_number_prefix(NOW) == "ECO26-"
    assert order_number_prefix(datetime(2030, 1, 1)) == "ECO30-"


def test_format_pads_sequence(db_session):
    assert format_order_number("ECO26-", 7) == "ECO26-0007"
    assert format_order_number("ECO26-", 12345) == "ECO26-12345"


def test_parse_order_number():
    parsed = parse_order_number("ECO26-0042")
    assert parsed.prefix == "ECO"
    assert parsed.year == "26"
    assert parsed.sequence == 42


@pytest.mark.parametrize("bad", ["", "ECO26", "ECO26-", "ECO26-12a", "26-0001", None])
def test_parse_order_number_rejects_malformed(bad):
    with pytest.raises(ValidationError):
        parse_order_number(bad)


def test_sequential_allocation(db_session):
    numbers = [run_in_transaction(lambda: next_order_number(NOW)) for _ in range(3)]
    assert numbers == ["ECO26-0001", "ECO26-0002", "ECO26-0003"]

    seq = db_session.get(OrderNumberSequence, "ECO26-")
    assert seq.last_value == 3


def test_years_have_independent_counters(db_session):
    run_in_transaction(lambda: next_order_number(NOW))
    assert run_in_transaction(lambda: next_order_number(datetime(2027, 1, 2))) == "ECO27-0001"


def test_rolled_back_allocation_is_not_consumed(db_session):
    run_in_transaction(lambda: next_order_number(NOW))

    def _op():
        next_order_number(NOW)
        raise ValidationError("abort")

    with pytest.raises(ValidationError):
        run_in_transaction(_op)

    assert run_in_transaction(lambda: next_order_number(NOW)) == "ECO26-0002"


def test_counter_seeds_numerically_from_existing_orders(db_session, customer):
    # Lexicographic max would be ECO26-9999; numeric max is 10000
    for number in ("ECO26-9999", "ECO26-10000", "ECO25-20000"):
        db_session.add(Order(
            order_number=number,
            user_id=customer.id,
            status="RECEIVED",
            shipping_method="PICKUP",
            shipping_address="Somewhere 123",
        ))
    db_session.commit()

    assert run_in_transaction(lambda: next_order_number(NOW)) == "ECO26-10001"
