from datetime import datetime

import pytest

from supplydesk.extensions import db
from supplydesk.models import (
    ActivityLog,
    Order,
    OrderNumberSequence,
    OrderStatusHistory,
    Product,
    UserRole,
    UserType,
)
from supplydesk.services import (
    activity_service,
    catalog_service,
    order_service,
    pricing_service,
    stock_service,
    versioning_service,
)
from supplydesk.services.activity_service import list_activity
from supplydesk.services.commands import Actor, CancelOrderCommand, TransitionStatusCommand
from supplydesk.signals import order_created, order_status_changed
from supplydesk.validation import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from conftest import NOW, order_command


def move(order_id, status, actor, **extra):
    command = TransitionStatusCommand.from_payload(order_id, {"status": status, **extra})
    return order_service.transition_status(command, actor, now=NOW)


def cancel(order_id, actor, reason="Customer changed plans", **extra):
    command = CancelOrderCommand.from_payload(order_id, {"reason": reason, **extra})
    return order_service.cancel_order(command, actor, now=NOW)


def stock_of(product_id):
    return db.session.get(Product, product_id).stock


def history_chain(order_id):
    rows = (
        db.session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.id)
        .all()
    )
    return [(h.from_status, h.to_status) for h in rows]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def test_create_order_reserves_stock_and_records_everything(db_session, make_product, customer_actor):
    bolts = make_product(stock=10, base_price_cents=12_500)
    nuts = make_product(stock=50, base_price_cents=2_000)

    order = order_service.create_order(
        order_command((bolts.id, 4, 10), (nuts.id, 10), shipping_method="COURIER"),
        customer_actor,
        now=NOW,
    )

    assert order.order_number == "ECO26-0001"
    assert order.status == "RECEIVED"
    assert order.order_type == "PURCHASE"
    assert order.stock_reserved is True
    assert order.version == 1

    # 4 x 12500 = 50000 - 10% = 45000; 10 x 2000 = 20000
    assert order.subtotal_cents == 65_000
    assert order.discount_cents == 5_000
    assert order.shipping_cost_cents == 800_000
    assert order.total_cents == 865_000

    assert [(i.product_sku, i.quantity, i.subtotal_cents) for i in order.items] == [
        (bolts.sku, 4, 45_000),
        (nuts.sku, 10, 20_000),
    ]
    assert stock_of(bolts.id) == 6
    assert stock_of(nuts.id) == 40

    assert history_chain(order.id) == [(None, "RECEIVED")]
    log = db_session.query(ActivityLog).filter_by(entity_type="order", entity_id=order.id).one()
    assert log.action == "order_created"
    assert log.metadata_json["order_number"] == "ECO26-0001"


def test_business_buyer_gets_wholesale_snapshot(db_session, make_product, make_user):
    buyer = make_user("buyer@acme.com", user_type=UserType.BUSINESS)
    product = make_product(base_price_cents=10_000, wholesale_price_cents=8_500)

    order = order_service.create_order(order_command((product.id, 2)), Actor.from_user(buyer), now=NOW)

    item = order.items[0]
    assert item.unit_price_cents == 8_500
    assert item.price_source == "WHOLESALE"


def test_insufficient_stock_leaves_no_trace(db_session, make_product, customer_actor):
    plenty = make_product(stock=100)
    scarce = make_product(stock=2)

    with pytest.raises(BusinessRuleError) as exc:
        order_service.create_order(order_command((plenty.id, 5), (scarce.id, 3)), customer_actor, now=NOW)

    assert exc.value.details["product_id"] == scarce.id
    assert scarce.name in str(exc.value)
    assert stock_of(plenty.id) == 100
    assert stock_of(scarce.id) == 2
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderNumberSequence).count() == 0
    assert db_session.query(ActivityLog).count() == 0


def test_inactive_or_deleted_product_cannot_be_ordered(db_session, make_product, customer_actor, staff):
    inactive = make_product(is_active=False)
    deleted = make_product()
    catalog_service.delete_product(product_id=deleted.id, actor_user_id=staff.id)

    for product in (inactive, deleted):
        with pytest.raises(BusinessRuleError):
            order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)


def test_unvalidated_or_deleted_actor_cannot_order(db_session, make_product, make_user, staff):
    product = make_product()
    pending = make_user("pending@example.com", validated=False)
    with pytest.raises(BusinessRuleError):
        order_service.create_order(order_command((product.id, 1)), Actor.from_user(pending), now=NOW)

    gone = make_user("gone@example.com")
    gone_actor = Actor.from_user(gone)
    from supplydesk.services import user_service
    user_service.delete_user(user_id=gone.id, actor_user_id=staff.id)
    with pytest.raises(NotFoundError):
        order_service.create_order(order_command((product.id, 1)), gone_actor, now=NOW)

    assert stock_of(product.id) == 10


def test_order_numbers_are_sequential(db_session, make_product, customer_actor):
    product = make_product(stock=10)
    numbers = [
        order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW).order_number
        for _ in range(3)
    ]
    assert numbers == ["ECO26-0001", "ECO26-0002", "ECO26-0003"]


def test_order_created_signal_fires_after_commit(db_session, make_product, customer_actor):
    product = make_product()
    seen = []

    def receiver(sender, order, actor):
        # Committed: visible through a fresh query
        seen.append(db.session.query(Order).filter_by(id=order.id).count())

    with order_created.connected_to(receiver):
        order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)

    assert seen == [1]


def test_failing_signal_receiver_does_not_undo_order(db_session, make_product, customer_actor, caplog):
    product = make_product(stock=5)

    def receiver(sender, **kwargs):
        raise RuntimeError("mail server down")

    with order_created.connected_to(receiver):
        order = order_service.create_order(order_command((product.id, 2)), customer_actor, now=NOW)

    assert db_session.get(Order, order.id) is not None
    assert stock_of(product.id) == 3
    assert "mail server down" in caplog.text


def test_price_snapshot_survives_catalog_changes(db_session, make_product, customer_actor, staff):
    product = make_product(base_price_cents=10_000)
    order = order_service.create_order(order_command((product.id, 2)), customer_actor, now=NOW)

    catalog_service.update_product(
        product_id=product.id,
        expected_version=1,
        payload={"base_price_cents": 99_000, "name": "Renamed product"},
        actor_user_id=staff.id,
    )

    db_session.expire_all()
    item = db_session.get(Order, order.id).items[0]
    assert item.unit_price_cents == 10_000
    assert item.product_name != "Renamed product"
    assert db_session.get(Order, order.id).total_cents == 20_000 + 500_000


def test_order_items_cannot_be_edited(db_session, make_product, customer_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)

    order.items[0].unit_price_cents = 1
    with pytest.raises(ValueError):
        db_session.flush()
    db_session.rollback()


def test_history_rows_cannot_be_edited(db_session, make_product, customer_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)

    order.status_history[0].reason = "rewritten"
    with pytest.raises(ValueError):
        db_session.flush()
    db_session.rollback()


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def test_full_delivery_lifecycle(db_session, make_product, customer_actor, staff_actor):
    product = make_product(stock=10)
    order = order_service.create_order(order_command((product.id, 3)), customer_actor, now=NOW)

    for status in ("VALIDATING", "APPROVED", "PREPARING", "READY"):
        order = move(order.id, status, staff_actor)
    order = move(order.id, "IN_TRANSIT", staff_actor, tracking_number="TRK-77")
    order = move(order.id, "DELIVERED", staff_actor, delivery_received_by="J. Perez")

    assert order.status == "DELIVERED"
    assert order.version == 7
    assert order.tracking_number == "TRK-77"
    assert order.processed_by_user_id == staff_actor.user_id
    assert order.processed_at == NOW
    assert order.shipped_at == NOW
    assert order.delivered_at == NOW
    assert stock_of(product.id) == 7

    assert history_chain(order.id) == [
        (None, "RECEIVED"),
        ("RECEIVED", "VALIDATING"),
        ("VALIDATING", "APPROVED"),
        ("APPROVED", "PREPARING"),
        ("PREPARING", "READY"),
        ("READY", "IN_TRANSIT"),
        ("IN_TRANSIT", "DELIVERED"),
    ]
    assert "Received by: J. Perez" in order.status_history[-1].notes


def test_explicit_shipped_at_is_kept(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    for status in ("VALIDATING", "APPROVED", "PREPARING", "READY"):
        move(order.id, status, staff_actor)

    order = move(order.id, "IN_TRANSIT", staff_actor, shipped_at="2026-03-13T08:30:00Z")
    assert order.shipped_at == datetime(2026, 3, 13, 8, 30)


def test_processed_stamp_is_set_once(db_session, make_product, customer_actor, staff_actor, make_user):
    other = Actor.from_user(make_user("admin2@supplydesk.local", role=UserRole.ADMIN))
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)

    move(order.id, "VALIDATING", staff_actor)
    move(order.id, "APPROVED", staff_actor)
    move(order.id, "ON_HOLD", other, reason="Awaiting credit check")
    order = move(order.id, "APPROVED", other)

    assert order.processed_by_user_id == staff_actor.user_id


def test_transition_outside_table_is_rejected(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)

    with pytest.raises(BusinessRuleError) as exc:
        move(order.id, "DELIVERED", staff_actor)

    assert exc.value.details["current_status"] == "RECEIVED"
    assert exc.value.details["allowed"] == ["VALIDATING", "ON_HOLD", "CANCELLED"]
    assert history_chain(order.id) == [(None, "RECEIVED")]


def test_terminal_states_are_final(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    move(order.id, "CANCELLED", staff_actor, reason="Duplicate order")

    assert order_service.is_terminal("CANCELLED")
    for status in ("RECEIVED", "VALIDATING", "ON_HOLD"):
        with pytest.raises(BusinessRuleError):
            move(order.id, status, staff_actor, reason="Try to reopen")


def test_reason_required_for_hold_reject_and_cancel(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    move(order.id, "VALIDATING", staff_actor)

    for status in ("ON_HOLD", "REJECTED", "CANCELLED"):
        with pytest.raises(ValidationError):
            move(order.id, status, staff_actor)


def test_pickup_orders_skip_transit(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(
        order_command((product.id, 1), shipping_method="PICKUP"), customer_actor, now=NOW
    )
    assert order.shipping_cost_cents == 0
    for status in ("VALIDATING", "APPROVED", "PREPARING", "READY"):
        order = move(order.id, status, staff_actor)

    assert "IN_TRANSIT" not in order_service.allowed_transitions(order)
    with pytest.raises(BusinessRuleError):
        move(order.id, "IN_TRANSIT", staff_actor)
    assert move(order.id, "DELIVERED", staff_actor).status == "DELIVERED"


def test_customers_cannot_change_status(db_session, make_product, customer_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)

    with pytest.raises(PermissionDeniedError):
        move(order.id, "VALIDATING", customer_actor)


def test_stale_expected_version_is_rejected(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    move(order.id, "VALIDATING", staff_actor, expected_version=1)

    with pytest.raises(ConflictError) as exc:
        move(order.id, "APPROVED", staff_actor, expected_version=1)

    assert exc.value.details["current_version"] == 2
    assert db_session.get(Order, order.id).status == "VALIDATING"


def test_assignee_must_be_staff(db_session, make_product, customer_actor, staff_actor, customer):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)

    with pytest.raises(ValidationError):
        move(order.id, "VALIDATING", staff_actor, assigned_to_user_id=customer.id)

    order = move(order.id, "VALIDATING", staff_actor, assigned_to_user_id=staff_actor.user_id)
    assert order.assigned_to_user_id == staff_actor.user_id


def test_status_change_signal(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    seen = []

    def receiver(sender, order, actor, from_status, to_status, reason):
        seen.append((from_status, to_status))

    with order_status_changed.connected_to(receiver):
        move(order.id, "VALIDATING", staff_actor)

    assert seen == [("RECEIVED", "VALIDATING")]


# ---------------------------------------------------------------------------
# Stock release
# ---------------------------------------------------------------------------


def test_rejection_releases_stock(db_session, make_product, customer_actor, staff_actor):
    product = make_product(stock=10)
    order = order_service.create_order(order_command((product.id, 4)), customer_actor, now=NOW)
    move(order.id, "VALIDATING", staff_actor)

    order = move(order.id, "REJECTED", staff_actor, reason="Credit limit exceeded")

    assert order.stock_reserved is False
    assert stock_of(product.id) == 10


def test_hold_then_cancel_releases_once(db_session, make_product, customer_actor, staff_actor):
    product = make_product(stock=10)
    order = order_service.create_order(order_command((product.id, 4)), customer_actor, now=NOW)
    move(order.id, "ON_HOLD", staff_actor, reason="Address check")
    cancel(order.id, customer_actor)

    assert stock_of(product.id) == 10
    with pytest.raises(BusinessRuleError):
        cancel(order.id, customer_actor)
    assert stock_of(product.id) == 10


def test_cancel_after_shipping_is_rejected(db_session, make_product, customer_actor, staff_actor):
    product = make_product(stock=10)
    order = order_service.create_order(order_command((product.id, 4)), customer_actor, now=NOW)
    for status in ("VALIDATING", "APPROVED", "PREPARING", "READY", "IN_TRANSIT"):
        move(order.id, status, staff_actor)

    with pytest.raises(BusinessRuleError):
        cancel(order.id, staff_actor)
    assert stock_of(product.id) == 6


def test_customer_cannot_cancel_someone_elses_order(db_session, make_product, customer_actor, make_user):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    stranger = Actor.from_user(make_user("stranger@example.com"))

    with pytest.raises(NotFoundError):
        cancel(order.id, stranger)
    with pytest.raises(NotFoundError):
        order_service.get_order(order.id, stranger)


def test_cancel_returns_units_to_soft_deleted_product(db_session, make_product, customer_actor, staff):
    product = make_product(stock=10)
    order = order_service.create_order(order_command((product.id, 3)), customer_actor, now=NOW)
    catalog_service.delete_product(product_id=product.id, actor_user_id=staff.id)

    cancel(order.id, customer_actor)

    assert stock_of(product.id) == 10
    trail = list_activity(entity_type="order", entity_id=order.id)
    assert [log.action for log in trail] == ["order_created", "order_cancelled"]
    assert trail[-1].metadata_json["released_product_ids"] == [product.id]


def test_cancel_with_stale_version_conflicts(db_session, make_product, customer_actor, staff_actor):
    product = make_product(stock=10)
    order = order_service.create_order(order_command((product.id, 3)), customer_actor, now=NOW)
    move(order.id, "VALIDATING", staff_actor)

    with pytest.raises(ConflictError):
        cancel(order.id, customer_actor, expected_version=1)
    assert stock_of(product.id) == 7


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


def test_quote_holds_no_stock_until_accepted(db_session, make_product, customer_actor, staff_actor):
    product = make_product(stock=10)
    quote = order_service.create_order(
        order_command((product.id, 6), order_type="QUOTE"), customer_actor, now=NOW
    )

    assert quote.status == "QUOTE_REQUESTED"
    assert quote.stock_reserved is False
    assert stock_of(product.id) == 10
    assert db_session.query(ActivityLog).filter_by(action="quote_requested").count() == 1

    order = move(quote.id, "RECEIVED", staff_actor)

    assert order.order_type == "PURCHASE"
    assert order.stock_reserved is True
    assert stock_of(product.id) == 4
    assert history_chain(order.id) == [(None, "QUOTE_REQUESTED"), ("QUOTE_REQUESTED", "RECEIVED")]


def test_quote_acceptance_fails_without_stock(db_session, make_product, customer_actor, staff_actor):
    product = make_product(stock=10)
    quote = order_service.create_order(
        order_command((product.id, 8), order_type="QUOTE"), customer_actor, now=NOW
    )
    order_service.create_order(order_command((product.id, 5)), customer_actor, now=NOW)

    with pytest.raises(BusinessRuleError):
        move(quote.id, "RECEIVED", staff_actor)

    quote = db_session.get(Order, quote.id)
    assert quote.status == "QUOTE_REQUESTED"
    assert quote.order_type == "QUOTE"
    assert stock_of(product.id) == 5


def test_cancelling_a_quote_does_not_touch_stock(db_session, make_product, customer_actor):
    product = make_product(stock=10)
    quote = order_service.create_order(
        order_command((product.id, 6), order_type="QUOTE"), customer_actor, now=NOW
    )
    cancel(quote.id, customer_actor)
    assert stock_of(product.id) == 10


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def test_list_orders_is_scoped_and_paginated(db_session, make_product, customer_actor, staff_actor, make_user):
    product = make_product(stock=100)
    other = Actor.from_user(make_user("other@example.com"))
    for _ in range(3):
        order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    order_service.create_order(order_command((product.id, 1)), other, now=NOW)

    mine = order_service.list_orders(customer_actor, per_page=2)
    assert mine["count"] == 3
    assert mine["pages"] == 2
    assert len(mine["items"]) == 2
    assert {o["user_id"] for o in mine["items"]} == {customer_actor.user_id}

    everyone = order_service.list_orders(staff_actor)
    assert everyone["count"] == 4
    assert order_service.list_orders(staff_actor, user_id=other.user_id)["count"] == 1
    assert order_service.list_orders(staff_actor, status="cancelled")["count"] == 0

    with pytest.raises(ValidationError):
        order_service.list_orders(staff_actor, status="LOST")
    with pytest.raises(ValidationError):
        order_service.list_orders(staff_actor, per_page=500)


def test_status_history_read(db_session, make_product, customer_actor, staff_actor):
    product = make_product()
    order = order_service.create_order(order_command((product.id, 1)), customer_actor, now=NOW)
    move(order.id, "VALIDATING", staff_actor)

    history = order_service.get_status_history(order.id, customer_actor)
    assert [h.to_status for h in history] == ["RECEIVED", "VALIDATING"]


# ---------------------------------------------------------------------------
# Worked example
# ---------------------------------------------------------------------------


def test_reserve_reject_cancel_restore_scenario(db_session, make_product, customer_actor, make_user):
    product = make_product(stock=10)
    second_buyer = Actor.from_user(make_user("second@example.com"))

    first = order_service.create_order(order_command((product.id, 7)), customer_actor, now=NOW)
    assert stock_of(product.id) == 3

    with pytest.raises(BusinessRuleError) as exc:
        order_service.create_order(order_command((product.id, 5)), second_buyer, now=NOW)
    assert exc.value.details["available"] == 3
    assert stock_of(product.id) == 3

    cancel(first.id, customer_actor, reason="Ordered by mistake")

    assert stock_of(product.id) == 10
    assert history_chain(first.id) == [(None, "RECEIVED"), ("RECEIVED", "CANCELLED")]
    cancelled = db_session.get(Order, first.id)
    assert cancelled.status == "CANCELLED"
    assert cancelled.cancel_reason == "Ordered by mistake"


@pytest.mark.parametrize(
    "module, heading",
    [
        (order_service, "Order lifecycle"),
        (stock_service, "Stock invariants"),
        (pricing_service, "Pricing rules"),
        (versioning_service, "Versioning rules"),
        (activity_service, "ActivityLog invariants"),
    ],
)
def test_service_rules_are_module_docstrings(module, heading):
    assert module.__doc__.strip().startswith(heading)
