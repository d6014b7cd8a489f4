# Overview: Order lifecycle commands; creation, status transitions and cancellation.

"""
Order lifecycle

RECEIVED -> VALIDATING -> APPROVED -> PREPARING -> READY -> IN_TRANSIT -> DELIVERED
                 \\-> REJECTED             (any non-shipped state) -> ON_HOLD / CANCELLED

- Every command is one write-locked transaction: the order row, its stock
  effects, its status history row and its activity entry commit together.
- A PURCHASE order holds its stock from creation until it is cancelled or
  rejected; stock_reserved makes the release happen exactly once.
- Quotes hold no stock until accepted (QUOTE_REQUESTED -> RECEIVED).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, OrderStatus, OrderStatusHistory, OrderType, ShippingMethod, User
from ..signals import order_created, order_status_changed, send_after_commit
from ..validation import BusinessRuleError, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from . import stock_service
from .activity_service import append_activity
from .commands import Actor, CancelOrderCommand, CreateOrderCommand, TransitionStatusCommand
from .concurrency import lock_for_update, run_in_transaction
from .order_number_service import next_order_number
from .pricing_service import ProductSnapshot, calculate_order_totals, shipping_rules
from .versioning_service import active_query, get_active
from supplydesk.time_utils import utcnow

S = OrderStatus

VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.QUOTE_REQUESTED: frozenset({S.RECEIVED, S.REJECTED, S.CANCELLED}),
    S.RECEIVED: frozenset({S.VALIDATING, S.ON_HOLD, S.CANCELLED}),
    S.VALIDATING: frozenset({S.APPROVED, S.REJECTED, S.ON_HOLD, S.CANCELLED}),
    S.APPROVED: frozenset({S.PREPARING, S.ON_HOLD, S.CANCELLED}),
    S.PREPARING: frozenset({S.READY, S.ON_HOLD, S.CANCELLED}),
    S.READY: frozenset({S.IN_TRANSIT, S.DELIVERED, S.ON_HOLD, S.CANCELLED}),
    S.IN_TRANSIT: frozenset({S.DELIVERED}),
    S.ON_HOLD: frozenset({S.VALIDATING, S.APPROVED, S.PREPARING, S.READY, S.CANCELLED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.DELIVERED, S.CANCELLED, S.REJECTED})
REASON_REQUIRED = frozenset({S.CANCELLED, S.REJECTED, S.ON_HOLD})
RELEASES_STOCK = frozenset({S.CANCELLED, S.REJECTED})
NOT_CANCELLABLE = frozenset({S.IN_TRANSIT, S.DELIVERED, S.CANCELLED, S.REJECTED})

MAX_PER_PAGE = 100


def is_terminal(status) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def allowed_transitions(order: Order) -> list[str]:
    """Targets reachable from the order's current status, in lifecycle order."""
    current = OrderStatus(order.status)
    targets = set(VALID_TRANSITIONS[current])
    if order.shipping_method == ShippingMethod.PICKUP.value:
        targets.discard(S.IN_TRANSIT)
    return [s.value for s in OrderStatus if s in targets]


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _require_orderable_actor(actor: Actor) -> User:
    if not actor.validated:
        raise BusinessRuleError(
            "Account must be validated before placing orders",
            details={"user_id": actor.user_id},
        )
    return get_active(User, actor.user_id)


def _require_staff(actor: Actor, action: str) -> None:
    if not actor.is_staff:
        raise PermissionDeniedError(
            f"Role {actor.role} may not {action}",
            details={"user_id": actor.user_id, "role": actor.role},
        )


def _visible_to(order: Order, actor: Actor) -> bool:
    return actor.is_staff or order.user_id == actor.user_id


def _load_order_for_update(order_id: int, actor: Actor) -> Order:
    order = lock_for_update(active_query(Order).filter(Order.id == order_id)).first()
    if order is None or not _visible_to(order, actor):
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _check_expected_version(order: Order, expected_version: Optional[int]) -> None:
    if expected_version is not None and order.version != expected_version:
        raise ConflictError(
            f"Order {order.order_number} was modified by someone else "
            f"(current version {order.version}, yours {expected_version}). Reload and retry.",
            details={
                "order_id": order.id,
                "current_version": order.version,
                "expected_version": expected_version,
            },
        )


def _append_history(
    order: Order,
    *,
    from_status: Optional[str],
    to_status: str,
    actor: Actor,
    reason: Optional[str],
    notes: Optional[str],
    changed_at: datetime,
) -> OrderStatusHistory:
    entry = OrderStatusHistory(
        from_status=from_status,
        to_status=to_status,
        changed_by_user_id=actor.user_id,
        reason=reason,
        notes=notes,
        changed_at=changed_at,
    )
    order.status_history.append(entry)
    return entry


def _item_quantities(order: Order) -> dict[int, int]:
    return stock_service.aggregate_quantities(order.items)


def _release_reservation(order: Order) -> list[int]:
    """Return held stock once. Products that no longer exist are skipped."""
    if not order.stock_reserved:
        return []

    released = []
    for product_id, quantity in _item_quantities(order).items():
        if stock_service.release(product_id, quantity):
            released.append(product_id)
    order.stock_reserved = False
    current_app.logger.info(
        "Released stock for order %s (products=%s)", order.order_number, released
    )
    return released


def _accept_quote(order: Order) -> None:
    stock_service.reserve_all(_item_quantities(order))
    order.order_type = OrderType.PURCHASE.value
    order.stock_reserved = True


def _history_notes(notes: Optional[str], received_by: Optional[str]) -> Optional[str]:
    parts = [p for p in (notes, f"Received by: {received_by}" if received_by else None) if p]
    return "\n".join(parts) or None


def _apply_transition(
    order: Order,
    target: OrderStatus,
    actor: Actor,
    *,
    reason: Optional[str],
    now: datetime,
    command: Optional[TransitionStatusCommand] = None,
    action: str = "order_status_changed",
) -> str:
    """Validate and apply one status change. Returns the previous status."""
    current = OrderStatus(order.status)
    if current in TERMINAL_STATUSES:
        raise BusinessRuleError(
            f"Order {order.order_number} is {current.value} and can no longer change status",
            details={"order_id": order.id, "current_status": current.value},
        )

    allowed = allowed_transitions(order)
    if target.value not in allowed:
        raise BusinessRuleError(
            f"Cannot move order {order.order_number} from {current.value} to {target.value}",
            details={
                "order_id": order.id,
                "current_status": current.value,
                "attempted_status": target.value,
                "allowed": allowed,
            },
        )

    if target in REASON_REQUIRED and not reason:
        raise ValidationError(f"A reason is required to move an order to {target.value}")

    # Lookups first: a query autoflushes, and the order row must be written once
    assignee_id = None
    if command is not None and command.assigned_to_user_id is not None:
        assignee = get_active(User, command.assigned_to_user_id)
        if not Actor.from_user(assignee).is_staff:
            raise ValidationError(
                f"User {assignee.id} cannot be assigned orders",
                details={"assigned_to_user_id": assignee.id},
            )
        assignee_id = assignee.id

    released: list[int] = []
    if current == S.QUOTE_REQUESTED and target == S.RECEIVED:
        _accept_quote(order)
    if target in RELEASES_STOCK:
        released = _release_reservation(order)

    order.status = target.value
    if target == S.CANCELLED:
        order.cancel_reason = reason
    if target == S.APPROVED and order.processed_at is None:
        order.processed_by_user_id = actor.user_id
        order.processed_at = now

    explicit_shipped = command.shipped_at if command else None
    explicit_delivered = command.delivered_at if command else None
    if target == S.IN_TRANSIT and (explicit_shipped or order.shipped_at is None):
        order.shipped_at = explicit_shipped or now
    if target == S.DELIVERED and (explicit_delivered or order.delivered_at is None):
        order.delivered_at = explicit_delivered or now

    notes = None
    if command is not None:
        notes = _history_notes(command.notes, command.delivery_received_by)
        if command.tracking_number is not None:
            order.tracking_number = command.tracking_number
        if command.tracking_url is not None:
            order.tracking_url = command.tracking_url
        if command.estimated_date is not None:
            order.estimated_date = command.estimated_date
        if command.notes is not None:
            order.admin_notes = command.notes
        if assignee_id is not None:
            order.assigned_to_user_id = assignee_id

    _append_history(
        order,
        from_status=current.value,
        to_status=target.value,
        actor=actor,
        reason=reason,
        notes=notes,
        changed_at=now,
    )
    append_activity(
        user_id=actor.user_id,
        action=action,
        description=f"Order {order.order_number}: {current.value} -> {target.value}",
        entity_type="order",
        entity_id=order.id,
        metadata={
            "order_number": order.order_number,
            "from_status": current.value,
            "to_status": target.value,
            "reason": reason,
            "tracking_number": order.tracking_number,
            "released_product_ids": released,
        },
        occurred_at=now,
    )
    return current.value


def _notify_status_change(order: Order, actor: Actor, from_status: str, reason: Optional[str]) -> None:
    current_app.logger.info(
        "Order %s moved %s -> %s by user %s",
        order.order_number, from_status, order.status, actor.user_id,
    )
    send_after_commit(
        order_status_changed,
        order=order,
        actor=actor,
        from_status=from_status,
        to_status=order.status,
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def create_order(command: CreateOrderCommand, actor: Actor, *, now: Optional[datetime] = None) -> Order:
    """
    Turn a cart into a durable order.

    PURCHASE orders take their stock in the same transaction; any product
    that is missing, inactive or short aborts the whole order with nothing
    written. QUOTE orders are priced and numbered but hold no stock.
    """
    if not command.lines:
        raise ValidationError("Order must contain at least one item")
    now = now or utcnow()
    rules = shipping_rules()

    def _op() -> Order:
        user = _require_orderable_actor(actor)
        products = stock_service.validate_stock(command.lines)
        snapshots = {pid: ProductSnapshot.from_product(p) for pid, p in products.items()}
        totals = calculate_order_totals(
            lines=command.lines,
            products=snapshots,
            user_type=user.user_type,
            shipping_method=command.shipping.method,
            rules=rules,
            now=now,
        )

        if not command.is_quote:
            stock_service.reserve_all(stock_service.aggregate_quantities(command.lines))

        order = Order(
            order_number=next_order_number(now),
            user_id=user.id,
            status=(S.QUOTE_REQUESTED if command.is_quote else S.RECEIVED).value,
            order_type=command.order_type,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            shipping_cost_cents=totals.shipping_cost_cents,
            total_cents=totals.total_cents,
            shipping_method=command.shipping.method,
            shipping_address=command.shipping.address,
            billing_address=command.shipping.billing_address,
            shipping_city=command.shipping.city,
            shipping_zone=command.shipping.zone,
            customer_notes=command.customer_notes,
            estimated_date=command.estimated_date,
            stock_reserved=not command.is_quote,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    product_sku=line.product_sku,
                    product_name=line.product_name,
                    product_unit=line.product_unit,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    discount_percent=line.discount_percent,
                    discount_cents=line.discount_cents,
                    subtotal_cents=line.subtotal_cents,
                    price_source=line.price_source,
                )
                for line in totals.lines
            ],
        )
        db.session.add(order)
        _append_history(
            order,
            from_status=None,
            to_status=order.status,
            actor=actor,
            reason=None,
            notes=command.customer_notes,
            changed_at=now,
        )
        db.session.flush()

        append_activity(
            user_id=actor.user_id,
            action="quote_requested" if command.is_quote else "order_created",
            description=f"{'Quote' if command.is_quote else 'Order'} {order.order_number} created",
            entity_type="order",
            entity_id=order.id,
            metadata={
                "order_number": order.order_number,
                "total_cents": order.total_cents,
                "items": len(totals.lines),
            },
            occurred_at=now,
        )
        return order

    order = run_in_transaction(_op)
    current_app.logger.info(
        "Order %s created for user %s (%s, total=%s)",
        order.order_number, order.user_id, order.order_type, order.total_cents,
    )
    send_after_commit(order_created, order=order, actor=actor)
    return order


def transition_status(
    command: TransitionStatusCommand, actor: Actor, *, now: Optional[datetime] = None
) -> Order:
    """Back-office status change; ADMIN and STAFF only."""
    _require_staff(actor, "change order status")
    target = OrderStatus(command.new_status)
    now = now or utcnow()

    def _op() -> tuple[Order, str]:
        order = _load_order_for_update(command.order_id, actor)
        _check_expected_version(order, command.expected_version)
        from_status = _apply_transition(
            order, target, actor, reason=command.reason, now=now, command=command
        )
        return order, from_status

    order, from_status = run_in_transaction(_op)
    _notify_status_change(order, actor, from_status, command.reason)
    return order


def cancel_order(command: CancelOrderCommand, actor: Actor, *, now: Optional[datetime] = None) -> Order:
    """
    Cancel an order that has not shipped.

    Customers can cancel only their own orders. Held stock goes back to the
    products in the same transaction.
    """
    now = now or utcnow()

    def _op() -> tuple[Order, str]:
        order = _load_order_for_update(command.order_id, actor)
        _check_expected_version(order, command.expected_version)
        if OrderStatus(order.status) in NOT_CANCELLABLE:
            raise BusinessRuleError(
                f"Order {order.order_number} is {order.status} and cannot be cancelled",
                details={"order_id": order.id, "current_status": order.status},
            )
        from_status = _apply_transition(
            order, S.CANCELLED, actor, reason=command.reason, now=now, action="order_cancelled"
        )
        return order, from_status

    order, from_status = run_in_transaction(_op)
    _notify_status_change(order, actor, from_status, command.reason)
    return order


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_order(order_id: int, actor: Actor) -> Order:
    order = active_query(Order).filter(Order.id == order_id).first()
    if order is None or not _visible_to(order, actor):
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def get_status_history(order_id: int, actor: Actor) -> list[OrderStatusHistory]:
    order = get_order(order_id, actor)
    return list(order.status_history)


def list_orders(
    actor: Actor,
    *,
    status: Optional[str] = None,
    order_type: Optional[str] = None,
    user_id: Optional[int] = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    """
    Paginated order listing, newest first.

    Customers only ever see their own orders; staff may filter by user_id.
    """
    if page < 1:
        raise ValidationError("page must be >= 1")
    if per_page < 1 or per_page > MAX_PER_PAGE:
        raise ValidationError(f"per_page must be between 1 and {MAX_PER_PAGE}")

    query = active_query(Order)
    if not actor.is_staff:
        query = query.filter(Order.user_id == actor.user_id)
    elif user_id is not None:
        query = query.filter(Order.user_id == user_id)

    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status.upper()).value)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")
    if order_type:
        try:
            query = query.filter(Order.order_type == OrderType(order_type.upper()).value)
        except ValueError:
            raise ValidationError(f"Unknown order type: {order_type}")

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [o.to_dict(include_items=False, include_history="none") for o in orders],
        "count": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }
