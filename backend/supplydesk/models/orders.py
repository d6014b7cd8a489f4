from __future__ import annotations

import enum

from sqlalchemy import event

from ..extensions import db
from supplydesk.time_utils import to_utc_z


class OrderStatus(str, enum.Enum):
    QUOTE_REQUESTED = "QUOTE_REQUESTED"
    RECEIVED = "RECEIVED"
    VALIDATING = "VALIDATING"
    APPROVED = "APPROVED"
    PREPARING = "PREPARING"
    READY = "READY"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


class OrderType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    QUOTE = "QUOTE"


class ShippingMethod(str, enum.Enum):
    PICKUP = "PICKUP"
    FREE_SHIPPING = "FREE_SHIPPING"
    SCHEDULED_ROUTE = "SCHEDULED_ROUTE"
    COURIER = "COURIER"
    SPECIAL_DELIVERY = "SPECIAL_DELIVERY"


class Order(db.Model):
    """
    Order aggregate root.

    Totals are derived once at creation from the priced lines and are never
    mutated independently. order_number is immutable after insert.
    stock_reserved records whether this order currently holds a stock
    reservation, so a release happens at most once.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_user_status_created", "user_id", "status", "created_at"),
        db.Index("ix_orders_status_deleted", "status", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, index=True)
    order_type = db.Column(db.String(16), nullable=False, default=OrderType.PURCHASE.value)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    shipping_method = db.Column(db.String(32), nullable=False)
    shipping_address = db.Column(db.String(500), nullable=False)
    billing_address = db.Column(db.String(500), nullable=True)
    shipping_city = db.Column(db.String(128), nullable=True)
    shipping_zone = db.Column(db.String(128), nullable=True)

    customer_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(500), nullable=True)

    tracking_number = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(500), nullable=True)
    estimated_date = db.Column(db.DateTime(timezone=True), nullable=True)
    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Stamped once, the first time the order reaches APPROVED
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    stock_reserved = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id])
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        lazy=True,
    )
    status_history = db.relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, *, include_items: bool = True, include_history: str = "latest") -> dict:
        """
        include_history: "latest" adds only the most recent history entry,
        "all" the full ledger, anything else omits it.
        """
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "order_type": self.order_type,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "total_cents": self.total_cents,
            "shipping_method": self.shipping_method,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "shipping_city": self.shipping_city,
            "shipping_zone": self.shipping_zone,
            "customer_notes": self.customer_notes,
            "admin_notes": self.admin_notes,
            "cancel_reason": self.cancel_reason,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "estimated_date": to_utc_z(self.estimated_date),
            "assigned_to_user_id": self.assigned_to_user_id,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "stock_reserved": self.stock_reserved,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_history == "all":
            data["status_history"] = [h.to_dict() for h in self.status_history]
        elif include_history == "latest":
            latest = self.status_history[-1] if self.status_history else None
            data["latest_status_change"] = latest.to_dict() if latest else None
        return data


class OrderItem(db.Model):
    """
    Order line with a frozen product snapshot.

    product_id is kept for stock release only; sku, name, unit and prices are
    copies taken at order time and are never re-derived from the catalog.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    product_unit = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    price_source = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_sku": self.product_sku,
            "product_name": self.product_name,
            "product_unit": self.product_unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_percent": str(self.discount_percent),
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "price_source": self.price_source,
        }


class OrderStatusHistory(db.Model):
    """
    Audit ledger of status changes. Append-only.

    Written in the same transaction as the change it describes; the
    from_status -> to_status chain reconstructs every status an order held.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order", "order_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reason = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="status_history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by_user_id": self.changed_by_user_id,
            "reason": self.reason,
            "notes": self.notes,
            "changed_at": to_utc_z(self.changed_at),
        }


class OrderNumberSequence(db.Model):
    """Per-prefix counter backing order number allocation (e.g. prefix 'ECO26-')."""
    __tablename__ = "order_number_sequences"

    prefix = db.Column(db.String(32), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)


@event.listens_for(OrderStatusHistory, "before_update")
def _forbid_history_update(mapper, connection, target):
    raise ValueError("OrderStatusHistory rows are append-only")


@event.listens_for(OrderStatusHistory, "before_delete")
def _forbid_history_delete(mapper, connection, target):
    raise ValueError("OrderStatusHistory rows are append-only")


@event.listens_for(OrderItem, "before_update")
def _forbid_item_update(mapper, connection, target):
    raise ValueError("OrderItem snapshots are immutable")
