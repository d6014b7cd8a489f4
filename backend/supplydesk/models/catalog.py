from __future__ import annotations

from ..extensions import db
from supplydesk.time_utils import to_utc_z


class Category(db.Model):
    """Catalog grouping. Cannot be soft-deleted while live products reference it."""
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("slug", name="uq_categories_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    slug = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }


class Product(db.Model):
    """
    Catalog product.

    STOCK: `stock` is the contended resource. It only changes through the
    conditional arithmetic updates in stock_service (never read, compute,
    write) and the CHECK constraint backs the non-negative invariant at the
    store level.

    PRICING: base_price_cents is the retail tier, wholesale_price_cents the
    BUSINESS tier. A promotion price overrides both while the promotion is
    active and inside its [starts_at, ends_at] window.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category_active", "category_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="unit")

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    base_price_cents = db.Column(db.Integer, nullable=False)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)

    promotion_active = db.Column(db.Boolean, nullable=False, default=False)
    promotion_price_cents = db.Column(db.Integer, nullable=True)
    promotion_starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    promotion_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "category_id": self.category_id,
            "base_price_cents": self.base_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "promotion_active": self.promotion_active,
            "promotion_price_cents": self.promotion_price_cents,
            "promotion_starts_at": to_utc_z(self.promotion_starts_at),
            "promotion_ends_at": to_utc_z(self.promotion_ends_at),
            "stock": self.stock,
            "is_active": self.is_active,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }
