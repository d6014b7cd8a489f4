from __future__ import annotations

import enum

from ..extensions import db
from supplydesk.time_utils import to_utc_z


class UserType(str, enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    BUSINESS = "BUSINESS"


class UserRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class User(db.Model):
    """
    Customer and back-office accounts.

    Credentials live with the identity collaborator; this row carries what the
    order engine needs: pricing tier (user_type), privileges (role) and the
    validated gate on ordering. Mutated only through versioned writes and
    soft-deleted, never removed while orders reference it.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        db.Index("ix_users_role_deleted", "role", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    company = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    user_type = db.Column(db.String(16), nullable=False, default=UserType.INDIVIDUAL.value)
    role = db.Column(db.String(16), nullable=False, default=UserRole.CUSTOMER.value)
    validated = db.Column(db.Boolean, nullable=False, default=False)

    shipping_address = db.Column(db.String(500), nullable=True)
    billing_address = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "company": self.company,
            "phone": self.phone,
            "user_type": self.user_type,
            "role": self.role,
            "validated": self.validated,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }
