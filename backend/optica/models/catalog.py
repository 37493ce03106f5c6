from __future__ import annotations

from ..extensions import db
from optica.time_utils import to_utc_z


def money_str(value) -> str | None:
    """Two-decimal string for Numeric money columns."""
    if value is None:
        return None
    return f"{value:.2f}"


class Product(db.Model):
    """
    Product master data (frames, lenses, contact lenses, accessories).

    price is the list price; discounts are resolved against it at sale time.
    has_discounts is a hint for clients: it turns true when any discount for
    the product is approved and is never used to skip resolution.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    cost = db.Column(db.Numeric(10, 2), nullable=True)

    has_discounts = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price": money_str(self.price),
            "cost": money_str(self.cost),
            "has_discounts": self.has_discounts,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
