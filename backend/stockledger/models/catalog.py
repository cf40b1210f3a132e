from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from stockledger.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """Top of the catalog tree: a company's product line."""
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company = db.Column(db.String(120), nullable=False)
    product_name = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company": self.company,
            "product_name": self.product_name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Variant(db.Model):
    """A packing size of a product with its list rate."""
    __tablename__ = "variants"
    __table_args__ = (
        db.Index("ix_variants_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)
    packing_size = db.Column(db.String(64), nullable=False)
    rate_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "packing_size": self.packing_size,
            "rate_cents": self.rate_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Color(db.Model):
    """
    Sellable unit: a color of a variant.

    WHY: stock_quantity is a materialized counter. The stock-in/stock-out
    history tables are the source of truth, and stock_service.reconcile()
    rewrites this column when the two disagree.
    """
    __tablename__ = "colors"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_colors_stock_non_negative"),
        db.Index("ix_colors_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    variant_id = db.Column(db.String(36), db.ForeignKey("variants.id"), nullable=False, index=True)
    color_name = db.Column(db.String(120), nullable=False)
    color_code = db.Column(db.String(32), nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    rate_override_cents = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    variant = db.relationship("Variant", backref=db.backref("colors", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "color_name": self.color_name,
            "color_code": self.color_code,
            "stock_quantity": self.stock_quantity,
            "rate_override_cents": self.rate_override_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
