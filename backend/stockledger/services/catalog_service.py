# Overview: Minimal catalog operations (product, variant, color) and cached rate lookups.

from __future__ import annotations

from ..cache import get_cache
from ..extensions import db
from ..models import Product, Variant, Color
from ..validation import (
    NotFoundError,
    ValidationError,
    optional_text,
    require_amount_cents,
    require_text,
)
from .concurrency import begin_immediate, run_with_retry


def _rate_key(color_id: str) -> str:
    return f"rate:{color_id}"


def create_product(company: str, product_name: str) -> Product:
    def _op():
        product = Product(
            company=require_text(company, "company", max_length=120),
            product_name=require_text(product_name, "product_name", max_length=120),
        )
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def create_variant(product_id: str, packing_size: str, rate_cents: int) -> Variant:
    def _op():
        if not db.session.get(Product, product_id):
            raise NotFoundError(f"Product {product_id} not found")
        variant = Variant(
            product_id=product_id,
            packing_size=require_text(packing_size, "packing_size", max_length=64),
            rate_cents=require_amount_cents(rate_cents, "rate_cents", allow_zero=True),
        )
        db.session.add(variant)
        db.session.commit()
        return variant

    return run_with_retry(_op)


def create_color(
    variant_id: str,
    color_name: str,
    color_code: str,
    stock_quantity: int = 0,
    rate_override_cents: int | None = None,
) -> Color:
    """
    Create a color. Opening stock is booked as a stock-in row so the
    history ledger explains the counter from the very first row.
    """
    from .stock_service import apply_stock_in_locked

    if isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int) or stock_quantity < 0:
        raise ValidationError("stock_quantity must be a non-negative integer")
    if rate_override_cents is not None:
        require_amount_cents(rate_override_cents, "rate_override_cents", allow_zero=True)

    def _op():
        begin_immediate()
        if not db.session.get(Variant, variant_id):
            raise NotFoundError(f"Variant {variant_id} not found")
        color = Color(
            variant_id=variant_id,
            color_name=require_text(color_name, "color_name", max_length=120),
            color_code=require_text(color_code, "color_code", max_length=32),
            stock_quantity=0,
            rate_override_cents=rate_override_cents,
        )
        db.session.add(color)
        db.session.flush()
        if stock_quantity > 0:
            apply_stock_in_locked(color, stock_quantity, notes="Opening stock")
        db.session.commit()
        return color

    return run_with_retry(_op)


def get_color(color_id: str) -> Color:
    color = db.session.get(Color, color_id)
    if not color:
        raise NotFoundError(f"Color {color_id} not found")
    return color


def set_rate_override(color_id: str, rate_override_cents: int | None) -> Color:
    if rate_override_cents is not None:
        require_amount_cents(rate_override_cents, "rate_override_cents", allow_zero=True)

    def _op():
        color = get_color(color_id)
        color.rate_override_cents = rate_override_cents
        db.session.commit()
        return color

    color = run_with_retry(_op)
    get_cache().invalidate(_rate_key(color_id))
    return color


def update_variant_rate(variant_id: str, rate_cents: int) -> Variant:
    require_amount_cents(rate_cents, "rate_cents", allow_zero=True)

    def _op():
        variant = db.session.get(Variant, variant_id)
        if not variant:
            raise NotFoundError(f"Variant {variant_id} not found")
        variant.rate_cents = rate_cents
        db.session.commit()
        return variant

    variant = run_with_retry(_op)
    # Every color of the variant may inherit this rate
    get_cache().invalidate_prefix("rate:")
    return variant


def get_effective_rate_cents(color_id: str) -> int:
    """rate_override_cents when set, otherwise the variant's rate (cached)."""
    def _load():
        color = get_color(color_id)
        if color.rate_override_cents is not None:
            return color.rate_override_cents
        return color.variant.rate_cents

    return get_cache().get_or_set(_rate_key(color_id), _load)


def search_colors(query: str | None = None, limit: int = 50) -> list[Color]:
    q = db.session.query(Color)
    text = optional_text(query, "query")
    if text:
        like = f"%{text}%"
        q = q.filter((Color.color_name.ilike(like)) | (Color.color_code.ilike(like)))
    return q.order_by(Color.color_code.asc()).limit(limit).all()
