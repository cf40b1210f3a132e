# Overview: Versioned payload schemas for sales queued on offline terminals.

"""
Terminals can sit offline across an upgrade, so a queued sale may have been
written by an older terminal build. Every payload carries schema_version and
is upgraded one version at a time before it is replayed.

VERSIONS:
- 1: early terminals; camelCase keys, money as decimal strings ("150.00")
     {"customerName", "customerPhone", "amountPaid", "paymentMethod", "dueDate", "notes"}
     items: {"colorId", "quantity", "rate"}
- 2: current; snake_case keys, money in cents
     {"customer_name", "customer_phone", "amount_paid_cents", "payment_method", "due_date", "notes"}
     items: {"color_id", "quantity", "rate_cents"}
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from ..validation import ValidationError


CURRENT_SCHEMA_VERSION = 2


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("Expected an integer, got a boolean")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"Expected an integer, got {value!r}")


def _to_cents(value: Any) -> int | None:
    if value is None or value == "":
        return None
    text = str(value).strip().replace(",", "")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValidationError(f"Expected a money amount, got {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Expected a money amount, got {value!r}")
    return int((amount * 100).quantize(Decimal("1")))


class BasePayloadSchema:
    version: int = 0

    def upgrade_sale(self, sale_data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def upgrade_item(self, item: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class V1PayloadSchema(BasePayloadSchema):
    """camelCase + decimal money -> v2."""
    version = 1

    def upgrade_sale(self, sale_data: dict[str, Any]) -> dict[str, Any]:
        return {
            "customer_name": _to_text(sale_data.get("customerName")),
            "customer_phone": _to_text(sale_data.get("customerPhone")),
            "amount_paid_cents": _to_cents(sale_data.get("amountPaid")) or 0,
            "payment_method": _to_text(sale_data.get("paymentMethod")),
            "due_date": _to_text(sale_data.get("dueDate")),
            "notes": _to_text(sale_data.get("notes")),
        }

    def upgrade_item(self, item: dict[str, Any]) -> dict[str, Any]:
        return {
            "color_id": _to_text(item.get("colorId")),
            "quantity": _to_int(item.get("quantity")),
            "rate_cents": _to_cents(item.get("rate")),
        }


UPGRADERS: dict[int, BasePayloadSchema] = {
    1: V1PayloadSchema(),
}


def upgrade_payload(
    schema_version: int,
    sale_data: dict[str, Any],
    items: list[dict[str, Any]],
) -> tuple[int, dict[str, Any], list[dict[str, Any]]]:
    """Bring a queued payload up to CURRENT_SCHEMA_VERSION."""
    if not isinstance(schema_version, int) or schema_version < 1:
        raise ValidationError(f"Invalid schema_version: {schema_version!r}")
    if schema_version > CURRENT_SCHEMA_VERSION:
        raise ValidationError(
            f"schema_version {schema_version} is newer than this server supports ({CURRENT_SCHEMA_VERSION})"
        )
    if not isinstance(sale_data, dict) or not isinstance(items, list):
        raise ValidationError("sale_data must be an object and items a list")

    version = schema_version
    while version < CURRENT_SCHEMA_VERSION:
        upgrader = UPGRADERS[version]
        sale_data = upgrader.upgrade_sale(sale_data)
        items = [upgrader.upgrade_item(item) for item in items]
        version += 1
    return version, sale_data, items
