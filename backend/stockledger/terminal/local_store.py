# Overview: Durable terminal-local store (cart, customer, queued sales) on SQLite via SQLAlchemy Core.

"""
Local Store

WHY: A terminal must survive a restart or crash while offline without losing
the open cart or any sale it already took. Everything lives in a local SQLite
file and is read back on startup before any network call.

TABLES:
- cart_items: the open cart, in insertion order
- customer: single row with the current customer's name and phone
- pending_sales: sales taken while the server was unreachable
  (pending -> synced | failed, attempts, last_error, synced_sale_id)
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)

from stockledger.time_utils import utcnow


PENDING = "pending"
SYNCED = "synced"
FAILED = "failed"

metadata = MetaData()

cart_items = Table(
    "cart_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("color_id", String(36), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("rate_cents", Integer, nullable=True),
    Column("label", String(255), nullable=True),
)

customer = Table(
    "customer",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("customer_name", String(120), nullable=True),
    Column("customer_phone", String(32), nullable=True),
)

pending_sales = Table(
    "pending_sales",
    metadata,
    Column("offline_id", String(64), primary_key=True),
    Column("schema_version", Integer, nullable=False),
    Column("sale_data", JSON, nullable=False),
    Column("items", JSON, nullable=False),
    Column("status", String(16), nullable=False, default=PENDING),
    Column("attempts", Integer, nullable=False, default=0),
    Column("last_error", Text, nullable=True),
    Column("synced_sale_id", String(36), nullable=True),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
)


class LocalStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self.engine = create_engine(f"sqlite:///{db_path}", connect_args={"timeout": 30})
        metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # =========================================================================
    # CART
    # =========================================================================

    def add_to_cart(self, color_id: str, quantity: int, rate_cents: int | None = None,
                    label: str | None = None) -> int:
        """Add a line, or bump the quantity of an existing line for the same color and rate."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(cart_items.c.id, cart_items.c.quantity).where(
                    cart_items.c.color_id == color_id,
                    cart_items.c.rate_cents.is_(None) if rate_cents is None else cart_items.c.rate_cents == rate_cents,
                )
            ).first()
            if existing:
                conn.execute(
                    update(cart_items)
                    .where(cart_items.c.id == existing.id)
                    .values(quantity=existing.quantity + quantity)
                )
                return existing.id
            result = conn.execute(insert(cart_items).values(
                color_id=color_id, quantity=quantity, rate_cents=rate_cents, label=label,
            ))
            return result.inserted_primary_key[0]

    def update_cart_quantity(self, line_id: int, quantity: int) -> None:
        with self.engine.begin() as conn:
            if quantity <= 0:
                conn.execute(delete(cart_items).where(cart_items.c.id == line_id))
            else:
                conn.execute(update(cart_items).where(cart_items.c.id == line_id).values(quantity=quantity))

    def remove_from_cart(self, line_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(cart_items).where(cart_items.c.id == line_id))

    def get_cart(self) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(cart_items).order_by(cart_items.c.id.asc()))
            return [dict(row._mapping) for row in rows]

    def clear_cart(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(cart_items))

    # =========================================================================
    # CUSTOMER
    # =========================================================================

    def set_customer(self, customer_name: str | None, customer_phone: str | None) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(customer))
            conn.execute(insert(customer).values(
                id=1, customer_name=customer_name, customer_phone=customer_phone,
            ))

    def get_customer(self) -> dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(select(customer).where(customer.c.id == 1)).first()
        if row is None:
            return {"customer_name": None, "customer_phone": None}
        return {"customer_name": row.customer_name, "customer_phone": row.customer_phone}

    def clear_customer(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(customer))

    # =========================================================================
    # PENDING SALES
    # =========================================================================

    def add_pending(self, offline_id: str, sale_data: dict, items: list[dict], schema_version: int) -> None:
        """Queue a sale; a repeated offline_id is ignored."""
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(pending_sales.c.offline_id).where(pending_sales.c.offline_id == offline_id)
            ).first()
            if exists:
                return
            conn.execute(insert(pending_sales).values(
                offline_id=offline_id,
                schema_version=schema_version,
                sale_data=sale_data,
                items=items,
                status=PENDING,
                attempts=0,
            ))

    def get_pending(self, offline_id: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(pending_sales).where(pending_sales.c.offline_id == offline_id)).first()
        return dict(row._mapping) if row else None

    def list_pending(self, status: str | None = None) -> list[dict[str, Any]]:
        stmt = select(pending_sales).order_by(pending_sales.c.created_at.asc())
        if status:
            stmt = stmt.where(pending_sales.c.status == status)
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    def count_pending(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(pending_sales).where(pending_sales.c.status == PENDING)
            ).scalar_one()

    def mark_synced(self, offline_id: str, sale_id: str | None) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(pending_sales)
                .where(pending_sales.c.offline_id == offline_id)
                .values(
                    status=SYNCED,
                    synced_sale_id=sale_id,
                    last_error=None,
                    attempts=pending_sales.c.attempts + 1,
                )
            )

    def record_attempt(self, offline_id: str, error: str, *, failed: bool = False) -> None:
        """Count an unsuccessful try; failed=True parks the entry for an operator."""
        values = {
            "attempts": pending_sales.c.attempts + 1,
            "last_error": error,
        }
        if failed:
            values["status"] = FAILED
        with self.engine.begin() as conn:
            conn.execute(update(pending_sales).where(pending_sales.c.offline_id == offline_id).values(**values))

    def requeue(self, offline_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(pending_sales)
                .where(pending_sales.c.offline_id == offline_id, pending_sales.c.status == FAILED)
                .values(status=PENDING)
            )

    def delete_pending(self, offline_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(pending_sales).where(pending_sales.c.offline_id == offline_id))
