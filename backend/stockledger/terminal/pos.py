# Overview: POS terminal checkout with offline fallback and background upload of queued sales.

"""
POS Terminal

WHY: The counter keeps selling when the server or the network is down. A
checkout that cannot reach the server is written to the local store and the
cart is cleared as if it had gone through; the queued sale is uploaded later.

DESIGN PRINCIPLES:
- Every checkout gets an offline_id before the first network call, so an
  online attempt that timed out after the server committed is not sold twice
  when the same sale is replayed from the queue
- ServerUnavailable queues the sale; LedgerRejected (validation, stock) is
  shown to the cashier and the cart is kept
- Only one sync pass runs at a time per terminal
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import httpx

from stockledger.ids import new_offline_id
from stockledger.services.offline_schemas import CURRENT_SCHEMA_VERSION
from .client import LedgerClient, LedgerRejected, ServerUnavailable
from .config import TerminalConfig
from .local_store import FAILED, LocalStore, PENDING, SYNCED


logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "completed"
CHECKOUT_QUEUED = "queued"


@dataclass
class CheckoutResult:
    status: str
    offline_id: str
    sale: dict | None = None


class PosTerminal:
    def __init__(self, store: LocalStore, client: LedgerClient, config: TerminalConfig | None = None):
        self.store = store
        self.client = client
        self.config = config or TerminalConfig()
        self._sync_lock = threading.Lock()
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None

    @classmethod
    def from_config(cls, config: TerminalConfig, *,
                    transport: httpx.BaseTransport | None = None) -> PosTerminal:
        """Open the local store and the server client a TerminalConfig describes."""
        store = LocalStore(config.local_db_path)
        client = LedgerClient(config.server_url, timeout=config.request_timeout, transport=transport)
        return cls(store, client, config)

    def close(self) -> None:
        self.stop_background_sync(timeout=self.config.request_timeout)
        self.client.close()
        self.store.close()

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def _build_payload(self, amount_paid_cents: int, payment_method: str, notes: str | None):
        cart = self.store.get_cart()
        if not cart:
            raise ValueError("Cart is empty")
        customer = self.store.get_customer()
        sale_data = {
            "customer_name": customer["customer_name"],
            "customer_phone": customer["customer_phone"],
            "amount_paid_cents": amount_paid_cents,
            "payment_method": payment_method,
            "notes": notes,
        }
        items = []
        for line in cart:
            item = {"color_id": line["color_id"], "quantity": line["quantity"]}
            if line["rate_cents"] is not None:
                item["rate_cents"] = line["rate_cents"]
            items.append(item)
        return sale_data, items

    def checkout(self, amount_paid_cents: int = 0, payment_method: str = "cash",
                 notes: str | None = None) -> CheckoutResult:
        """
        Submit the cart. Returns a completed result with the server's sale, or a
        queued result when the server could not be reached.

        Raises LedgerRejected when the server refused the sale; the cart is kept.
        """
        sale_data, items = self._build_payload(amount_paid_cents, payment_method, notes)
        offline_id = new_offline_id()

        try:
            sale = self.client.create_sale(sale_data, items, offline_id)
        except ServerUnavailable as exc:
            logger.warning("Server unavailable, queueing sale %s: %s", offline_id, exc)
            self.store.add_pending(offline_id, sale_data, items, CURRENT_SCHEMA_VERSION)
            self._reset_counter()
            return CheckoutResult(status=CHECKOUT_QUEUED, offline_id=offline_id)

        self._reset_counter()
        return CheckoutResult(status=CHECKOUT_COMPLETED, offline_id=offline_id, sale=sale)

    def _reset_counter(self) -> None:
        self.store.clear_cart()
        self.store.clear_customer()

    # =========================================================================
    # SYNC
    # =========================================================================

    def sync_pending(self) -> dict:
        """
        Upload every pending sale, ask the server to replay them, and record the
        outcome locally. Returns counts by outcome.
        """
        summary = {"synced": 0, "failed": 0, "pending": 0, "skipped": False}
        if not self._sync_lock.acquire(blocking=False):
            summary["skipped"] = True
            return summary
        try:
            entries = self.store.list_pending(PENDING)
            if not entries:
                return summary

            uploaded = []
            for entry in entries:
                try:
                    self.client.upload_pending(
                        entry["offline_id"], entry["sale_data"], entry["items"], entry["schema_version"],
                    )
                    uploaded.append(entry["offline_id"])
                except LedgerRejected as exc:
                    self.store.record_attempt(entry["offline_id"], str(exc), failed=True)
                    summary["failed"] += 1
                except ServerUnavailable as exc:
                    logger.info("Server unavailable during upload; %s sales stay queued", len(entries))
                    self.store.record_attempt(entry["offline_id"], str(exc))
                    summary["pending"] += len(entries) - len(uploaded) - summary["failed"]
                    break

            if not uploaded:
                return summary

            try:
                results = self.client.sync_pending(uploaded)
            except (ServerUnavailable, LedgerRejected) as exc:
                logger.warning("Replay request failed: %s", exc)
                for offline_id in uploaded:
                    self.store.record_attempt(offline_id, str(exc))
                summary["pending"] += len(uploaded)
                return summary

            for result in results:
                status = result.get("status")
                if status == SYNCED:
                    self.store.mark_synced(result["offline_id"], result.get("sale_id"))
                    summary["synced"] += 1
                elif status == FAILED:
                    self.store.record_attempt(result["offline_id"], result.get("error") or "rejected", failed=True)
                    summary["failed"] += 1
                else:
                    self.store.record_attempt(result["offline_id"], result.get("error") or "not replayed")
                    summary["pending"] += 1
            return summary
        finally:
            self._sync_lock.release()

    def sync_in_background(self) -> threading.Thread | None:
        """Start one sync pass on a daemon thread unless one is already running."""
        if self._sync_lock.locked():
            return None
        thread = threading.Thread(target=self._safe_sync, name="pos-sync", daemon=True)
        thread.start()
        return thread

    def _safe_sync(self) -> None:
        try:
            result = self.sync_pending()
            if result["synced"] or result["failed"]:
                logger.info("Offline sync: %s", result)
        except Exception:
            logger.exception("Offline sync pass failed")

    def start_background_sync(self, interval: float | None = None) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        if interval is None:
            interval = self.config.sync_interval
        self._stop.clear()

        def _loop():
            while not self._stop.wait(interval):
                self._safe_sync()

        self._worker = threading.Thread(target=_loop, name="pos-sync-loop", daemon=True)
        self._worker.start()

    def stop_background_sync(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None
