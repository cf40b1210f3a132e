# Overview: HTTP client a terminal uses to reach the ledger server (httpx, bounded timeouts).

from __future__ import annotations

from typing import Any

import httpx


class ServerUnavailable(Exception):
    """Network failure, timeout or 5xx: the request may succeed later."""


class LedgerRejected(Exception):
    """4xx: the server refused the request; retrying unchanged will not help."""

    def __init__(self, message: str, status_code: int, payload: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class LedgerClient:
    def __init__(self, base_url: str, *, timeout: float = 5.0, transport: httpx.BaseTransport | None = None):
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise ServerUnavailable(f"{method} {path} failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 500:
            raise ServerUnavailable(f"{method} {path} returned {response.status_code}")
        if response.status_code >= 400:
            raise LedgerRejected(
                payload.get("error") or f"{method} {path} returned {response.status_code}",
                response.status_code,
                payload,
            )
        return payload

    def create_sale(self, sale_data: dict, items: list[dict], offline_id: str) -> dict:
        payload = self._request("POST", "/api/sales", json={
            "sale_data": sale_data,
            "items": items,
            "offline_id": offline_id,
        })
        return payload["sale"]

    def upload_pending(self, offline_id: str, sale_data: dict, items: list[dict], schema_version: int) -> dict:
        payload = self._request("POST", "/api/pos/pending", json={
            "offline_id": offline_id,
            "sale_data": sale_data,
            "items": items,
            "schema_version": schema_version,
        })
        return payload["pending_sale"]

    def sync_pending(self, offline_ids: list[str]) -> list[dict]:
        payload = self._request("POST", "/api/pos/sync-pending", json={"offline_ids": offline_ids})
        return payload["results"]
