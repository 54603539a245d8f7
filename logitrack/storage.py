"""Local and remote record stores used by the persistence gateway.

``LocalStore`` is the durable copy: a SQLite file holding one JSON array per
storage key. ``RemoteStore`` describes the keyed record store mirrored on a
best-effort basis; ``RestRemoteStore`` talks to a PostgREST endpoint such as
Supabase.
"""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx

from .errors import RemoteStoreError


class LocalStore:
    """Key-value store of JSON arrays backed by SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        schema = """
        CREATE TABLE IF NOT EXISTS collections (
            storage_key TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS route_cache (
            origin TEXT NOT NULL,
            destination TEXT NOT NULL,
            distance_km REAL NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (origin, destination)
        );
        """
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(schema)
            conn.commit()

    # Collections ---------------------------------------------------------
    def has(self, storage_key: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM collections WHERE storage_key = ?", (storage_key,)
            ).fetchone()
        return row is not None

    def read(self, storage_key: str) -> list[dict[str, Any]]:
        """Return the stored array for ``storage_key`` (empty when never written)."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM collections WHERE storage_key = ?", (storage_key,)
            ).fetchone()
        if row is None:
            return []
        try:
            loaded = json.loads(row["payload"])
        except json.JSONDecodeError:
            return []
        if not isinstance(loaded, list):
            return []
        return [item for item in loaded if isinstance(item, dict)]

    def write(self, storage_key: str, records: list[dict[str, Any]]) -> None:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        payload = json.dumps(records, ensure_ascii=False)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO collections (storage_key, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(storage_key)
                DO UPDATE SET payload=excluded.payload, updated_at=excluded.updated_at
                """,
                (storage_key, payload, timestamp),
            )
            conn.commit()

    # Route cache ---------------------------------------------------------
    def upsert_route_cache(self, origin: str, destination: str, distance_km: float) -> None:
        origin_key = origin.strip()
        destination_key = destination.strip()
        if not origin_key or not destination_key:
            return
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO route_cache (origin, destination, distance_km, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(origin, destination)
                DO UPDATE SET distance_km=excluded.distance_km, updated_at=excluded.updated_at
                """,
                (origin_key, destination_key, float(distance_km), timestamp),
            )
            conn.commit()

    def fetch_route_cache(self, origin: str, destination: str) -> Optional[dict[str, Any]]:
        origin_key = origin.strip()
        destination_key = destination.strip()
        if not origin_key or not destination_key:
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT distance_km, updated_at FROM route_cache WHERE origin = ? AND destination = ?",
                (origin_key, destination_key),
            ).fetchone()
        if row is None:
            return None
        return {
            "distance_km": float(row["distance_km"] or 0.0),
            "updated_at": str(row["updated_at"]),
        }


class RemoteStore(ABC):
    """Keyed record store mirrored by the gateway. Implementations raise ``RemoteStoreError``."""

    @abstractmethod
    def insert(self, table: str, record: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def update(self, table: str, record: dict[str, Any], key_field: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, table: str, key_field: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def select(self, table: str, order_by: Optional[str] = None) -> list[dict[str, Any]]:
        raise NotImplementedError


class RestRemoteStore(RemoteStore):
    """PostgREST (Supabase) client built on ``httpx``."""

    def __init__(self, base_url: str, api_key: str, timeout_s: float = 10.0) -> None:
        if not base_url or not api_key:
            raise ValueError("Remote store URL and API key are required")
        self.base_url = f"{base_url.rstrip('/')}/rest/v1"
        self.api_key = api_key
        self.timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, table: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/{table}"
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))
        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                response = client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteStoreError(
                f"{method} {table} failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{method} {table} failed: {exc}") from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteStoreError(f"{method} {table} returned invalid JSON") from exc

    def insert(self, table: str, record: dict[str, Any]) -> None:
        self._request("POST", table, json=record, headers={"Prefer": "return=minimal"})

    def update(self, table: str, record: dict[str, Any], key_field: str) -> None:
        self._request(
            "PATCH",
            table,
            json=record,
            params={key_field: f"eq.{record.get(key_field)}"},
            headers={"Prefer": "return=minimal"},
        )

    def delete(self, table: str, key_field: str, value: str) -> None:
        self._request("DELETE", table, params={key_field: f"eq.{value}"})

    def select(self, table: str, order_by: Optional[str] = None) -> list[dict[str, Any]]:
        params = {"select": "*"}
        if order_by:
            params["order"] = f"{order_by}.desc"
        payload = self._request("GET", table, params=params)
        if not isinstance(payload, list):
            raise RemoteStoreError(f"GET {table} returned an unexpected payload")
        return [item for item in payload if isinstance(item, dict)]


__all__ = ["LocalStore", "RemoteStore", "RestRemoteStore"]
