"""Dual-write persistence gateway.

Every mutation lands in the local store first and is then mirrored to the
remote store when one is configured. Remote failures never undo the local
write: they are logged and reported back through ``SyncResult``. Reads prefer
the remote store and fall back to the local copy; the two are never merged.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, Optional, TypeVar

import structlog

from .errors import ValidationError
from .models import Record
from .pricing import DEFAULT_RATES
from .settings import AppConfig
from .storage import LocalStore, RemoteStore, RestRemoteStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Collection:
    """One entity kind: remote table name, local storage key and identity field.

    Collections with ``mirrored=False`` never leave the local store.
    """

    name: str
    storage_key: str
    identity_field: str = "id"
    order_by: Optional[str] = None
    mirrored: bool = True


RATES = Collection("rates", "logitrack_rates", identity_field="category")
REQUESTS = Collection("requests", "logitrack_requests", order_by="created_at")
DRIVERS = Collection("drivers", "logitrack_drivers", order_by="created_at")
CLIENTS = Collection("clients", "logitrack_clients", order_by="created_at")
EXPENSES = Collection("expenses", "logitrack_expenses", order_by="date")
USERS = Collection("users", "logitrack_users", mirrored=False)
CONTRACTS = Collection("contracts", "logitrack_contracts", order_by="created_at")
TRANSACTIONS = Collection("transactions", "logitrack_transactions", order_by="date")


@dataclass(frozen=True)
class SyncResult:
    """Outcome of the remote half of a write; the local half always succeeded."""

    remote_ok: bool
    attempted: bool
    message: str = ""

    @classmethod
    def local_only(cls) -> "SyncResult":
        return cls(remote_ok=True, attempted=False)

    @property
    def warning(self) -> Optional[str]:
        return None if self.remote_ok else self.message


class PersistenceGateway:
    """Local-first store with a best-effort remote mirror."""

    def __init__(self, local: LocalStore, remote: Optional[RemoteStore] = None) -> None:
        self.local = local
        self.remote = remote
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig) -> "PersistenceGateway":
        remote: Optional[RemoteStore] = None
        if config.remote_enabled:
            remote = RestRemoteStore(config.remote_url, config.remote_key, config.remote_timeout_s)
        return cls(LocalStore(config.database_path), remote)

    @property
    def remote_configured(self) -> bool:
        return self.remote is not None

    def _lock_for(self, storage_key: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(storage_key)
            if lock is None:
                lock = threading.RLock()
                self._locks[storage_key] = lock
            return lock

    def _mirror(self, action: str, collection: Collection, call: Callable[[], Any]) -> SyncResult:
        if self.remote is None or not collection.mirrored:
            return SyncResult.local_only()
        try:
            call()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(
                "remote_write_failed", action=action, collection=collection.name, error=str(exc)
            )
            return SyncResult(
                remote_ok=False,
                attempted=True,
                message=f"Saved locally; remote sync of {collection.name} failed ({action}): {exc}",
            )
        return SyncResult(remote_ok=True, attempted=True)

    # Writes --------------------------------------------------------------
    def add(self, collection: Collection, record: Mapping[str, Any]) -> SyncResult:
        item = dict(record)
        with self._lock_for(collection.storage_key):
            current = self.local.read(collection.storage_key)
            self.local.write(collection.storage_key, [item, *current])
        return self._mirror("insert", collection, lambda: self.remote.insert(collection.name, item))

    def update(
        self,
        collection: Collection,
        record: Mapping[str, Any],
        identity_field: Optional[str] = None,
    ) -> SyncResult:
        key_field = identity_field or collection.identity_field
        item = dict(record)
        key = item.get(key_field)
        if key is None:
            raise ValidationError(f"Cannot update {collection.name}: record has no {key_field}.")
        with self._lock_for(collection.storage_key):
            current = self.local.read(collection.storage_key)
            found = any(existing.get(key_field) == key for existing in current)
            if found:
                updated = [item if existing.get(key_field) == key else existing for existing in current]
                self.local.write(collection.storage_key, updated)
            else:
                logger.debug("record_not_found", action="update", collection=collection.name, key=key)
        return self._mirror(
            "update", collection, lambda: self.remote.update(collection.name, item, key_field)
        )

    def delete(self, collection: Collection, record_id: str) -> SyncResult:
        key_field = collection.identity_field
        with self._lock_for(collection.storage_key):
            current = self.local.read(collection.storage_key)
            remaining = [existing for existing in current if existing.get(key_field) != record_id]
            if len(remaining) != len(current):
                self.local.write(collection.storage_key, remaining)
            else:
                logger.debug(
                    "record_not_found", action="delete", collection=collection.name, key=record_id
                )
        return self._mirror(
            "delete", collection, lambda: self.remote.delete(collection.name, key_field, record_id)
        )

    def upsert_many(self, collection: Collection, records: list[Mapping[str, Any]]) -> SyncResult:
        """Make both stores hold ``records``: matching rows are replaced, missing ones appended.

        The remote side reads the table once, inserts rows it lacks and patches
        rows that differ, so an empty remote table gets the full set.
        """

        key_field = collection.identity_field
        items = [dict(record) for record in records]
        if any(item.get(key_field) is None for item in items):
            raise ValidationError(f"Cannot upsert {collection.name}: a record has no {key_field}.")
        with self._lock_for(collection.storage_key):
            current = self.local.read(collection.storage_key)
            incoming = {item[key_field]: item for item in items}
            merged = [incoming.pop(existing.get(key_field), existing) for existing in current]
            self.local.write(collection.storage_key, [*merged, *incoming.values()])

        def _sync_remote() -> None:
            remote_rows = {
                row.get(key_field): row
                for row in self.remote.select(collection.name, collection.order_by)
            }
            for item in items:
                existing = remote_rows.get(item[key_field])
                if existing is None:
                    self.remote.insert(collection.name, item)
                elif existing != item:
                    self.remote.update(collection.name, item, key_field)

        return self._mirror("upsert", collection, _sync_remote)

    def seed(self, collection: Collection, records: list[Mapping[str, Any]]) -> bool:
        """Write ``records`` locally if the collection was never stored. Returns True when seeded."""

        with self._lock_for(collection.storage_key):
            if self.local.has(collection.storage_key):
                return False
            self.local.write(collection.storage_key, [dict(record) for record in records])
        logger.info("collection_seeded", collection=collection.name, count=len(records))
        return True

    # Reads ---------------------------------------------------------------
    def fetch_all(self, collection: Collection) -> list[dict[str, Any]]:
        if self.remote is not None and collection.mirrored:
            try:
                return self.remote.select(collection.name, collection.order_by)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning(
                    "remote_read_failed_fallback_local", collection=collection.name, error=str(exc)
                )
        with self._lock_for(collection.storage_key):
            return self.local.read(collection.storage_key)

    def fetch_rates(self) -> list[dict[str, Any]]:
        """Rate records from the remote, else the local copy, else the built-in defaults."""

        records = self.fetch_all(RATES)
        if not records and self.remote is not None:
            with self._lock_for(RATES.storage_key):
                records = self.local.read(RATES.storage_key)
        if records:
            return records
        return [entry.to_record() for entry in DEFAULT_RATES]


RecordT = TypeVar("RecordT", bound=Record)


class Repository(Generic[RecordT]):
    """Typed view of one collection that converts dataclasses to records and back."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        collection: Collection,
        record_type: type[RecordT],
    ) -> None:
        self.gateway = gateway
        self.collection = collection
        self.record_type = record_type

    def add(self, item: RecordT) -> SyncResult:
        return self.gateway.add(self.collection, item.to_record())

    def update(self, item: RecordT) -> SyncResult:
        return self.gateway.update(self.collection, item.to_record())

    def delete(self, item_id: str) -> SyncResult:
        return self.gateway.delete(self.collection, item_id)

    def all(self) -> list[RecordT]:
        return [self.record_type.from_record(record) for record in self.gateway.fetch_all(self.collection)]

    def get(self, item_id: str) -> Optional[RecordT]:
        key_field = self.collection.identity_field
        for item in self.all():
            if getattr(item, key_field, None) == item_id:
                return item
        return None


__all__ = [
    "CLIENTS",
    "CONTRACTS",
    "Collection",
    "DRIVERS",
    "EXPENSES",
    "PersistenceGateway",
    "RATES",
    "REQUESTS",
    "Repository",
    "SyncResult",
    "TRANSACTIONS",
    "USERS",
]
