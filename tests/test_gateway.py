from pathlib import Path
from typing import Any, Optional

import pytest

from logitrack.errors import RemoteStoreError, ValidationError
from logitrack.gateway import DRIVERS, RATES, REQUESTS, USERS, PersistenceGateway, Repository
from logitrack.models import Driver
from logitrack.pricing import DEFAULT_RATES
from logitrack.storage import LocalStore, RemoteStore


class _FailingRemote(RemoteStore):
    def __init__(self) -> None:
        self.calls = 0

    def _fail(self, *args: Any, **kwargs: Any) -> Any:  # noqa: ARG002
        self.calls += 1
        raise RemoteStoreError("remote unreachable")

    insert = update = delete = select = _fail


class _RecordingRemote(RemoteStore):
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.operations: list[tuple[str, str]] = []

    def insert(self, table: str, record: dict[str, Any]) -> None:
        self.operations.append(("insert", table))
        self.tables.setdefault(table, []).insert(0, dict(record))

    def update(self, table: str, record: dict[str, Any], key_field: str) -> None:
        self.operations.append(("update", table))
        rows = self.tables.setdefault(table, [])
        self.tables[table] = [
            dict(record) if row.get(key_field) == record.get(key_field) else row for row in rows
        ]

    def delete(self, table: str, key_field: str, value: str) -> None:
        self.operations.append(("delete", table))
        rows = self.tables.setdefault(table, [])
        self.tables[table] = [row for row in rows if row.get(key_field) != value]

    def select(self, table: str, order_by: Optional[str] = None) -> list[dict[str, Any]]:  # noqa: ARG002
        self.operations.append(("select", table))
        return [dict(row) for row in self.tables.get(table, [])]


@pytest.fixture
def local_store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "logitrack.db")


def test_add_then_fetch_returns_most_recent_first(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store)

    for index in range(3):
        result = gateway.add(REQUESTS, {"id": f"r{index}", "client_name": f"Client {index}"})
        assert result.attempted is False
        assert result.warning is None

    records = gateway.fetch_all(REQUESTS)

    assert [record["id"] for record in records] == ["r2", "r1", "r0"]


def test_update_is_idempotent(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store)
    gateway.add(DRIVERS, {"id": "d1", "name": "Ana"})
    gateway.add(DRIVERS, {"id": "d2", "name": "Bruno"})

    gateway.update(DRIVERS, {"id": "d1", "name": "Ana Paula"})
    once = gateway.fetch_all(DRIVERS)
    gateway.update(DRIVERS, {"id": "d1", "name": "Ana Paula"})
    twice = gateway.fetch_all(DRIVERS)

    assert once == twice
    assert {"id": "d1", "name": "Ana Paula"} in twice


def test_update_with_unknown_id_is_a_noop(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store)
    gateway.add(DRIVERS, {"id": "d1", "name": "Ana"})
    before = gateway.fetch_all(DRIVERS)

    result = gateway.update(DRIVERS, {"id": "missing", "name": "Ghost"})

    assert result.remote_ok is True
    assert gateway.fetch_all(DRIVERS) == before


def test_delete_removes_only_matching_record(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store)
    gateway.add(DRIVERS, {"id": "d1", "name": "Ana"})
    gateway.add(DRIVERS, {"id": "d2", "name": "Bruno"})

    gateway.delete(DRIVERS, "d1")
    gateway.delete(DRIVERS, "not-there")

    assert gateway.fetch_all(DRIVERS) == [{"id": "d2", "name": "Bruno"}]


def test_fetch_all_falls_back_to_local_when_remote_fails(local_store: LocalStore) -> None:
    remote = _FailingRemote()
    gateway = PersistenceGateway(local_store, remote)

    gateway.add(DRIVERS, {"id": "d1", "name": "Ana"})
    records = gateway.fetch_all(DRIVERS)

    assert records == [{"id": "d1", "name": "Ana"}]
    assert remote.calls == 2


def test_write_failure_keeps_local_copy_and_reports_warning(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store, _FailingRemote())

    result = gateway.add(DRIVERS, {"id": "d1", "name": "Ana"})

    assert result.attempted is True
    assert result.remote_ok is False
    assert result.warning is not None and "remote unreachable" in result.warning
    assert local_store.read(DRIVERS.storage_key) == [{"id": "d1", "name": "Ana"}]


def test_remote_results_are_preferred_and_never_merged(local_store: LocalStore) -> None:
    remote = _RecordingRemote()
    gateway = PersistenceGateway(local_store, remote)
    local_store.write(DRIVERS.storage_key, [{"id": "local-only", "name": "Local"}])

    assert gateway.fetch_all(DRIVERS) == []

    gateway.add(DRIVERS, {"id": "d1", "name": "Ana"})
    assert gateway.fetch_all(DRIVERS) == [{"id": "d1", "name": "Ana"}]
    assert ("insert", "drivers") in remote.operations


def test_rates_use_identity_field_category(local_store: LocalStore) -> None:
    remote = _RecordingRemote()
    gateway = PersistenceGateway(local_store, remote)
    defaults = [entry.to_record() for entry in DEFAULT_RATES]
    remote.tables["rates"] = [dict(record) for record in defaults]
    gateway.seed(RATES, defaults)

    gateway.update(RATES, {**defaults[1], "base_fee": 9.0})

    remote_carro = next(row for row in remote.tables["rates"] if row["category"] == "CARRO")
    local_carro = next(
        row for row in local_store.read(RATES.storage_key) if row["category"] == "CARRO"
    )
    assert remote_carro["base_fee"] == 9.0
    assert local_carro["base_fee"] == 9.0


def test_fetch_rates_substitutes_defaults_on_first_boot(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store)

    records = gateway.fetch_rates()

    assert [record["category"] for record in records] == ["MOTO", "CARRO", "UTILITARIO", "CAMINHAO"]


def test_seed_only_writes_once(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store)

    assert gateway.seed(DRIVERS, [{"id": "d1"}]) is True
    assert gateway.seed(DRIVERS, [{"id": "d2"}]) is False
    assert gateway.fetch_all(DRIVERS) == [{"id": "d1"}]


def test_repository_round_trips_dataclasses(local_store: LocalStore) -> None:
    repository = Repository(PersistenceGateway(local_store), DRIVERS, Driver)
    driver = Driver(
        name="Carla",
        tax_id="123.456.789-00",
        address="Rua A, 1",
        phone="11 99999-0000",
        vehicle_category="MOTO",
        plate="ABC1D23",
    )

    repository.add(driver)

    assert repository.all() == [driver]
    assert repository.get(driver.id) == driver
    assert repository.get("missing") is None


def test_local_store_ignores_corrupt_payload(local_store: LocalStore) -> None:
    with local_store._connect() as conn:  # pylint: disable=protected-access
        conn.execute(
            "INSERT INTO collections (storage_key, payload, updated_at) VALUES (?, ?, ?)",
            ("logitrack_drivers", "{not json", "2024-01-01T00:00:00+00:00"),
        )
        conn.commit()

    assert local_store.has("logitrack_drivers") is True
    assert local_store.read("logitrack_drivers") == []


def test_unmirrored_collections_stay_local(local_store: LocalStore) -> None:
    remote = _RecordingRemote()
    gateway = PersistenceGateway(local_store, remote)

    result = gateway.add(USERS, {"id": "u1", "username": "maria"})

    assert result.attempted is False
    assert gateway.fetch_all(USERS) == [{"id": "u1", "username": "maria"}]
    assert remote.operations == []


def test_upsert_many_fills_an_empty_remote_table(local_store: LocalStore) -> None:
    remote = _RecordingRemote()
    gateway = PersistenceGateway(local_store, remote)
    records = [entry.to_record() for entry in DEFAULT_RATES]
    records[1] = {**records[1], "base_fee": 9.0}

    result = gateway.upsert_many(RATES, records)

    assert result.remote_ok is True
    assert sorted(row["category"] for row in remote.tables["rates"]) == sorted(
        record["category"] for record in records
    )
    assert local_store.read(RATES.storage_key) == records

    gateway.upsert_many(RATES, records)
    assert remote.operations.count(("insert", "rates")) == len(records)
    assert ("update", "rates") not in remote.operations


def test_fetch_rates_uses_local_copy_when_remote_table_is_empty(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store, _RecordingRemote())
    local_store.write(RATES.storage_key, [{**DEFAULT_RATES[0].to_record(), "base_fee": 7.0}])

    records = gateway.fetch_rates()

    assert [record["base_fee"] for record in records] == [7.0]


def test_update_without_identity_is_rejected(local_store: LocalStore) -> None:
    gateway = PersistenceGateway(local_store)
    gateway.add(DRIVERS, {"name": "No id"})

    with pytest.raises(ValidationError):
        gateway.update(DRIVERS, {"name": "Replaced"})

    assert gateway.fetch_all(DRIVERS) == [{"name": "No id"}]


def test_partial_remote_store_cannot_be_instantiated() -> None:
    class _InsertOnly(RemoteStore):
        def insert(self, table: str, record: dict[str, Any]) -> None:
            pass

    with pytest.raises(TypeError):
        _InsertOnly()  # pylint: disable=abstract-class-instantiated
