from __future__ import annotations

import json
import threading
from decimal import Decimal
from typing import Any

import pytest
import requests

from ngo_accounts.configuration import NGOSettings
from ngo_accounts.errors import DuplicateRecordError, RecordNotFoundError, StoreError, ValidationError
from ngo_accounts.store import (
    EntityType,
    HostedTableStore,
    LocalRecordStore,
    MemoryStorage,
    SessionStateStorage,
    SqliteStorage,
    TableRecordStore,
    create_record_store,
)


def _build_table_store(tmp_path) -> TableRecordStore:  # type: ignore[no-untyped-def]
    store = TableRecordStore(tmp_path / "ngo_accounts_test.db")
    store.init_db()
    return store


def _member(code: str, name: str = "Ana") -> dict[str, Any]:
    return {
        "member_id": code,
        "name": name,
        "email": f"{name.lower()}@example.org",
        "join_date": "2024-01-01",
        "total_savings": 0,
        "total_loans": 0,
        "status": "active",
    }


def test_local_store_round_trip_over_sqlite(tmp_path) -> None:  # type: ignore[no-untyped-def]
    storage = SqliteStorage(tmp_path / "kv.db")
    store = LocalRecordStore(storage)

    created = store.add_record(
        EntityType.DONATIONS,
        {"donor_id": "d1", "donor_name": "Avery", "amount": Decimal("12.50"), "date": "2024-01-15"},
    )
    assert created["id"]
    assert created["amount"] == 12.5

    reopened = LocalRecordStore(SqliteStorage(tmp_path / "kv.db"))
    assert reopened.list_records(EntityType.DONATIONS) == [created]
    assert reopened.count_records(EntityType.DONATIONS) == 1
    assert json.loads(storage.get("ngo_donations") or "[]")[0]["donor_name"] == "Avery"


def test_local_store_keeps_concurrent_writes(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = LocalRecordStore(SqliteStorage(tmp_path / "kv.db"))
    errors: list[Exception] = []

    def add_batch(worker: int) -> None:
        try:
            for index in range(10):
                store.add_record(
                    EntityType.DONATIONS,
                    {"donor_id": f"d{worker}", "amount": index, "date": "2024-01-01"},
                )
        except Exception as exc:
            errors.append(exc)

    workers = [threading.Thread(target=add_batch, args=(worker,)) for worker in range(8)]
    for thread in workers:
        thread.start()
    for thread in workers:
        thread.join()

    assert errors == []
    assert store.count_records(EntityType.DONATIONS) == 80


def test_local_store_member_code_check_holds_under_concurrency() -> None:
    store = LocalRecordStore(MemoryStorage())
    outcomes: list[str] = []

    def add_same_code() -> None:
        try:
            store.add_record(EntityType.MEMBERS, _member("MEM0001"))
            outcomes.append("created")
        except DuplicateRecordError:
            outcomes.append("duplicate")

    workers = [threading.Thread(target=add_same_code) for _ in range(6)]
    for thread in workers:
        thread.start()
    for thread in workers:
        thread.join()

    assert sorted(outcomes) == ["created"] + ["duplicate"] * 5
    assert store.count_records(EntityType.MEMBERS) == 1


def test_local_store_update_and_delete() -> None:
    store = LocalRecordStore(MemoryStorage())
    created = store.add_record(EntityType.EXPENSES, {"description": "Rent", "amount": 900, "status": "pending"})

    updated = store.update_record(EntityType.EXPENSES, created["id"], {"status": "paid"})

    assert updated["status"] == "paid"
    assert updated["description"] == "Rent"
    with pytest.raises(RecordNotFoundError):
        store.update_record(EntityType.EXPENSES, "missing", {"status": "paid"})

    store.delete_record(EntityType.EXPENSES, "missing")
    store.delete_record(EntityType.EXPENSES, created["id"])
    assert store.list_records(EntityType.EXPENSES) == []


def test_local_store_rejects_duplicate_member_code() -> None:
    store = LocalRecordStore(MemoryStorage())
    store.add_record(EntityType.MEMBERS, _member("MEM0001"))

    with pytest.raises(DuplicateRecordError):
        store.add_record(EntityType.MEMBERS, _member("MEM0001", name="Ben"))
    assert store.count_records(EntityType.MEMBERS) == 1


def test_local_store_reports_corrupt_blob() -> None:
    store = LocalRecordStore(MemoryStorage({"ngo_donors": "{not json"}))

    with pytest.raises(StoreError):
        store.list_records(EntityType.DONORS)


def test_session_state_storage_wraps_mapping() -> None:
    state: dict[str, Any] = {}
    storage = SessionStateStorage(state)

    storage.set("ngo_auth", "true")
    assert state == {"ngo_auth": "true"}
    assert storage.get("ngo_auth") == "true"

    storage.remove("ngo_auth")
    storage.remove("ngo_auth")
    assert storage.get("ngo_auth") is None


def test_table_store_crud_keeps_cents(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_table_store(tmp_path)

    donor = store.add_record(EntityType.DONORS, {"name": "Avery", "total_donations": 0, "status": "active"})
    donation = store.add_record(
        EntityType.DONATIONS,
        {
            "donor_id": donor["id"],
            "donor_name": "Avery",
            "amount": "19.99",
            "date": "2024-02-10",
            "method": "cash",
            "category": "general",
        },
    )

    assert donation["amount"] == Decimal("19.99")
    assert donation["date"] == "2024-02-10"

    updated = store.update_record(
        EntityType.DONORS,
        donor["id"],
        {"total_donations": Decimal("19.99"), "last_donation": "2024-02-10"},
    )
    assert updated["total_donations"] == Decimal("19.99")
    assert store.count_records(EntityType.DONATIONS) == 1

    with pytest.raises(ValidationError):
        store.update_record(EntityType.DONORS, donor["id"], {"favourite_colour": "green"})
    with pytest.raises(RecordNotFoundError):
        store.update_record(EntityType.DONORS, "missing", {"name": "Nobody"})

    store.delete_record(EntityType.DONATIONS, donation["id"])
    assert store.list_records(EntityType.DONATIONS) == []


def test_table_store_lists_in_insert_order(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_table_store(tmp_path)
    for code, name in (("MEM0001", "Ana"), ("MEM0002", "Ben"), ("MEM0003", "Cleo")):
        store.add_record(EntityType.MEMBERS, _member(code, name))

    assert [row["name"] for row in store.list_records(EntityType.MEMBERS)] == ["Ana", "Ben", "Cleo"]


def test_table_store_rejects_duplicate_member_code(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_table_store(tmp_path)
    store.add_record(EntityType.MEMBERS, _member("MEM0001"))

    with pytest.raises(DuplicateRecordError):
        store.add_record(EntityType.MEMBERS, _member("MEM0001", name="Ben"))


def test_table_store_rejects_invalid_status(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_table_store(tmp_path)

    with pytest.raises(StoreError):
        store.add_record(
            EntityType.EXPENSES,
            {"description": "Fuel", "amount": 10, "category": "travel", "status": "lost"},
        )


class _FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no body")
        return self._body

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)  # type: ignore[arg-type]


class _FakeSession:
    def __init__(self, responses: list[Any]) -> None:
        self.headers: dict[str, str] = {}
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _hosted(responses: list[Any]) -> tuple[HostedTableStore, _FakeSession]:
    session = _FakeSession(responses)
    store = HostedTableStore(
        "https://example.supabase.co/rest/v1/",
        "anon-key",
        timeout=3.0,
        session=session,  # type: ignore[arg-type]
    )
    return store, session


def test_hosted_store_sends_auth_headers_and_lists() -> None:
    store, session = _hosted([_FakeResponse(body=[{"id": "1", "name": "Avery"}])])

    rows = store.list_records(EntityType.DONORS)

    assert rows == [{"id": "1", "name": "Avery"}]
    assert session.headers["apikey"] == "anon-key"
    assert session.headers["Authorization"] == "Bearer anon-key"
    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://example.supabase.co/rest/v1/donors"
    assert call["params"] == {"select": "*", "order": "created_at.asc"}
    assert call["timeout"] == 3.0


def test_hosted_store_insert_update_delete() -> None:
    store, session = _hosted(
        [
            _FakeResponse(status_code=201, body=[{"id": "e1", "status": "pending"}]),
            _FakeResponse(body=[{"id": "e1", "status": "paid"}]),
            _FakeResponse(body=[]),
            _FakeResponse(status_code=204),
        ]
    )

    created = store.add_record(EntityType.EXPENSES, {"description": "Rent", "amount": Decimal("900"), "vendor": None})
    updated = store.update_record(EntityType.EXPENSES, "e1", {"status": "paid"})
    with pytest.raises(RecordNotFoundError):
        store.update_record(EntityType.EXPENSES, "missing", {"status": "paid"})
    store.delete_record(EntityType.EXPENSES, "e1")

    assert created["id"] == "e1"
    assert updated["status"] == "paid"
    insert, patch, _, delete = session.calls
    assert insert["json"] == {"description": "Rent", "amount": 900}
    assert insert["headers"] == {"Prefer": "return=representation"}
    assert patch["method"] == "PATCH"
    assert patch["params"] == {"id": "eq.e1"}
    assert delete["method"] == "DELETE"
    assert delete["params"] == {"id": "eq.e1"}


def test_hosted_store_counts_from_content_range() -> None:
    store, session = _hosted([_FakeResponse(headers={"Content-Range": "0-2/3"})])

    assert store.count_records(EntityType.MEMBERS) == 3
    assert session.calls[0]["method"] == "HEAD"
    assert session.calls[0]["headers"] == {"Prefer": "count=exact"}


def test_hosted_store_maps_failures() -> None:
    store, _ = _hosted(
        [
            _FakeResponse(status_code=409),
            _FakeResponse(status_code=500),
            requests.ConnectionError("offline"),
        ]
    )

    with pytest.raises(DuplicateRecordError):
        store.add_record(EntityType.MEMBERS, {"member_id": "MEM0001"})
    with pytest.raises(StoreError):
        store.list_records(EntityType.MEMBERS)
    with pytest.raises(StoreError):
        store.list_records(EntityType.MEMBERS)


def test_create_record_store_selects_backend(tmp_path) -> None:  # type: ignore[no-untyped-def]
    local = create_record_store(NGOSettings(data_directory=tmp_path))
    table = create_record_store(NGOSettings(backend="table", data_directory=tmp_path))

    assert isinstance(local, LocalRecordStore)
    assert isinstance(table, TableRecordStore)
    assert (tmp_path / "ngo_accounts.db").exists()

    with pytest.raises(StoreError):
        create_record_store(NGOSettings(backend="hosted", data_directory=tmp_path))
    hosted = create_record_store(
        NGOSettings(
            backend="hosted",
            data_directory=tmp_path,
            hosted_url="https://example.supabase.co/rest/v1",
            hosted_api_key="anon-key",
        )
    )
    assert isinstance(hosted, HostedTableStore)
