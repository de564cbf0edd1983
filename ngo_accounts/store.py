"""Record store adapters for donors, donations, expenses, and members.

Three backends share the ``RecordStore`` interface:

* ``LocalRecordStore`` keeps each collection as a JSON array under one key of a
  ``KeyValueStorage`` (in memory, a SQLite file, or a session-state mapping).
* ``TableRecordStore`` keeps one SQLite table per collection.
* ``HostedTableStore`` talks to a hosted PostgREST/Supabase table service.

Records cross the interface as plain dicts with snake_case keys. Every I/O
failure is logged and re-raised as ``StoreError``; nothing is retried.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

import requests

from .errors import DuplicateRecordError, RecordNotFoundError, StoreError, ValidationError
from .logging_utils import get_logger
from .models import amount_from_cents, cents_from_amount, parse_amount

if TYPE_CHECKING:
    from .configuration import NGOSettings

LOGGER = get_logger(__name__)


class EntityType(str, Enum):
    DONORS = "donors"
    DONATIONS = "donations"
    EXPENSES = "expenses"
    MEMBERS = "members"


UNIQUE_FIELDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.MEMBERS: ("member_id",),
}


def new_record_id() -> str:
    return uuid.uuid4().hex


def json_ready(record: Mapping[str, Any]) -> dict[str, Any]:
    ready: dict[str, Any] = {}
    for key, value in record.items():
        if isinstance(value, Decimal):
            if value.is_nan():
                ready[key] = float("nan")
            elif value == value.to_integral_value():
                ready[key] = int(value)
            else:
                ready[key] = float(value)
        elif isinstance(value, date):
            ready[key] = value.isoformat()
        elif isinstance(value, Enum):
            ready[key] = value.value
        else:
            ready[key] = value
    return ready


class KeyValueStorage(ABC):
    """String values addressed by key: ``get``, ``set``, and ``remove``."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove(self, key: str) -> None: ...


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class SessionStateStorage(KeyValueStorage):
    """Adapts a mutable mapping such as ``st.session_state``."""

    def __init__(self, state: MutableMapping[str, Any]) -> None:
        self._state = state

    def get(self, key: str) -> str | None:
        value = self._state.get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        self._state[key] = value

    def remove(self, key: str) -> None:
        if key in self._state:
            del self._state[key]


class SqliteStorage(KeyValueStorage):
    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._initialised = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as exc:
            LOGGER.error("Could not open key-value store %s: %s", self.db_path, exc)
            raise StoreError(f"Could not open {self.db_path}: {exc}") from exc
        try:
            if not self._initialised:
                connection.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                self._initialised = True
            yield connection
            connection.commit()
        except sqlite3.Error as exc:
            connection.rollback()
            LOGGER.error("Key-value store %s failed: %s", self.db_path, exc)
            raise StoreError(f"Key-value store failed: {exc}") from exc
        finally:
            connection.close()

    def get(self, key: str) -> str | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT value FROM kv_entries WHERE key = ?",
                (key,),
            ).fetchone()
        return None if row is None else str(row[0])

    def set(self, key: str, value: str) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO kv_entries (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )

    def remove(self, key: str) -> None:
        with self._connect() as connection:
            connection.execute("DELETE FROM kv_entries WHERE key = ?", (key,))


class RecordStore(ABC):
    """Persistence boundary for the four record collections."""

    @abstractmethod
    def list_records(self, entity: EntityType) -> list[dict[str, Any]]: ...

    @abstractmethod
    def add_record(self, entity: EntityType, record: Mapping[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def update_record(
        self,
        entity: EntityType,
        record_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]: ...

    @abstractmethod
    def delete_record(self, entity: EntityType, record_id: str) -> None: ...

    def count_records(self, entity: EntityType) -> int:
        return len(self.list_records(entity))


class LocalRecordStore(RecordStore):
    """Each collection is one JSON blob, so every write is a load, modify, and save.

    The lock serialises those cycles across the threads sharing this store.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage
        self._write_lock = threading.Lock()

    @staticmethod
    def storage_key(entity: EntityType) -> str:
        return f"ngo_{entity.value}"

    def _load(self, entity: EntityType) -> list[dict[str, Any]]:
        raw = self.storage.get(self.storage_key(entity))
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.error("Stored %s are not valid JSON: %s", entity.value, exc)
            raise StoreError(f"Stored {entity.value} could not be read.") from exc
        if not isinstance(records, list):
            raise StoreError(f"Stored {entity.value} are not a list of records.")
        return [dict(record) for record in records]

    def _save(self, entity: EntityType, records: list[dict[str, Any]]) -> None:
        self.storage.set(self.storage_key(entity), json.dumps(records))

    def list_records(self, entity: EntityType) -> list[dict[str, Any]]:
        return self._load(entity)

    def add_record(self, entity: EntityType, record: Mapping[str, Any]) -> dict[str, Any]:
        created = json_ready(record)
        created["id"] = str(created.get("id") or new_record_id())

        with self._write_lock:
            records = self._load(entity)
            for field_name in ("id", *UNIQUE_FIELDS.get(entity, ())):
                value = created.get(field_name)
                if any(existing.get(field_name) == value for existing in records):
                    raise DuplicateRecordError(
                        f"A {entity.value} record with {field_name}={value!r} already exists."
                    )

            records.append(created)
            self._save(entity, records)
        return created

    def update_record(
        self,
        entity: EntityType,
        record_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        with self._write_lock:
            records = self._load(entity)
            for index, existing in enumerate(records):
                if existing.get("id") == record_id:
                    updated = {**existing, **json_ready(patch), "id": record_id}
                    records[index] = updated
                    self._save(entity, records)
                    return updated
        raise RecordNotFoundError(f"No {entity.value} record with id {record_id}.")

    def delete_record(self, entity: EntityType, record_id: str) -> None:
        with self._write_lock:
            records = self._load(entity)
            remaining = [record for record in records if record.get("id") != record_id]
            if len(remaining) != len(records):
                self._save(entity, remaining)


@dataclass(frozen=True)
class _Column:
    field: str
    column: str
    cents: bool = False


_TABLE_COLUMNS: dict[EntityType, tuple[_Column, ...]] = {
    EntityType.DONORS: (
        _Column("id", "id"),
        _Column("name", "name"),
        _Column("email", "email"),
        _Column("phone", "phone"),
        _Column("address", "address"),
        _Column("total_donations", "total_donations_cents", cents=True),
        _Column("last_donation", "last_donation"),
        _Column("status", "status"),
    ),
    EntityType.DONATIONS: (
        _Column("id", "id"),
        _Column("donor_id", "donor_id"),
        _Column("donor_name", "donor_name"),
        _Column("amount", "amount_cents", cents=True),
        _Column("date", "donation_date"),
        _Column("method", "method"),
        _Column("category", "category"),
        _Column("notes", "notes"),
    ),
    EntityType.EXPENSES: (
        _Column("id", "id"),
        _Column("description", "description"),
        _Column("amount", "amount_cents", cents=True),
        _Column("date", "expense_date"),
        _Column("category", "category"),
        _Column("payment_method", "payment_method"),
        _Column("vendor", "vendor"),
        _Column("notes", "notes"),
        _Column("status", "status"),
    ),
    EntityType.MEMBERS: (
        _Column("id", "id"),
        _Column("member_id", "member_id"),
        _Column("name", "name"),
        _Column("email", "email"),
        _Column("phone", "phone"),
        _Column("address", "address"),
        _Column("join_date", "join_date"),
        _Column("total_savings", "total_savings_cents", cents=True),
        _Column("total_loans", "total_loans_cents", cents=True),
        _Column("status", "status"),
    ),
}


def _to_cents(value: Any) -> int | None:
    amount = parse_amount(value)
    if amount.is_nan():
        return None
    return cents_from_amount(amount)


def _column_value(column: _Column, value: Any) -> Any:
    if column.cents:
        return _to_cents(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return value


class TableRecordStore(RecordStore):
    """Relational SQLite backend with one table per collection."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as exc:
            LOGGER.error("Could not open record database %s: %s", self.db_path, exc)
            raise StoreError(f"Could not open {self.db_path}: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            yield connection
            connection.commit()
        except sqlite3.IntegrityError as exc:
            connection.rollback()
            LOGGER.error("Record database rejected a write: %s", exc)
            if "UNIQUE" in str(exc).upper():
                raise DuplicateRecordError(str(exc)) from exc
            raise StoreError(f"Record database rejected the write: {exc}") from exc
        except sqlite3.Error as exc:
            connection.rollback()
            LOGGER.error("Record database %s failed: %s", self.db_path, exc)
            raise StoreError(f"Record database failed: {exc}") from exc
        finally:
            connection.close()

    def init_db(self) -> None:
        with self._connect() as connection:
            connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS donors (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT,
                    phone TEXT,
                    address TEXT,
                    total_donations_cents INTEGER DEFAULT 0,
                    last_donation TEXT,
                    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS donations (
                    id TEXT PRIMARY KEY,
                    donor_id TEXT NOT NULL,
                    donor_name TEXT,
                    amount_cents INTEGER CHECK (amount_cents >= 0),
                    donation_date TEXT,
                    method TEXT NOT NULL,
                    category TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS expenses (
                    id TEXT PRIMARY KEY,
                    description TEXT NOT NULL,
                    amount_cents INTEGER CHECK (amount_cents >= 0),
                    expense_date TEXT,
                    category TEXT NOT NULL,
                    payment_method TEXT,
                    vendor TEXT,
                    notes TEXT,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'approved', 'paid')),
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS members (
                    id TEXT PRIMARY KEY,
                    member_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    phone TEXT,
                    address TEXT,
                    join_date TEXT,
                    total_savings_cents INTEGER DEFAULT 0,
                    total_loans_cents INTEGER DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'inactive')),
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_donations_donor ON donations (donor_id);
                CREATE INDEX IF NOT EXISTS idx_donations_date ON donations (donation_date);
                CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses (expense_date);
                CREATE INDEX IF NOT EXISTS idx_expenses_status ON expenses (status);
                """
            )

    def _row_to_record(self, entity: EntityType, row: sqlite3.Row) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for column in _TABLE_COLUMNS[entity]:
            value = row[column.column]
            if column.cents:
                value = None if value is None else amount_from_cents(int(value))
            record[column.field] = value
        return record

    def _fetch(self, connection: sqlite3.Connection, entity: EntityType, record_id: str) -> sqlite3.Row | None:
        return connection.execute(
            f"SELECT * FROM {entity.value} WHERE id = ?",
            (record_id,),
        ).fetchone()

    def list_records(self, entity: EntityType) -> list[dict[str, Any]]:
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT * FROM {entity.value} ORDER BY rowid ASC"
            ).fetchall()
        return [self._row_to_record(entity, row) for row in rows]

    def add_record(self, entity: EntityType, record: Mapping[str, Any]) -> dict[str, Any]:
        columns = _TABLE_COLUMNS[entity]
        values = {column.column: _column_value(column, record.get(column.field)) for column in columns}
        values["id"] = str(values.get("id") or new_record_id())

        column_sql = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._connect() as connection:
            connection.execute(
                f"INSERT INTO {entity.value} ({column_sql}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            row = self._fetch(connection, entity, values["id"])
        if row is None:
            raise StoreError(f"Inserted {entity.value} record {values['id']} could not be read back.")
        return self._row_to_record(entity, row)

    def update_record(
        self,
        entity: EntityType,
        record_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        by_field = {column.field: column for column in _TABLE_COLUMNS[entity]}
        unknown = sorted(set(patch) - set(by_field))
        if unknown:
            raise ValidationError(f"Cannot update unknown {entity.value} fields: {', '.join(unknown)}.")

        assignments = {
            by_field[field_name].column: _column_value(by_field[field_name], value)
            for field_name, value in patch.items()
            if field_name != "id"
        }

        with self._connect() as connection:
            if assignments:
                set_sql = ", ".join(f"{column} = ?" for column in assignments)
                connection.execute(
                    f"UPDATE {entity.value} SET {set_sql} WHERE id = ?",
                    (*assignments.values(), record_id),
                )
            row = self._fetch(connection, entity, record_id)
        if row is None:
            raise RecordNotFoundError(f"No {entity.value} record with id {record_id}.")
        return self._row_to_record(entity, row)

    def delete_record(self, entity: EntityType, record_id: str) -> None:
        with self._connect() as connection:
            connection.execute(f"DELETE FROM {entity.value} WHERE id = ?", (record_id,))

    def count_records(self, entity: EntityType) -> int:
        with self._connect() as connection:
            row = connection.execute(f"SELECT COUNT(*) AS count FROM {entity.value}").fetchone()
        return int(row["count"])


COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class HostedTableStore(RecordStore):
    """Client for a PostgREST table service such as Supabase's REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                **COMMON_HEADERS,
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
            }
        )

    def _request(
        self,
        method: str,
        entity: EntityType,
        params: Mapping[str, str] | None = None,
        payload: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> requests.Response:
        url = f"{self.base_url}/{entity.value}"
        try:
            response = self.session.request(
                method,
                url,
                params=dict(params or {}),
                json=payload,
                headers=dict(headers or {}),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            LOGGER.error("%s %s failed with HTTP %s", method, url, status_code)
            if status_code == 409:
                raise DuplicateRecordError(f"{entity.value} record already exists.") from exc
            raise StoreError(f"Table service returned HTTP {status_code} for {entity.value}.") from exc
        except requests.RequestException as exc:
            LOGGER.error("%s %s failed: %s", method, url, exc)
            raise StoreError(f"Table service unreachable: {exc}") from exc
        return response

    @staticmethod
    def _rows(response: requests.Response) -> list[dict[str, Any]]:
        try:
            body = response.json()
        except ValueError as exc:
            raise StoreError("Table service returned a non-JSON body.") from exc
        if not isinstance(body, list):
            raise StoreError("Table service returned an unexpected payload.")
        return [dict(row) for row in body]

    def list_records(self, entity: EntityType) -> list[dict[str, Any]]:
        response = self._request(
            "GET",
            entity,
            params={"select": "*", "order": "created_at.asc"},
        )
        return self._rows(response)

    def add_record(self, entity: EntityType, record: Mapping[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in json_ready(record).items() if value is not None}
        response = self._request(
            "POST",
            entity,
            payload=payload,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        if not rows:
            raise StoreError(f"Table service did not return the new {entity.value} record.")
        return rows[0]

    def update_record(
        self,
        entity: EntityType,
        record_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        response = self._request(
            "PATCH",
            entity,
            params={"id": f"eq.{record_id}"},
            payload=json_ready(patch),
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        if not rows:
            raise RecordNotFoundError(f"No {entity.value} record with id {record_id}.")
        return rows[0]

    def delete_record(self, entity: EntityType, record_id: str) -> None:
        self._request("DELETE", entity, params={"id": f"eq.{record_id}"})

    def count_records(self, entity: EntityType) -> int:
        response = self._request(
            "HEAD",
            entity,
            params={"select": "*"},
            headers={"Prefer": "count=exact"},
        )
        content_range = response.headers.get("Content-Range", "")
        _, _, total = content_range.rpartition("/")
        if not total.isdigit():
            raise StoreError(f"Table service did not report a {entity.value} count.")
        return int(total)


def create_record_store(settings: NGOSettings) -> RecordStore:
    if settings.backend == "hosted":
        if not settings.hosted_url or not settings.hosted_api_key:
            raise StoreError("NGO_HOSTED_URL and NGO_HOSTED_API_KEY must be set for the hosted backend.")
        LOGGER.info("Using hosted table service at %s", settings.hosted_url)
        return HostedTableStore(
            base_url=settings.hosted_url,
            api_key=settings.hosted_api_key,
            timeout=settings.request_timeout,
        )
    if settings.backend == "table":
        store = TableRecordStore(settings.data_directory / "ngo_accounts.db")
        store.init_db()
        LOGGER.info("Using SQLite tables at %s", store.db_path)
        return store

    storage = SqliteStorage(settings.data_directory / "ngo_local_store.db")
    LOGGER.info("Using local key-value store at %s", storage.db_path)
    return LocalRecordStore(storage)
