"""Table store adapters behind the find/insert/update contract.

The pipeline never talks to a storage engine directly. It sees three
tables of plain dict rows and three operations; :class:`DuckDBStore` is
the primary adapter and :class:`LocalStore` the offline one (a JSON file,
or pure memory when no path is given).
"""
from __future__ import annotations

import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Iterable, Mapping

import duckdb

from .config import AppConfig
from .errors import StoreError
from .models import TABLE_PROJECTS, TABLE_TIME_ENTRIES, TABLE_UPLOAD_HISTORY

LOGGER = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

# Column name -> DuckDB type, in insertion order.
TABLE_COLUMNS: dict[str, dict[str, str]] = {
    TABLE_PROJECTS: {
        "id": "VARCHAR",
        "name": "VARCHAR",
        "status": "VARCHAR",
        "total_hours": "DOUBLE",
        "data_source": "VARCHAR",
        "reporting_year": "VARCHAR",
        "id_assigned": "VARCHAR",
        "sme": "VARCHAR",
        "legal_reviewer": "VARCHAR",
        "vertical": "VARCHAR",
        "course_type": "VARCHAR",
        "authoring_tool": "VARCHAR",
        "course_style": "VARCHAR",
        "course_length": "VARCHAR",
        "interaction_count": "INTEGER",
        "created_at": "VARCHAR",
        "updated_at": "VARCHAR",
    },
    TABLE_TIME_ENTRIES: {
        "id": "VARCHAR",
        "project_id": "VARCHAR",
        "category": "VARCHAR",
        "hours": "DOUBLE",
        "entry_date": "VARCHAR",
        "user_name": "VARCHAR",
        "upload_id": "VARCHAR",
        "resolution": "VARCHAR",
        "created_at": "VARCHAR",
    },
    TABLE_UPLOAD_HISTORY: {
        "id": "VARCHAR",
        "file_label": "VARCHAR",
        "row_count": "INTEGER",
        "status": "VARCHAR",
        "created_at": "VARCHAR",
    },
}

_INDEXED_COLUMNS: dict[str, tuple[str, ...]] = {
    TABLE_TIME_ENTRIES: ("project_id", "upload_id"),
}


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaseStore(ABC):
    """Persistent table store used by the import pipeline and read models."""

    @abstractmethod
    def find(self, table: str, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Rows of *table* whose columns equal every value in *filters*, oldest first."""

    @abstractmethod
    def insert(self, table: str, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Append rows, generating ``id``/timestamps unless supplied; return the stored rows."""

    @abstractmethod
    def update(self, table: str, row_id: str, fields: Mapping[str, Any]) -> None:
        """Overwrite *fields* on the row with id *row_id*."""

    def close(self) -> None:
        return None

    def describe(self) -> str:
        return type(self).__name__

    # Shared validation -------------------------------------------------

    @staticmethod
    def _columns(table: str) -> dict[str, str]:
        try:
            return TABLE_COLUMNS[table]
        except KeyError:
            raise StoreError(f"Unknown table '{table}'") from None

    def _check_fields(self, table: str, fields: Iterable[str]) -> None:
        columns = self._columns(table)
        unknown = [name for name in fields if name not in columns]
        if unknown:
            raise StoreError(f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}")

    def _prepare_rows(self, table: str, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        columns = self._columns(table)
        stamp = utc_now()
        prepared: list[dict[str, Any]] = []
        for row in rows:
            self._check_fields(table, row.keys())
            record = {name: row.get(name) for name in columns}
            record["id"] = record["id"] or new_id()
            if "created_at" in columns and not record["created_at"]:
                record["created_at"] = stamp
            if "updated_at" in columns and not record["updated_at"]:
                record["updated_at"] = stamp
            prepared.append(record)
        return prepared

    def _prepare_update(self, table: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        self._check_fields(table, fields.keys())
        changes = {k: v for k, v in fields.items() if k != "id"}
        if "updated_at" in self._columns(table) and "updated_at" not in changes:
            changes["updated_at"] = utc_now()
        return changes


class DuckDBStore(BaseStore):
    """DuckDB-backed store; a file path persists, ``:memory:`` does not."""

    def __init__(self, database: str | os.PathLike[str] = MEMORY_DATABASE):
        self._database = str(database)
        if self._database != MEMORY_DATABASE:
            Path(self._database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        try:
            self._conn = duckdb.connect(database=self._database, read_only=False)
            self._create_schema()
        except duckdb.Error as exc:
            raise StoreError(f"Could not open DuckDB store at {self._database}: {exc}") from exc
        LOGGER.info("DuckDB store ready (database=%s)", self._database)

    def describe(self) -> str:
        return f"duckdb:{self._database}"

    def _create_schema(self) -> None:
        with self._lock:
            for table, columns in TABLE_COLUMNS.items():
                ddl = ", ".join(f"{name} {sql_type}" for name, sql_type in columns.items())
                self._conn.execute(f"CREATE TABLE IF NOT EXISTS {table} ({ddl})")
            for table, indexed in _INDEXED_COLUMNS.items():
                for col in indexed:
                    self._conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_{col} ON {table}({col})")

    def find(self, table: str, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        columns = list(self._columns(table))
        filters = dict(filters or {})
        self._check_fields(table, filters.keys())

        clauses: list[str] = []
        params: list[Any] = []
        for name, value in filters.items():
            if value is None:
                clauses.append(f"{name} IS NULL")
            else:
                clauses.append(f"{name} = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT {', '.join(columns)} FROM {table}{where} ORDER BY rowid"

        with self._lock:
            try:
                result = self._conn.execute(sql, params).fetchall()
            except duckdb.Error as exc:
                raise StoreError(f"find on {table} failed: {exc}") from exc
        return [dict(zip(columns, row)) for row in result]

    def insert(self, table: str, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        prepared = self._prepare_rows(table, rows)
        if not prepared:
            return []
        columns = list(self._columns(table))
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        with self._lock:
            try:
                self._conn.executemany(sql, [[row[name] for name in columns] for row in prepared])
            except duckdb.Error as exc:
                raise StoreError(f"insert into {table} failed: {exc}") from exc
        return prepared

    def update(self, table: str, row_id: str, fields: Mapping[str, Any]) -> None:
        changes = self._prepare_update(table, fields)
        if not changes:
            return
        assignments = ", ".join(f"{name} = ?" for name in changes)
        with self._lock:
            try:
                found = self._conn.execute(f"SELECT count(*) FROM {table} WHERE id = ?", [row_id]).fetchone()
                if not found or not found[0]:
                    raise StoreError(f"No {table} row with id '{row_id}'")
                self._conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    [*changes.values(), row_id],
                )
            except duckdb.Error as exc:
                raise StoreError(f"update of {table} row {row_id} failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class LocalStore(BaseStore):
    """Offline store: rows kept in memory and mirrored to a JSON file if a path is given."""

    def __init__(self, path: str | os.PathLike[str] | None = None):
        self._path = Path(path).expanduser() if path else None
        self._lock = RLock()
        self._tables: dict[str, list[dict[str, Any]]] = {table: [] for table in TABLE_COLUMNS}
        if self._path is not None:
            self._load()

    def describe(self) -> str:
        return f"local:{self._path}" if self._path else "local:memory"

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable local store %s: %s", self._path, exc)
            return
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring local store %s: expected an object of tables", self._path)
            return
        for table in TABLE_COLUMNS:
            rows = payload.get(table)
            if isinstance(rows, list):
                self._tables[table] = [dict(row) for row in rows if isinstance(row, dict)]

    def _flush(self) -> None:
        if self._path is None:
            return
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self._tables, default=str), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            raise StoreError(f"Could not write local store {self._path}: {exc}") from exc

    def find(self, table: str, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        self._columns(table)
        filters = dict(filters or {})
        self._check_fields(table, filters.keys())
        with self._lock:
            return [
                dict(row)
                for row in self._tables[table]
                if all(row.get(name) == value for name, value in filters.items())
            ]

    def insert(self, table: str, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        prepared = self._prepare_rows(table, rows)
        if not prepared:
            return []
        with self._lock:
            self._tables[table].extend(dict(row) for row in prepared)
            self._flush()
        return prepared

    def update(self, table: str, row_id: str, fields: Mapping[str, Any]) -> None:
        changes = self._prepare_update(table, fields)
        with self._lock:
            for row in self._tables[table]:
                if row.get("id") == row_id:
                    row.update(changes)
                    self._flush()
                    return
        raise StoreError(f"No {table} row with id '{row_id}'")


def make_store(config: AppConfig) -> BaseStore:
    """Build the store adapter selected by ``STORE_BACKEND``."""

    store_path = str(config.store_path)
    if config.store_backend == "local":
        if store_path == MEMORY_DATABASE:
            return LocalStore()
        return LocalStore(Path(store_path).with_suffix(".json"))
    return DuckDBStore(store_path)


__all__ = [
    "BaseStore",
    "DuckDBStore",
    "LocalStore",
    "MEMORY_DATABASE",
    "TABLE_COLUMNS",
    "make_store",
    "new_id",
    "utc_now",
]
