"""SQLite-backed document store with emulated secondary indexes."""
from __future__ import annotations

import functools
import json
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

import anyio

from .planner import QueryPlan, ScanPlan, matches_all
from .schema import TABLES, IndexSchema, TableSchema
from .storage import ConditionFailedError, ResultPage, StorageError

_ATTRIBUTE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "eventhub.sqlite3").resolve(strict=False)


def _json_path(attribute: str) -> str:
    if not _ATTRIBUTE_NAME.fullmatch(attribute):
        raise ValueError(f"Unsupported attribute name: {attribute!r}")
    return f"json_extract(body, '$.{attribute}')"


def _key_columns(table: TableSchema, key: Mapping[str, Any]) -> Tuple[str, str]:
    hash_value = str(key[table.hash_key])
    range_value = str(key[table.range_key]) if table.range_key else ""
    return hash_value, range_value


def _primary_order(table: TableSchema, item: Mapping[str, Any]) -> Tuple[str, ...]:
    return tuple(str(item.get(attribute, "")) for attribute in table.key_attributes)


def _index_order(table: TableSchema, index: IndexSchema, item: Mapping[str, Any]) -> Tuple[str, ...]:
    sort_value = str(item.get(index.sort, "")) if index.sort else ""
    return (sort_value, *_primary_order(table, item))


class Database:
    """Stores every table's documents as JSON rows in a single SQLite file.

    Secondary indexes are emulated with expression indexes on the partition
    attributes; ordering, key ranges and post-filters are applied in Python
    with the same evaluation rules as a hosted document store: ``limit``
    bounds the evaluated items and filters run afterwards.
    """

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite operation failed: {exc}") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the document table and the secondary index expressions."""

        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    table_name TEXT NOT NULL,
                    hash_key TEXT NOT NULL,
                    range_key TEXT NOT NULL DEFAULT '',
                    body TEXT NOT NULL,
                    PRIMARY KEY (table_name, hash_key, range_key)
                )
                """
            )
            for table in TABLES:
                for index in table.indexes:
                    index_name = f"idx_{table.name}_{index.name}".replace("-", "_")
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS {index_name} "
                        f"ON documents (table_name, {_json_path(index.partition)})"
                    )

    # ------------------------------------------------------------------
    # Item access
    # ------------------------------------------------------------------
    def get_item(self, table: TableSchema, key: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        hash_value, range_value = _key_columns(table, key)
        with self._session() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE table_name = ? AND hash_key = ? AND range_key = ?",
                (table.name, hash_value, range_value),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["body"])

    def put_item(self, table: TableSchema, item: Mapping[str, Any], *, if_not_exists: bool = True) -> None:
        document = {key: value for key, value in item.items() if value is not None}
        hash_value, range_value = _key_columns(table, table.primary_key(document))
        statement = "INSERT INTO" if if_not_exists else "INSERT OR REPLACE INTO"
        try:
            with self._session() as conn:
                conn.execute(
                    f"{statement} documents (table_name, hash_key, range_key, body) VALUES (?, ?, ?, ?)",
                    (table.name, hash_value, range_value, json.dumps(document, sort_keys=True)),
                )
        except sqlite3.IntegrityError as exc:
            raise ConditionFailedError(f"An item with this key already exists in '{table.name}'") from exc

    def update_item(
        self,
        table: TableSchema,
        key: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Apply ``changes`` to an existing item; ``None`` removes an attribute."""

        touched_keys = set(changes) & set(table.key_attributes)
        if touched_keys:
            raise ValueError(f"Key attributes cannot be updated: {', '.join(sorted(touched_keys))}")

        hash_value, range_value = _key_columns(table, key)
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT body FROM documents WHERE table_name = ? AND hash_key = ? AND range_key = ?",
                (table.name, hash_value, range_value),
            ).fetchone()
            if row is None:
                raise ConditionFailedError(f"Item does not exist in '{table.name}'")

            document: Dict[str, Any] = json.loads(row["body"])
            for attribute, value in changes.items():
                if value is None:
                    document.pop(attribute, None)
                else:
                    document[attribute] = value

            conn.execute(
                "UPDATE documents SET body = ? WHERE table_name = ? AND hash_key = ? AND range_key = ?",
                (json.dumps(document, sort_keys=True), table.name, hash_value, range_value),
            )
        return document

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------
    def query(self, table: TableSchema, plan: QueryPlan) -> ResultPage:
        index = table.index(plan.index)
        condition = plan.key_condition

        if plan.index is None:
            sql = "SELECT body FROM documents WHERE table_name = ? AND hash_key = ?"
            params: Tuple[Any, ...] = (table.name, str(condition.value))
        else:
            sql = f"SELECT body FROM documents WHERE table_name = ? AND {_json_path(condition.partition)} = ?"
            params = (table.name, condition.value)

        candidates = [item for item in self._fetch(sql, params) if condition.matches(item)]
        if index.sort is not None:
            candidates = [item for item in candidates if index.sort in item]

        order = functools.partial(_index_order, table, index)
        candidates.sort(key=order, reverse=not plan.forward)
        return self._paginate(table, plan.index, candidates, plan.filters, plan.limit, plan.start_key, order, plan.forward)

    def scan(self, table: TableSchema, plan: ScanPlan) -> ResultPage:
        candidates = self._fetch("SELECT body FROM documents WHERE table_name = ?", (table.name,))
        order = functools.partial(_primary_order, table)
        candidates.sort(key=order)
        return self._paginate(table, None, candidates, plan.filters, plan.limit, plan.start_key, order, True)

    def _fetch(self, sql: str, params: Tuple[Any, ...]) -> List[Dict[str, Any]]:
        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [json.loads(row["body"]) for row in rows]

    def _paginate(
        self,
        table: TableSchema,
        index_name: Optional[str],
        ordered: List[Dict[str, Any]],
        filters,
        limit: int,
        start_key: Optional[Mapping[str, Any]],
        order: Callable[[Mapping[str, Any]], Tuple[str, ...]],
        forward: bool,
    ) -> ResultPage:
        if start_key is not None:
            marker = order(start_key)
            if forward:
                ordered = [item for item in ordered if order(item) > marker]
            else:
                ordered = [item for item in ordered if order(item) < marker]

        evaluated = ordered[:limit]
        last_key = None
        if len(ordered) > limit:
            last_key = table.continuation_key(evaluated[-1], index_name)

        items = [item for item in evaluated if matches_all(filters, item)]
        return ResultPage(items=items, count=len(items), last_key=last_key)


class SQLiteRecordStore:
    """Async :class:`~eventhub.storage.RecordStore` over :class:`Database`.

    Each call runs on a worker thread so the event loop never blocks on SQLite.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    @property
    def database(self) -> Database:
        return self._database

    async def get(self, table: TableSchema, key: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return await anyio.to_thread.run_sync(self._database.get_item, table, key)

    async def put(self, table: TableSchema, item: Mapping[str, Any], *, if_not_exists: bool = True) -> None:
        await anyio.to_thread.run_sync(
            functools.partial(self._database.put_item, table, item, if_not_exists=if_not_exists)
        )

    async def update(
        self,
        table: TableSchema,
        key: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Dict[str, Any]:
        return await anyio.to_thread.run_sync(self._database.update_item, table, key, changes)

    async def query(self, table: TableSchema, plan: QueryPlan) -> ResultPage:
        return await anyio.to_thread.run_sync(self._database.query, table, plan)

    async def scan(self, table: TableSchema, plan: ScanPlan) -> ResultPage:
        return await anyio.to_thread.run_sync(self._database.scan, table, plan)


__all__ = ["Database", "SQLiteRecordStore", "resolve_database_path"]
