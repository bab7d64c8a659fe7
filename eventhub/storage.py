"""Record store contract shared by the SQLite and DynamoDB adapters."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol

from .errors import ConflictError, InternalError
from .planner import Plan, QueryPlan, ScanPlan
from .schema import TableSchema

logger = logging.getLogger("eventhub.storage")


class StorageError(RuntimeError):
    """Raised when the record store backend fails."""


class ConditionFailedError(StorageError):
    """Raised when a conditional write finds the store in an unexpected state."""


@dataclass(frozen=True)
class ResultPage:
    """One page as returned by the store, before cursor encoding."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    count: int = 0
    last_key: Optional[Dict[str, Any]] = None


class RecordStore(Protocol):
    async def get(self, table: TableSchema, key: Mapping[str, Any]) -> Optional[Dict[str, Any]]: ...

    async def put(
        self,
        table: TableSchema,
        item: Mapping[str, Any],
        *,
        if_not_exists: bool = True,
    ) -> None: ...

    async def update(
        self,
        table: TableSchema,
        key: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Dict[str, Any]: ...

    async def query(self, table: TableSchema, plan: QueryPlan) -> ResultPage: ...

    async def scan(self, table: TableSchema, plan: ScanPlan) -> ResultPage: ...


async def execute(store: RecordStore, table: TableSchema, plan: Plan) -> ResultPage:
    """Run ``plan`` through the access path it selected."""

    if isinstance(plan, QueryPlan):
        return await store.query(table, plan)
    return await store.scan(table, plan)


@contextmanager
def storage_errors(action: str, *, conflict: Optional[str] = None) -> Iterator[None]:
    """Report backend failures raised inside the block as service errors.

    A failed conditional write becomes :class:`ConflictError` when ``conflict``
    names the duplicate; otherwise every store failure is an internal error.
    """

    try:
        yield
    except ConditionFailedError as exc:
        if conflict is not None:
            raise ConflictError(conflict) from exc
        logger.error("Conditional write failed while %s: %s", action, exc)
        raise InternalError(f"Error {action}") from exc
    except StorageError as exc:
        logger.error("Storage failure while %s: %s", action, exc)
        raise InternalError(f"Error {action}") from exc


__all__ = ["StorageError", "ConditionFailedError", "ResultPage", "RecordStore", "execute", "storage_errors"]
