"""Access-path selection for listing requests.

Listing filters are typed values.  The planner picks an indexed range query
when an equality filter names the partition attribute of one of the table's
access paths, and falls back to a full scan otherwise.  Substring filters are
never key conditions; they always run as post-filters inside the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import BadRequestError
from .models import serialize_datetime
from .pagination import PaginationCodec
from .schema import IndexSchema, TableSchema

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return serialize_datetime(value)
    return value


@dataclass(frozen=True)
class Equals:
    attribute: str
    value: Any

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _plain(self.value))

    def matches(self, item: Mapping[str, Any]) -> bool:
        return self.attribute in item and item[self.attribute] == self.value


@dataclass(frozen=True)
class Contains:
    attribute: str
    value: str

    def matches(self, item: Mapping[str, Any]) -> bool:
        candidate = item.get(self.attribute)
        return isinstance(candidate, str) and self.value in candidate


@dataclass(frozen=True)
class DateRange:
    """Inclusive date bounds; either bound may be omitted."""

    attribute: str
    after: Optional[datetime] = None
    before: Optional[datetime] = None

    @property
    def lower(self) -> Optional[str]:
        return serialize_datetime(self.after) if self.after is not None else None

    @property
    def upper(self) -> Optional[str]:
        return serialize_datetime(self.before) if self.before is not None else None

    @property
    def is_empty(self) -> bool:
        return self.after is None and self.before is None

    def matches(self, item: Mapping[str, Any]) -> bool:
        candidate = item.get(self.attribute)
        if not isinstance(candidate, str):
            return False
        lower, upper = self.lower, self.upper
        if lower is not None and candidate < lower:
            return False
        if upper is not None and candidate > upper:
            return False
        return True


Filter = Union[Equals, Contains, DateRange]


@dataclass(frozen=True)
class KeyCondition:
    """Partition equality plus an optional range on the sort attribute."""

    partition: str
    value: Any
    sort: Optional[str] = None
    lower: Optional[str] = None
    upper: Optional[str] = None

    @property
    def operator(self) -> Optional[str]:
        if self.lower is not None and self.upper is not None:
            return "between"
        if self.upper is not None:
            return "<="
        if self.lower is not None:
            return ">="
        return None

    def matches(self, item: Mapping[str, Any]) -> bool:
        if item.get(self.partition) != self.value:
            return False
        if self.operator is None:
            return True
        candidate = item.get(self.sort) if self.sort else None
        if candidate is None:
            return False
        if self.lower is not None and candidate < self.lower:
            return False
        if self.upper is not None and candidate > self.upper:
            return False
        return True


@dataclass(frozen=True)
class QueryPlan:
    index: Optional[str]
    key_condition: KeyCondition
    filters: Tuple[Filter, ...] = ()
    limit: int = DEFAULT_LIMIT
    start_key: Optional[Dict[str, Any]] = None
    forward: bool = True


@dataclass(frozen=True)
class ScanPlan:
    filters: Tuple[Filter, ...] = ()
    limit: int = DEFAULT_LIMIT
    start_key: Optional[Dict[str, Any]] = None


Plan = Union[QueryPlan, ScanPlan]


def matches_all(filters: Iterable[Filter], item: Mapping[str, Any]) -> bool:
    return all(candidate.matches(item) for candidate in filters)


@dataclass
class QueryPlanner:
    """Builds plans against the access paths of a single table."""

    table: TableSchema
    codec: PaginationCodec = field(default_factory=PaginationCodec)
    max_limit: int = MAX_LIMIT

    def plan(
        self,
        filters: Iterable[Optional[Filter]],
        *,
        limit: int = DEFAULT_LIMIT,
        cursor: Optional[str] = None,
    ) -> Plan:
        if limit < 1 or limit > self.max_limit:
            raise BadRequestError(f"limit must be between 1 and {self.max_limit}")

        start_key = self.codec.decode(cursor) if cursor else None
        remaining = self._normalise(filters)

        selected = self._select_path(remaining)
        if selected is None:
            return ScanPlan(filters=tuple(remaining), limit=limit, start_key=start_key)

        path, equality = selected
        remaining.remove(equality)
        key_condition = KeyCondition(partition=path.partition, value=equality.value, sort=path.sort)

        if path.sort is not None:
            for candidate in remaining:
                if isinstance(candidate, DateRange) and candidate.attribute == path.sort:
                    key_condition = KeyCondition(
                        partition=path.partition,
                        value=equality.value,
                        sort=path.sort,
                        lower=candidate.lower,
                        upper=candidate.upper,
                    )
                    remaining.remove(candidate)
                    break

        return QueryPlan(
            index=path.name,
            key_condition=key_condition,
            filters=tuple(remaining),
            limit=limit,
            start_key=start_key,
            forward=path.forward,
        )

    def _normalise(self, filters: Iterable[Optional[Filter]]) -> List[Filter]:
        cleaned: List[Filter] = []
        for candidate in filters:
            if candidate is None:
                continue
            if isinstance(candidate, DateRange):
                if candidate.is_empty:
                    continue
                lower, upper = candidate.lower, candidate.upper
                if lower is not None and upper is not None and lower > upper:
                    raise BadRequestError("The lower date bound must not be later than the upper bound")
            if isinstance(candidate, Contains) and not candidate.value:
                continue
            cleaned.append(candidate)
        return cleaned

    def _select_path(self, filters: List[Filter]) -> Optional[Tuple[IndexSchema, Equals]]:
        paths = self.table.access_paths()
        for candidate in filters:
            if not isinstance(candidate, Equals):
                continue
            for path in paths:
                if path.partition == candidate.attribute:
                    return path, candidate
        return None


__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "Equals",
    "Contains",
    "DateRange",
    "Filter",
    "KeyCondition",
    "QueryPlan",
    "ScanPlan",
    "Plan",
    "QueryPlanner",
    "matches_all",
]
