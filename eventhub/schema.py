"""Key schemas of the document tables and their secondary indexes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class IndexSchema:
    """An access path: a partition attribute with an optional sort attribute.

    ``name`` is ``None`` for the table's own primary key.
    """

    name: Optional[str]
    partition: str
    sort: Optional[str] = None
    forward: bool = True


@dataclass(frozen=True)
class TableSchema:
    name: str
    hash_key: str
    range_key: Optional[str] = None
    indexes: Tuple[IndexSchema, ...] = ()
    base_forward: bool = True

    @property
    def key_attributes(self) -> Tuple[str, ...]:
        if self.range_key:
            return (self.hash_key, self.range_key)
        return (self.hash_key,)

    @property
    def base_path(self) -> IndexSchema:
        return IndexSchema(name=None, partition=self.hash_key, sort=self.range_key, forward=self.base_forward)

    def access_paths(self) -> Tuple[IndexSchema, ...]:
        return (self.base_path, *self.indexes)

    def index(self, name: Optional[str]) -> IndexSchema:
        if name is None:
            return self.base_path
        for index in self.indexes:
            if index.name == name:
                return index
        raise KeyError(f"Unknown index '{name}' on table '{self.name}'")

    def primary_key(self, item: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            return {attribute: item[attribute] for attribute in self.key_attributes}
        except KeyError as exc:
            raise ValueError(f"Item is missing key attribute {exc} for table '{self.name}'") from exc

    def continuation_key(self, item: Mapping[str, Any], index_name: Optional[str]) -> Dict[str, Any]:
        """Return the native continuation key of ``item`` for the given access path."""

        key = self.primary_key(item)
        if index_name is not None:
            index = self.index(index_name)
            for attribute in (index.partition, index.sort):
                if attribute is not None and attribute in item:
                    key[attribute] = item[attribute]
        return key


USERS = TableSchema(
    name="users",
    hash_key="id",
    indexes=(
        IndexSchema(name="email-index", partition="email"),
        IndexSchema(name="role-id-index", partition="role", sort="id"),
        IndexSchema(name="email-validation-token-index", partition="email_validation_token"),
    ),
)

EVENTS = TableSchema(
    name="events",
    hash_key="id",
    indexes=(
        IndexSchema(name="status-date-index", partition="status", sort="date", forward=False),
        IndexSchema(name="organizer-index", partition="organizer_id", sort="date"),
        IndexSchema(name="name-index", partition="name"),
    ),
)

REGISTRATIONS = TableSchema(
    name="registrations",
    hash_key="user_id",
    range_key="event_id",
    indexes=(IndexSchema(name="event-user-index", partition="event_id", sort="user_id"),),
    base_forward=False,
)

TABLES = (USERS, EVENTS, REGISTRATIONS)


__all__ = ["IndexSchema", "TableSchema", "USERS", "EVENTS", "REGISTRATIONS", "TABLES"]
