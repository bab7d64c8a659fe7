"""Opaque continuation cursors for listing operations."""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar

from .errors import InvalidCursorError

T = TypeVar("T")

_SCALAR_TYPES = (str, int, float, bool)


class PaginationCodec:
    """Serializes a store's native continuation key into a URL-safe token.

    The token carries no meaning for callers; it is only ever handed back
    to :meth:`decode` with the same listing filters.
    """

    def encode(self, native_key: Optional[Mapping[str, Any]]) -> Optional[str]:
        if native_key is None:
            return None
        payload = json.dumps(dict(native_key), sort_keys=True, separators=(",", ":"))
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")

    def decode(self, cursor: str) -> Dict[str, Any]:
        try:
            raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
            value = json.loads(raw.decode("utf-8"))
        except (ValueError, binascii.Error, UnicodeError) as exc:
            raise InvalidCursorError("Invalid pagination cursor") from exc

        if not isinstance(value, dict) or not value:
            raise InvalidCursorError("Invalid pagination cursor")
        for key, item in value.items():
            if not isinstance(key, str) or not isinstance(item, _SCALAR_TYPES):
                raise InvalidCursorError("Invalid pagination cursor")
        return value


@dataclass(frozen=True)
class Page(Generic[T]):
    """A listing result: the matching items, their count and the next cursor."""

    items: List[T] = field(default_factory=list)
    total: int = 0
    cursor: Optional[str] = None


__all__ = ["PaginationCodec", "Page"]
