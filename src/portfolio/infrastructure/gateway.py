from __future__ import annotations

import copy
import logging
import os
import uuid
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..domain.errors import ConflictError, PersistenceError

LOG = logging.getLogger("portfolio.gateway")


class PersistenceGateway(Protocol):
    """Table-level operations of the hosted relational store."""

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]: ...

    def update_by_id(self, table: str, row_id: str, values: Mapping[str, Any]) -> Dict[str, Any]: ...

    def delete(self, table: str, *, filters: Mapping[str, Any]) -> int: ...

    def increment(self, table: str, row_id: str, column: str) -> None: ...


# Column groups that must be unique per table; rows with a null member never collide.
UNIQUE_COLUMNS: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "chat_conversations": (("user_id",), ("user_identifier",)),
    "project_likes": (("project_id", "device_id"),),
}


def now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _sort_key(column: str):
    def key(row: Dict[str, Any]):
        value = row.get(column)
        return (value is None, value if value is not None else 0)

    return key


class InMemoryGateway:
    """Thread-safe in-process tables for development and tests."""

    def __init__(
        self,
        seed: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None,
        unique: Optional[Mapping[str, Tuple[Tuple[str, ...], ...]]] = None,
    ) -> None:
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._unique = dict(UNIQUE_COLUMNS if unique is None else unique)
        self._lock = RLock()
        for table, rows in (seed or {}).items():
            for row in rows:
                self.insert(table, row)

    def _matches(self, row: Dict[str, Any], filters: Mapping[str, Any]) -> bool:
        return all(row.get(col) == value for col, value in filters.items())

    def _find(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        for row in self._tables.get(table, []):
            if row.get("id") == row_id:
                return row
        return None

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [r for r in self._tables.get(table, []) if self._matches(r, filters or {})]
            if order_by:
                rows.sort(key=_sort_key(order_by), reverse=descending)
            if limit is not None:
                rows = rows[: max(0, limit)]
            return copy.deepcopy(rows)

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            stored = copy.deepcopy(dict(row))
            stored["id"] = str(stored.get("id") or uuid.uuid4().hex)
            now = now_iso()
            stored.setdefault("created_at", now)
            stored.setdefault("updated_at", now)
            existing = self._tables.setdefault(table, [])
            if any(r.get("id") == stored["id"] for r in existing):
                raise ConflictError(f"{table}: duplicate id {stored['id']}")
            for group in self._unique.get(table, ()):
                values = tuple(stored.get(col) for col in group)
                if any(v is None for v in values):
                    continue
                for other in existing:
                    if tuple(other.get(col) for col in group) == values:
                        raise ConflictError(f"{table}: duplicate value for {', '.join(group)}")
            existing.append(stored)
            return copy.deepcopy(stored)

    def update_by_id(self, table: str, row_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            row = self._find(table, row_id)
            if row is None:
                raise PersistenceError(f"{table}: row {row_id} not found")
            row.update(copy.deepcopy(dict(values)))
            return copy.deepcopy(row)

    def delete(self, table: str, *, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise PersistenceError(f"{table}: refusing to delete without filters")
        with self._lock:
            rows = self._tables.get(table, [])
            kept = [r for r in rows if not self._matches(r, filters)]
            removed = len(rows) - len(kept)
            self._tables[table] = kept
            return removed

    def increment(self, table: str, row_id: str, column: str) -> None:
        with self._lock:
            row = self._find(table, row_id)
            if row is None:
                raise PersistenceError(f"{table}: row {row_id} not found")
            row[column] = int(row.get(column) or 0) + 1


_gateway: PersistenceGateway | None = None


def get_gateway() -> PersistenceGateway:
    global _gateway
    if _gateway is not None:
        return _gateway
    impl = os.getenv("PORTFOLIO_GATEWAY_IMPL", "memory").lower()
    if impl == "rest":
        from .gateway_rest import RestGateway

        _gateway = RestGateway.from_env()
    elif impl == "mongo":
        from .gateway_mongo import MongoGateway

        _gateway = MongoGateway()
    else:
        _gateway = InMemoryGateway()
    LOG.info("gateway_selected", extra={"impl": impl})
    return _gateway


def reset_gateway() -> None:
    """Drop the cached gateway (used by tests)."""
    global _gateway
    _gateway = None
