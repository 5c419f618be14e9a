from __future__ import annotations

import asyncio
import logging
import os
import uuid
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional

try:  # pragma: no cover - optional dependency
    from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase  # type: ignore
    from pymongo import ASCENDING, DESCENDING, ReturnDocument  # type: ignore
    from pymongo.errors import DuplicateKeyError, PyMongoError  # type: ignore
except Exception:  # pragma: no cover - dependency optional
    AsyncIOMotorClient = None  # type: ignore[misc]
    AsyncIOMotorDatabase = None  # type: ignore[misc]

from ..domain.errors import ConflictError, PersistenceError
from .gateway import UNIQUE_COLUMNS, now_iso

LOG = logging.getLogger("portfolio.gateway")


class MongoGateway:
    """Gateway storing each table as a Mongo collection keyed by ``id``."""

    def __init__(self, client: Any = None, db_name: Optional[str] = None) -> None:
        self._loop = asyncio.new_event_loop()
        self._lock = RLock()
        if client is None:
            if AsyncIOMotorClient is None:
                raise RuntimeError("motor is required for the mongo gateway")
            mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
            client = AsyncIOMotorClient(mongo_url, serverSelectionTimeoutMS=2000, io_loop=self._loop)
            try:
                self._run(client.server_info())
            except Exception as exc:
                raise RuntimeError(f"Mongo unreachable at {mongo_url}: {exc}") from exc
        self._client = client
        self._db: AsyncIOMotorDatabase = client[db_name or os.getenv("MONGO_DB", "portfolio")]
        self._ensure_indexes()

    def _ensure_indexes(self) -> None:
        for table, groups in UNIQUE_COLUMNS.items():
            collection = self._db[table]
            self._run(collection.create_index("id", unique=True))
            for group in groups:
                self._run(
                    collection.create_index(
                        [(col, ASCENDING) for col in group],
                        unique=True,
                        partialFilterExpression={col: {"$type": "string"} for col in group},
                    )
                )

    def _run(self, awaitable: Any) -> Any:
        if not asyncio.iscoroutine(awaitable) and not asyncio.isfuture(awaitable):
            return awaitable
        with self._lock:
            return self._loop.run_until_complete(awaitable)

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        # mongo treats limit(0) as no limit
        if limit is not None and limit <= 0:
            return []
        try:
            cursor = self._db[table].find(dict(filters or {}), {"_id": 0})
            if order_by:
                cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
            if limit is not None:
                cursor = cursor.limit(limit)
            return list(self._run(cursor.to_list(length=limit)))
        except PyMongoError as exc:
            raise PersistenceError(f"{table}: select failed: {exc}") from exc

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        doc = dict(row)
        doc["id"] = str(doc.get("id") or uuid.uuid4().hex)
        now = now_iso()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        try:
            # insert_one adds _id to the document it is given
            self._run(self._db[table].insert_one(dict(doc)))
        except DuplicateKeyError as exc:
            raise ConflictError(f"{table}: duplicate key: {exc}") from exc
        except PyMongoError as exc:
            raise PersistenceError(f"{table}: insert failed: {exc}") from exc
        return doc

    def update_by_id(self, table: str, row_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            updated = self._run(
                self._db[table].find_one_and_update(
                    {"id": row_id},
                    {"$set": dict(values)},
                    projection={"_id": 0},
                    return_document=ReturnDocument.AFTER,
                )
            )
        except PyMongoError as exc:
            raise PersistenceError(f"{table}: update failed: {exc}") from exc
        if not updated:
            raise PersistenceError(f"{table}: row {row_id} not found")
        return dict(updated)

    def delete(self, table: str, *, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise PersistenceError(f"{table}: refusing to delete without filters")
        try:
            result = self._run(self._db[table].delete_many(dict(filters)))
        except PyMongoError as exc:
            raise PersistenceError(f"{table}: delete failed: {exc}") from exc
        return int(result.deleted_count)

    def increment(self, table: str, row_id: str, column: str) -> None:
        try:
            result = self._run(self._db[table].update_one({"id": row_id}, {"$inc": {column: 1}}))
        except PyMongoError as exc:
            raise PersistenceError(f"{table}: increment failed: {exc}") from exc
        if not result.matched_count:
            raise PersistenceError(f"{table}: row {row_id} not found")
