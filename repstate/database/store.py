"""
Datastore
=========

Record store backing the synchronizer mirror.

The engine only needs equality filters, integer ordering and keyed upserts
over a handful of named collections. Writes for one ledger event are staged
in a WriteBatch and committed together, so readers never observe a partially
applied event.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from repstate.logging import get_logger

logger = get_logger(__name__)

Record = dict[str, Any]


class Collection(str, Enum):
    """Named record collections."""

    GST_LEAF = "GSTLeaf"
    GST_ROOT = "GSTRoot"
    ATTESTATION = "Attestation"
    EPOCH = "Epoch"
    PROOF = "Proof"
    NULLIFIER = "Nullifier"
    EVENT = "Event"
    SYNC_STATE = "SyncState"


@dataclass
class WriteOp:
    collection: str
    key: Record
    values: Record


@dataclass
class WriteBatch:
    """Writes staged for one atomic commit."""

    ops: list[WriteOp] = field(default_factory=list)

    def upsert(self, collection: str | Collection, key: Record, values: Record) -> None:
        self.ops.append(WriteOp(_name(collection), dict(key), dict(values)))

    def staged(self, collection: str | Collection, where: Record | None = None) -> list[Record]:
        """Records written to ``collection`` in this batch that match ``where``."""
        name = _name(collection)
        return [
            {**op.key, **op.values}
            for op in self.ops
            if op.collection == name and _matches({**op.key, **op.values}, where)
        ]

    def __len__(self) -> int:
        return len(self.ops)


def _name(collection: str | Collection) -> str:
    return collection.value if isinstance(collection, Collection) else collection


def _matches(record: Record, where: Record | None) -> bool:
    if not where:
        return True
    return all(record.get(k) == v for k, v in where.items())


def _key(key: Record) -> tuple[tuple[str, Any], ...]:
    return tuple(sorted(key.items()))


class Datastore(ABC):
    """Abstract record store."""

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def find_one(self, collection: str | Collection, where: Record) -> Record | None:
        pass

    @abstractmethod
    async def find_many(
        self,
        collection: str | Collection,
        where: Record | None = None,
        order_by: dict[str, int] | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        """
        Find matching records.

        Args:
            collection: Collection name
            where: Equality filter
            order_by: Field -> 1 (ascending) or -1 (descending); integer fields only
            limit: Maximum number of records
        """
        pass

    @abstractmethod
    async def count(self, collection: str | Collection, where: Record | None = None) -> int:
        pass

    @abstractmethod
    async def upsert(self, collection: str | Collection, key: Record, values: Record) -> None:
        pass

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """Apply every write in the batch, all or nothing."""
        pass

    def batch(self) -> WriteBatch:
        return WriteBatch()


class MemoryDatastore(Datastore):
    """
    In-process datastore.

    Commits run without awaiting, so a batch lands between two event loop
    steps and concurrent readers see either none or all of it.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[tuple[tuple[str, Any], ...], Record]] = {}

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def _table(self, collection: str | Collection) -> dict[tuple[tuple[str, Any], ...], Record]:
        return self._tables.setdefault(_name(collection), {})

    async def find_one(self, collection: str | Collection, where: Record) -> Record | None:
        for record in self._table(collection).values():
            if _matches(record, where):
                return dict(record)
        return None

    async def find_many(
        self,
        collection: str | Collection,
        where: Record | None = None,
        order_by: dict[str, int] | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        records = [dict(r) for r in self._table(collection).values() if _matches(r, where)]
        for field_name, direction in reversed(list((order_by or {}).items())):
            records.sort(key=lambda r: int(r.get(field_name, 0)), reverse=direction < 0)
        return records[:limit] if limit is not None else records

    async def count(self, collection: str | Collection, where: Record | None = None) -> int:
        return sum(1 for r in self._table(collection).values() if _matches(r, where))

    async def upsert(self, collection: str | Collection, key: Record, values: Record) -> None:
        self._apply(WriteOp(_name(collection), key, values))

    async def commit(self, batch: WriteBatch) -> None:
        for op in batch.ops:
            self._apply(op)

    def _apply(self, op: WriteOp) -> None:
        table = self._table(op.collection)
        existing = table.get(_key(op.key), {})
        table[_key(op.key)] = {**existing, **op.key, **op.values}

    def clear(self) -> None:
        self._tables.clear()

    def snapshot(self) -> dict[str, list[Record]]:
        """Copy of every table, sorted by key, for comparisons."""
        return {
            name: [dict(table[k]) for k in sorted(table, key=repr)]
            for name, table in sorted(self._tables.items())
        }


def get_datastore() -> Datastore:
    """
    Factory for the configured datastore backend.

    Returns:
        Datastore instance for settings.datastore.backend
    """
    from repstate.config import DatastoreBackend, settings

    backend = settings.datastore.backend
    if backend == DatastoreBackend.MEMORY:
        logger.info("datastore_created", backend="memory")
        return MemoryDatastore()
    if backend == DatastoreBackend.MONGODB:
        from repstate.database.mongodb import MongoDatastore

        logger.info("datastore_created", backend="mongodb", database=settings.datastore.mongodb.db)
        return MongoDatastore()
    raise ValueError(f"Unknown datastore backend: {backend}")
