"""
MongoDB Datastore
=================

Datastore backed by MongoDB through Motor.

Field elements do not fit BSON's int64, so integers outside that range are
stored as "0x"-prefixed hex strings and decoded back on read. Ordering is
only ever requested on small integer fields (index, block_number,
log_index), which stay native.

Version: 0.1.0
"""

import time
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, UpdateOne

from repstate.config import settings
from repstate.database.store import Collection, Datastore, Record, WriteBatch, _name
from repstate.logging import get_logger

logger = get_logger(__name__)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def encode_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and not INT64_MIN <= value <= INT64_MAX:
        return hex(value)
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    if isinstance(value, dict):
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def _decode_record(doc: dict[str, Any]) -> Record:
    doc.pop("_id", None)
    return decode_value(doc)


class MongoDatastore(Datastore):
    """
    Motor-backed datastore.

    Batches commit inside a multi-document transaction, which requires the
    server to run as a replica set.
    """

    def __init__(
        self,
        uri: str | None = None,
        database: str | None = None,
    ) -> None:
        self._uri = uri or settings.datastore.mongodb.uri
        self._database_name = database or settings.datastore.mongodb.db
        self._client: AsyncIOMotorClient | None = None  # type: ignore[type-arg]

    def _get_client(self) -> AsyncIOMotorClient:  # type: ignore[type-arg]
        if self._client is None:
            self._client = AsyncIOMotorClient(
                self._uri,
                maxPoolSize=50,
                minPoolSize=1,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=5000,
            )
            logger.info(
                "mongodb_client_created",
                host=settings.datastore.mongodb.host,
                database=self._database_name,
            )
        return self._client

    @property
    def db(self) -> AsyncIOMotorDatabase:  # type: ignore[type-arg]
        return self._get_client()[self._database_name]

    async def connect(self) -> None:
        await self.create_indexes()

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("mongodb_client_closed")

    async def health_check(self) -> dict[str, Any]:
        """
        Check database health.

        Returns:
            dict with status and latency
        """
        try:
            start = time.perf_counter()
            result = await self._get_client().admin.command("ping")
            latency_ms = (time.perf_counter() - start) * 1000
            return {
                "status": "healthy" if result.get("ok") == 1 else "unhealthy",
                "latency_ms": round(latency_ms, 2),
            }
        except Exception as e:
            logger.error("mongodb_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }

    async def create_indexes(self) -> None:
        """Create indexes for the mirror collections."""
        db = self.db

        await db[Collection.GST_LEAF.value].create_index([("epoch", ASCENDING), ("index", ASCENDING)])
        await db[Collection.GST_LEAF.value].create_index("hash")
        await db[Collection.GST_ROOT.value].create_index([("epoch", ASCENDING), ("root", ASCENDING)])
        await db[Collection.ATTESTATION.value].create_index([("epoch", ASCENDING), ("epoch_key", ASCENDING)])
        await db[Collection.ATTESTATION.value].create_index("index")
        await db[Collection.EPOCH.value].create_index("number", unique=True)
        await db[Collection.PROOF.value].create_index("index", unique=True)
        await db[Collection.NULLIFIER.value].create_index("nullifier", unique=True)
        await db[Collection.EVENT.value].create_index("event_id", unique=True)

        logger.info("mongodb_indexes_created")

    async def find_one(self, collection: str | Collection, where: Record) -> Record | None:
        doc = await self.db[_name(collection)].find_one(encode_value(where))
        return _decode_record(doc) if doc is not None else None

    async def find_many(
        self,
        collection: str | Collection,
        where: Record | None = None,
        order_by: dict[str, int] | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        cursor = self.db[_name(collection)].find(encode_value(where or {}))
        if order_by:
            cursor = cursor.sort(
                [(k, ASCENDING if v >= 0 else DESCENDING) for k, v in order_by.items()]
            )
        if limit is not None:
            cursor = cursor.limit(limit)
        return [_decode_record(doc) async for doc in cursor]

    async def count(self, collection: str | Collection, where: Record | None = None) -> int:
        return await self.db[_name(collection)].count_documents(encode_value(where or {}))

    async def upsert(self, collection: str | Collection, key: Record, values: Record) -> None:
        key_doc = encode_value(key)
        await self.db[_name(collection)].update_one(
            key_doc,
            {"$set": {**key_doc, **encode_value(values)}},
            upsert=True,
        )

    async def commit(self, batch: WriteBatch) -> None:
        if not batch.ops:
            return

        grouped: dict[str, list[UpdateOne]] = {}
        for op in batch.ops:
            key_doc = encode_value(op.key)
            grouped.setdefault(op.collection, []).append(
                UpdateOne(key_doc, {"$set": {**key_doc, **encode_value(op.values)}}, upsert=True)
            )

        async with await self._get_client().start_session() as session:
            async with session.start_transaction():
                for name, requests in grouped.items():
                    await self.db[name].bulk_write(requests, ordered=True, session=session)

        logger.debug("mongodb_batch_committed", writes=len(batch.ops))
