"""
Nullifier Tracker
=================

Monotonic spent-set over derived nullifier values, persisted in the
``Nullifier`` collection.

Spends are staged into the caller's WriteBatch so they commit together with
the event that spent them. ``mark`` does not check for an existing entry:
callers check ``exists`` (and ``staged``, for spends earlier in the same
batch) first.

Version: 0.1.0
"""

from enum import Enum

from repstate.database.store import Collection, Datastore, WriteBatch


class NullifierKind(str, Enum):
    EPOCH_KEY = "epoch_key"
    REPUTATION = "reputation"


class NullifierTracker:
    """Spent-set keyed by nullifier value. Zero is never a nullifier."""

    def __init__(self, store: Datastore) -> None:
        self._store = store

    async def exists(self, nullifier: int) -> bool:
        if nullifier == 0:
            return False
        return await self._store.find_one(Collection.NULLIFIER, {"nullifier": nullifier}) is not None

    @staticmethod
    def staged(batch: WriteBatch, nullifier: int) -> bool:
        return bool(batch.staged(Collection.NULLIFIER, {"nullifier": nullifier}))

    @staticmethod
    def mark(
        batch: WriteBatch,
        nullifier: int,
        epoch: int,
        event_id: str,
        kind: NullifierKind,
    ) -> None:
        if nullifier == 0:
            raise ValueError("Zero is not a nullifier")
        batch.upsert(
            Collection.NULLIFIER,
            {"nullifier": nullifier},
            {"epoch": epoch, "event_id": event_id, "kind": kind.value},
        )

    async def count(self, epoch: int | None = None) -> int:
        where = {"epoch": epoch} if epoch is not None else None
        return await self._store.count(Collection.NULLIFIER, where)
