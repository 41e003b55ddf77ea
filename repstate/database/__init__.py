"""
Database Module
===============

Datastore abstraction for the ledger mirror.

Backends:
    - memory: in-process tables (development, tests)
    - mongodb: Motor client with transactional batch commits

Usage:
    from repstate.database import get_datastore

    store = get_datastore()
    await store.connect()
"""

from repstate.database.store import (
    Collection,
    Datastore,
    MemoryDatastore,
    Record,
    WriteBatch,
    get_datastore,
)


__all__ = [
    "Collection",
    "Datastore",
    "MemoryDatastore",
    "Record",
    "WriteBatch",
    "get_datastore",
]
