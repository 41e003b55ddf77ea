"""
Sync Module
===========

Ledger mirror: ordered event replay, epoch clock, catch-up and nullifier
tracking.

Usage:
    from repstate.sync import Synchronizer

    sync = Synchronizer(store, ledger)
    await sync.start()
    await sync.wait_for_sync()
"""

from repstate.sync.interfaces import EventListener, SynchronizerView
from repstate.sync.nullifiers import NullifierKind, NullifierTracker
from repstate.sync.synchronizer import Synchronizer


__all__ = [
    "Synchronizer",
    "SynchronizerView",
    "EventListener",
    "NullifierTracker",
    "NullifierKind",
]
