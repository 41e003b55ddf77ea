"""
Ledger Module
=============

Interface to the ledger that orders attestations and accepts proofs.

Modes:
    - mock: in-memory contract simulation (development, tests)
    - rpc: JSON-RPC client (not yet implemented)

Usage:
    from repstate.ledger import get_ledger_client

    ledger = get_ledger_client()
    events = await ledger.get_events(0, await ledger.get_block_number())
"""

from repstate.ledger.client import (
    Block,
    Deployment,
    LedgerClient,
    TransactionReceipt,
    get_ledger_client,
    reset_ledger_client,
    set_ledger_client,
)
from repstate.ledger.events import (
    AttestationSubmitted,
    EpochEnded,
    EventKind,
    LedgerEvent,
    ProofIndexed,
    UserSignedUp,
    UserStateTransitioned,
    parse_event,
)
from repstate.ledger.mock import MockLedgerClient


__all__ = [
    "Block",
    "Deployment",
    "LedgerClient",
    "TransactionReceipt",
    "get_ledger_client",
    "set_ledger_client",
    "reset_ledger_client",
    "MockLedgerClient",
    "EventKind",
    "LedgerEvent",
    "UserSignedUp",
    "AttestationSubmitted",
    "EpochEnded",
    "ProofIndexed",
    "UserStateTransitioned",
    "parse_event",
]
