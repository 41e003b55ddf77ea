"""
Narrow view of the synchronizer consumed by UserState.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from repstate.config.settings import ProtocolSettings
from repstate.crypto.merkle import IncrementalMerkleTree, SparseMerkleTree
from repstate.ledger.events import LedgerEvent
from repstate.models.attestation import Attestation

EventListener = Callable[[LedgerEvent], Awaitable[None]]


class SynchronizerView(Protocol):
    """Read-only mirror queries plus event subscription."""

    protocol: ProtocolSettings

    async def load_current_epoch(self) -> int: ...

    async def latest_sealed_epoch(self) -> int: ...

    async def gen_gst_tree(self, epoch: int) -> IncrementalMerkleTree: ...

    async def count_gst_leaves(self, epoch: int) -> int: ...

    async def find_gst_leaf(self, leaf: int, epoch: int | None = None) -> dict | None: ...

    async def gen_epoch_tree(self, epoch: int) -> SparseMerkleTree: ...

    async def get_attestations(self, epoch_key: int, epoch: int) -> list[Attestation]: ...

    async def nullifier_exists(self, nullifier: int) -> bool: ...

    async def load_proof(self, index: int) -> dict | None: ...

    async def subscribe(self, listener: EventListener, *, replay: bool = False) -> Callable[[], None]: ...
