"""
Mock Ledger Client
==================

In-memory ledger for development and testing.

Plays the role of the on-chain contract: it keeps the epoch clock, records
attestations, indexes submitted proofs, rejects double-spent nullifiers and
seals each epoch's tree root from its own attestation log. Every transaction
lands in its own block.

Data is stored in memory and lost on restart.

Version: 0.1.0
"""

import hashlib
import time
import uuid
from typing import Any

from repstate.config import LedgerMode, ProtocolSettings, settings
from repstate.crypto.epoch_tree import build_epoch_tree, build_hash_chains
from repstate.errors import LedgerCallFailedError
from repstate.ledger.client import Block, Deployment, LedgerClient, TransactionReceipt
from repstate.ledger.events import (
    AttestationSubmitted,
    EpochEnded,
    LedgerEvent,
    ProofIndexed,
    UserSignedUp,
    UserStateTransitioned,
)
from repstate.logging import get_logger
from repstate.models.attestation import Attestation
from repstate.zk.models import Circuit, ZKProof
from repstate.zk.prover import Prover
from repstate.zk.proofs import FinalTransitionProof, proof_epoch_key

logger = get_logger(__name__)


class MockLedgerClient(LedgerClient):
    """
    In-memory mock ledger.

    Usage:
        ledger = MockLedgerClient()
        await ledger.user_sign_up(identity.commitment)
        await ledger.attest(Attestation(attester_id=1, pos_rep=5), epoch_key)
        await ledger.end_epoch()
    """

    def __init__(
        self,
        protocol: ProtocolSettings | None = None,
        start_timestamp: int | None = None,
        prover: Prover | None = None,
    ) -> None:
        self.protocol = protocol or settings.protocol
        self._start_timestamp = start_timestamp if start_timestamp is not None else int(time.time())
        self._prover = prover
        self._connected = False
        self._reset_state()

        logger.debug("mock_ledger_initialized", start_timestamp=self._start_timestamp)

    def _reset_state(self) -> None:
        self._block_number = 0
        self._timestamp = self._start_timestamp
        self._current_epoch = 1
        self._events: list[LedgerEvent] = []
        self._proofs: dict[int, tuple[Circuit, list[int]]] = {}
        self._attestations: dict[int, list[tuple[int, int]]] = {}
        self._epoch_roots: dict[int, int] = {}
        self._spent_nullifiers: set[int] = set()

    @property
    def mode(self) -> LedgerMode:
        return LedgerMode.MOCK

    @property
    def current_epoch(self) -> int:
        return self._current_epoch

    async def connect(self) -> None:
        self._connected = True
        logger.info("mock_ledger_connected")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("mock_ledger_disconnected")

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "connected": self._connected,
            "block_number": self._block_number,
            "current_epoch": self._current_epoch,
        }

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_deployment(self) -> Deployment:
        return Deployment(
            start_timestamp=self._start_timestamp,
            epoch_length=self.protocol.epoch_length,
            contract_address="0x" + "0" * 40,
        )

    async def get_latest_block(self) -> Block:
        return Block(number=self._block_number, timestamp=self._timestamp)

    async def get_events(self, from_block: int, to_block: int) -> list[LedgerEvent]:
        return [e for e in self._events if from_block <= e.block_number <= to_block]

    def epoch_root(self, epoch: int) -> int | None:
        return self._epoch_roots.get(epoch)

    # =========================================================================
    # Transactions
    # =========================================================================

    def _generate_tx_hash(self) -> str:
        return "0x" + hashlib.sha256(uuid.uuid4().bytes).hexdigest()

    def _emit(self, *events: LedgerEvent) -> TransactionReceipt:
        """Append events to a fresh block."""
        self._block_number += 1
        tx_hash = self._generate_tx_hash()
        emitted: list[LedgerEvent] = []
        for log_index, event in enumerate(events):
            emitted.append(
                event.model_copy(
                    update={
                        "block_number": self._block_number,
                        "log_index": log_index,
                        "transaction_hash": tx_hash,
                    }
                )
            )
        self._events.extend(emitted)
        return TransactionReceipt(
            tx_hash=tx_hash,
            block_number=self._block_number,
            events=[e.id for e in emitted],
        )

    def _revert(self, message: str, **context: Any) -> None:
        logger.warning("mock_ledger_reverted", reason=message, **context)
        raise LedgerCallFailedError(message, context=context)

    async def user_sign_up(
        self,
        identity_commitment: int,
        attester_id: int = 0,
        airdrop: int = 0,
    ) -> TransactionReceipt:
        receipt = self._emit(
            UserSignedUp(
                block_number=0,
                log_index=0,
                epoch=self._current_epoch,
                identity_commitment=identity_commitment,
                attester_id=attester_id,
                airdrop=airdrop,
            )
        )
        logger.info("mock_user_signed_up", epoch=self._current_epoch, block_number=receipt.block_number)
        return receipt

    async def attest(
        self,
        attestation: Attestation,
        epoch_key: int,
        proof_index: int | None = None,
    ) -> TransactionReceipt:
        if not 0 <= epoch_key < 2**self.protocol.epoch_tree_depth:
            self._revert("Epoch key out of range", epoch_key=epoch_key)

        if proof_index is not None:
            if proof_index not in self._proofs:
                self._revert("Unknown proof index", proof_index=proof_index)
            circuit, signals = self._proofs[proof_index]
            bound = proof_epoch_key(circuit, signals, self.protocol.max_reputation_budget)
            if bound != (self._current_epoch, epoch_key):
                self._revert("Proof does not bind this epoch key", proof_index=proof_index)

        self._attestations.setdefault(self._current_epoch, []).append((epoch_key, attestation.hash()))
        return self._emit(
            AttestationSubmitted(
                block_number=0,
                log_index=0,
                epoch=self._current_epoch,
                epoch_key=epoch_key,
                attestation=attestation,
                proof_index=proof_index,
            )
        )

    async def end_epoch(self) -> TransactionReceipt:
        """Seal the current epoch and advance the clock to the next one."""
        epoch = self._current_epoch
        epoch_end = self._start_timestamp + epoch * self.protocol.epoch_length
        self._timestamp = max(self._timestamp, epoch_end)

        chains = build_hash_chains(self._attestations.get(epoch, []))
        root = build_epoch_tree(self.protocol.epoch_tree_depth, chains).root
        self._epoch_roots[epoch] = root
        self._current_epoch += 1

        receipt = self._emit(
            EpochEnded(block_number=0, log_index=0, epoch=epoch, epoch_tree_root=root)
        )
        logger.info("mock_epoch_ended", epoch=epoch, epoch_keys=len(chains))
        return receipt

    async def submit_proof(
        self,
        circuit: Circuit,
        public_signals: list[int],
        proof: ZKProof,
    ) -> TransactionReceipt:
        if self._prover is not None and not await self._prover.verify(circuit, public_signals, proof):
            self._revert("Invalid proof", circuit=circuit.value)

        nullifiers = self._nullifiers_of(circuit, public_signals)
        if any(n in self._spent_nullifiers for n in nullifiers) or len(set(nullifiers)) != len(nullifiers):
            self._revert("Nullifier already spent", circuit=circuit.value)

        if circuit == Circuit.USER_STATE_TRANSITION:
            from_epoch = FinalTransitionProof.from_epoch_of(
                public_signals, self.protocol.num_epoch_key_nonce_per_epoch
            )
            if from_epoch >= self._current_epoch:
                self._revert("Epoch has not ended", from_epoch=from_epoch)

        proof_index = len(self._proofs) + 1
        self._proofs[proof_index] = (circuit, list(public_signals))
        self._spent_nullifiers.update(nullifiers)

        events: list[LedgerEvent] = [
            ProofIndexed(
                block_number=0,
                log_index=0,
                proof_index=proof_index,
                circuit=circuit,
                epoch=self._current_epoch,
                public_signals=list(public_signals),
                proof=proof,
            )
        ]
        if circuit == Circuit.USER_STATE_TRANSITION:
            events.append(
                UserStateTransitioned(
                    block_number=0,
                    log_index=0,
                    epoch=self._current_epoch,
                    gst_leaf=public_signals[0],
                    proof_index=proof_index,
                )
            )

        receipt = self._emit(*events)
        logger.info("mock_proof_submitted", circuit=circuit.value, proof_index=proof_index)
        return receipt.model_copy(update={"proof_index": proof_index})

    def _nullifiers_of(self, circuit: Circuit, public_signals: list[int]) -> list[int]:
        if circuit == Circuit.PROVE_REPUTATION:
            return [n for n in public_signals[: self.protocol.max_reputation_budget] if n]
        if circuit == Circuit.USER_STATE_TRANSITION:
            return FinalTransitionProof.epoch_key_nullifiers_of(
                public_signals, self.protocol.num_epoch_key_nonce_per_epoch
            )
        return []

    # =========================================================================
    # Clock
    # =========================================================================

    def advance_time(self, seconds: int) -> None:
        """Move chain time forward without mining a block."""
        self._timestamp += seconds

    # =========================================================================
    # Testing helpers
    # =========================================================================

    def clear_all(self) -> None:
        """Clear all mock data (for testing)."""
        self._reset_state()
        logger.debug("mock_ledger_cleared")

    def get_stats(self) -> dict[str, int]:
        return {
            "block_number": self._block_number,
            "current_epoch": self._current_epoch,
            "events": len(self._events),
            "proofs": len(self._proofs),
            "spent_nullifiers": len(self._spent_nullifiers),
        }
