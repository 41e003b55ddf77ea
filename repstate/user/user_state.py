"""
User State
==========

Identity-scoped view over a shared Synchronizer.

Tracks whether the identity has signed up, the epoch and GST leaf it last
transitioned into, and its per-attester reputation. Stages epoch transitions
when the identity's epoch is sealed and commits them once the ledger accepts
the matching transition. Builds inputs for, and requests, the identity's
zero-knowledge proofs.

State machine:
    NotSignedUp --sign_up--> SignedUp(E)
    SignedUp(E) --epoch_transition(E)--> SignedUp(E) + Staged(leaf)
    SignedUp(E) + Staged(leaf) --user_state_transition(E, leaf)--> SignedUp(E')
    SignedUp(E) + Staged(leaf) --user_state_transition(mismatch)--> SignedUp(E)

Version: 0.1.0
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from repstate.config import ProtocolSettings
from repstate.crypto.hashing import (
    gen_epoch_key,
    gen_epoch_key_nullifier,
    gen_reputation_nullifier,
    hash_left_right,
)
from repstate.crypto.identity import ZkIdentity
from repstate.crypto.merkle import MerkleProof, SparseMerkleTree
from repstate.errors import (
    AlreadySignedUpError,
    ConsistencyError,
    DuplicateNullifierError,
    InsufficientReputationError,
    InvalidAttesterIdError,
    NonceOutOfRangeError,
    NotSignedUpError,
    StaleTransitionError,
)
from repstate.ledger.events import EpochEnded, LedgerEvent, UserSignedUp, UserStateTransitioned
from repstate.logging import bound_context, get_logger
from repstate.models.attestation import Attestation
from repstate.models.reputation import Reputation, default_user_state_leaf
from repstate.sync.interfaces import SynchronizerView
from repstate.user.inputs import (
    build_epoch_key_inputs,
    build_reputation_inputs,
    build_transition_plan,
    build_user_sign_up_inputs,
    stringify_big_ints,
)
from repstate.user.options import ReputationProofOptions
from repstate.zk.models import Circuit, ProofResult
from repstate.zk.proofs import (
    EpochKeyProof,
    FinalTransitionProof,
    ProcessAttestationsProof,
    ReputationProof,
    StartTransitionProof,
    UserSignUpProof,
    UserStateTransitionProofs,
)
from repstate.zk.prover import Prover

logger = get_logger(__name__)


@dataclass(frozen=True)
class StagedTransition:
    """Result of epoch_transition, waiting for the ledger to accept it."""

    from_epoch: int
    new_gst_leaf: int
    reputations: dict[int, Reputation]


class UserState:
    """
    Reputation state of one identity.

    Usage:
        user = UserState(sync, prover, identity)
        await user.start()
        proof = await user.gen_verify_epoch_key_proof(nonce=0)
    """

    def __init__(
        self,
        sync: SynchronizerView,
        prover: Prover,
        identity: ZkIdentity,
        *,
        has_signed_up: bool = False,
        latest_transitioned_epoch: int = 0,
        latest_gst_leaf_index: int = -1,
        reputations: dict[int, Reputation] | None = None,
        transitioned_from_attestations: dict[int, list[Attestation]] | None = None,
    ) -> None:
        self._sync = sync
        self._prover = prover
        self.identity = identity

        self.has_signed_up = has_signed_up
        self.latest_transitioned_epoch = latest_transitioned_epoch
        self.latest_gst_leaf_index = latest_gst_leaf_index
        self.reputations: dict[int, Reputation] = dict(reputations or {})
        self.transitioned_from_attestations: dict[int, list[Attestation]] = dict(
            transitioned_from_attestations or {}
        )

        self.staged: StagedTransition | None = None
        self._reserved_nullifiers: set[int] = set()
        self._lock = asyncio.Lock()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def protocol(self) -> ProtocolSettings:
        return self._sync.protocol

    @property
    def commitment(self) -> int:
        return self.identity.commitment

    # =========================================================================
    # Subscription
    # =========================================================================

    async def start(self) -> None:
        """
        Follow the synchronizer's applied events.

        Events the mirror applied before this call are delivered first, so a
        UserState attached to an already synced mirror catches up on its
        sign-up and transitions.
        """
        if self._unsubscribe is None:
            self._unsubscribe = await self._sync.subscribe(self._on_event, replay=True)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_event(self, event: LedgerEvent) -> None:
        if isinstance(event, UserSignedUp):
            if event.identity_commitment == self.commitment and not self.has_signed_up:
                await self.sign_up(
                    event.epoch,
                    event.identity_commitment,
                    event.attester_id,
                    event.airdrop,
                )
        elif isinstance(event, EpochEnded):
            await self.epoch_transition(event.epoch)
        elif isinstance(event, UserStateTransitioned):
            staged = self.staged
            if staged is None or event.gst_leaf != staged.new_gst_leaf:
                return
            proof = await self._sync.load_proof(event.proof_index)
            if proof is None:
                return
            from_epoch = FinalTransitionProof.from_epoch_of(
                proof["public_signals"],
                self.protocol.num_epoch_key_nonce_per_epoch,
            )
            await self.user_state_transition(from_epoch, event.gst_leaf)

    # =========================================================================
    # State machine
    # =========================================================================

    async def sign_up(
        self,
        epoch: int,
        commitment: int,
        attester_id: int = 0,
        airdrop: int = 0,
    ) -> None:
        """
        Record this identity's sign-up.

        Ignored for any other commitment. The GST leaf must already be in the
        synchronizer's mirror.

        Raises:
            AlreadySignedUpError: If this identity has already signed up
        """
        if commitment != self.commitment:
            return

        async with self._lock:
            if self.has_signed_up:
                raise AlreadySignedUpError("User has already signed up", context={"epoch": epoch})

            reputations: dict[int, Reputation] = {}
            if attester_id and airdrop:
                reputations[attester_id] = Reputation.default().update(airdrop, 0, 0, 1)
            root = self._build_user_state_tree(reputations).root
            record = await self._sync.find_gst_leaf(hash_left_right(commitment, root), epoch)
            if record is None:
                raise ConsistencyError(
                    "Sign-up leaf not found in the global state tree",
                    context={"epoch": epoch},
                )

            self.has_signed_up = True
            self.latest_transitioned_epoch = epoch
            self.latest_gst_leaf_index = record["index"]
            self.reputations = reputations

        logger.info("user_signed_up_locally", epoch=epoch, gst_index=record["index"])

    async def epoch_transition(self, epoch: int) -> None:
        """
        Stage the transition out of ``epoch``.

        Only acts when ``epoch`` is the epoch this identity is currently in.
        Attestations to each of the epoch's epoch keys are folded in ledger
        log order into a copy of the reputation ledger.
        """
        if not self.has_signed_up or epoch != self.latest_transitioned_epoch:
            return

        async with self._lock:
            snapshot: dict[int, list[Attestation]] = {}
            reputations = dict(self.reputations)
            for epoch_key in self.get_epoch_keys(epoch):
                attestations = await self._sync.get_attestations(epoch_key, epoch)
                snapshot[epoch_key] = attestations
                for attestation in attestations:
                    current = reputations.get(attestation.attester_id, Reputation.default())
                    reputations[attestation.attester_id] = current.update(
                        attestation.pos_rep,
                        attestation.neg_rep,
                        attestation.graffiti,
                        attestation.sign_up,
                        overwrite_graffiti=attestation.overwrite_graffiti,
                    )

            root = self._build_user_state_tree(reputations).root
            self.transitioned_from_attestations = snapshot
            self.staged = StagedTransition(
                from_epoch=epoch,
                new_gst_leaf=hash_left_right(self.commitment, root),
                reputations=reputations,
            )

        logger.info(
            "epoch_transition_staged",
            epoch=epoch,
            attestations=sum(len(a) for a in snapshot.values()),
        )

    async def user_state_transition(self, from_epoch: int, new_gst_leaf: int) -> None:
        """
        Commit the staged transition.

        Staged state is cleared whether or not the commit succeeds.

        Raises:
            NotSignedUpError: If this identity has not signed up
            StaleTransitionError: If nothing matching is staged, or the leaf
                is not in a later epoch's global state tree
        """
        async with self._lock:
            staged, self.staged = self.staged, None

            if not self.has_signed_up:
                raise NotSignedUpError("User has not signed up")
            if (
                staged is None
                or from_epoch != self.latest_transitioned_epoch
                or from_epoch != staged.from_epoch
                or new_gst_leaf != staged.new_gst_leaf
            ):
                logger.warning(
                    "user_state_transition_discarded",
                    from_epoch=from_epoch,
                    latest_transitioned_epoch=self.latest_transitioned_epoch,
                )
                raise StaleTransitionError(
                    "Transition does not match staged state",
                    context={"from_epoch": from_epoch},
                )

            record = await self._sync.find_gst_leaf(new_gst_leaf)
            if record is None or record["epoch"] <= from_epoch:
                raise StaleTransitionError(
                    "Transition leaf is not in a later epoch",
                    context={"from_epoch": from_epoch},
                )

            self.latest_transitioned_epoch = record["epoch"]
            self.latest_gst_leaf_index = record["index"]
            self.reputations = staged.reputations

        logger.info(
            "user_state_transition_committed",
            from_epoch=from_epoch,
            to_epoch=record["epoch"],
            gst_index=record["index"],
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_rep_by_attester(self, attester_id: int) -> Reputation:
        return self.reputations.get(attester_id, Reputation.default())

    def get_epoch_keys(self, epoch: int | None = None) -> list[int]:
        epoch = self.latest_transitioned_epoch if epoch is None else epoch
        return [
            gen_epoch_key(
                self.identity.identity_nullifier,
                epoch,
                nonce,
                self.protocol.epoch_tree_depth,
            )
            for nonce in range(self.protocol.num_epoch_key_nonce_per_epoch)
        ]

    def get_epoch_key_nullifiers(self, epoch: int) -> list[int]:
        return [
            gen_epoch_key_nullifier(self.identity.identity_nullifier, epoch, nonce)
            for nonce in range(self.protocol.num_epoch_key_nonce_per_epoch)
        ]

    def _build_user_state_tree(self, reputations: dict[int, Reputation]) -> SparseMerkleTree:
        tree = SparseMerkleTree(self.protocol.user_state_tree_depth, default_user_state_leaf())
        for attester_id, reputation in reputations.items():
            tree.update(attester_id, reputation.hash())
        return tree

    def gen_user_state_tree(self) -> SparseMerkleTree:
        return self._build_user_state_tree(self.reputations)

    async def _gst_proof(self) -> MerkleProof:
        tree = await self._sync.gen_gst_tree(self.latest_transitioned_epoch)
        return tree.create_proof(self.latest_gst_leaf_index)

    # =========================================================================
    # Validation
    # =========================================================================

    def _check_signed_up(self) -> None:
        if not self.has_signed_up:
            raise NotSignedUpError("User has not signed up")

    def _check_nonce(self, nonce: int) -> None:
        limit = self.protocol.num_epoch_key_nonce_per_epoch
        if not 0 <= nonce < limit:
            raise NonceOutOfRangeError(
                f"Epoch key nonce must be in [0, {limit})",
                context={"nonce": nonce},
            )

    def _check_attester_id(self, attester_id: int) -> None:
        limit = 2**self.protocol.user_state_tree_depth
        if not 0 < attester_id < limit:
            raise InvalidAttesterIdError(
                f"Attester id must be in (0, {limit})",
                context={"attester_id": attester_id},
            )

    # =========================================================================
    # Proofs
    # =========================================================================

    async def _prove(self, circuit: Circuit, inputs: dict[str, Any]) -> ProofResult:
        result = await self._prover.prove(circuit, stringify_big_ints(inputs))
        logger.debug("proof_generated", circuit=circuit.value, proving_time_ms=result.proving_time_ms)
        return result

    async def gen_verify_epoch_key_proof(self, nonce: int) -> EpochKeyProof:
        self._check_signed_up()
        self._check_nonce(nonce)

        epoch = self.latest_transitioned_epoch
        epoch_key = gen_epoch_key(
            self.identity.identity_nullifier,
            epoch,
            nonce,
            self.protocol.epoch_tree_depth,
        )
        inputs = build_epoch_key_inputs(
            self.identity,
            await self._gst_proof(),
            self.gen_user_state_tree().root,
            epoch,
            nonce,
            epoch_key,
        )
        return EpochKeyProof.from_result(await self._prove(Circuit.VERIFY_EPOCH_KEY, inputs))

    async def _nullifier_unavailable(self, nullifier: int) -> bool:
        return nullifier in self._reserved_nullifiers or await self._sync.nullifier_exists(nullifier)

    async def gen_prove_reputation_proof(
        self,
        attester_id: int,
        nonce: int,
        options: ReputationProofOptions | None = None,
    ) -> ReputationProof:
        """
        Prove reputation with one attester, optionally spending reputation.

        Args:
            attester_id: Attester whose reputation is proven
            nonce: Epoch key nonce
            options: Minimum reputation, graffiti and nonces to spend

        Raises:
            ValueError: If more nonces are given than the reputation budget
            DuplicateNullifierError: If a nonce repeats, or its nullifier is
                already spent or reserved by an earlier proof
            InsufficientReputationError: If the balance cannot cover the nonces
        """
        options = options or ReputationProofOptions()
        self._check_signed_up()
        self._check_nonce(nonce)
        self._check_attester_id(attester_id)

        budget = self.protocol.max_reputation_budget
        rep_nonces = list(options.nonce_list or [])
        if len(rep_nonces) > budget:
            raise ValueError(f"At most {budget} reputation nonces can be spent")
        rep_nonces += [-1] * (budget - len(rep_nonces))

        epoch = self.latest_transitioned_epoch
        id_n = self.identity.identity_nullifier
        reputation = self.get_rep_by_attester(attester_id)
        balance = reputation.pos_rep - reputation.neg_rep

        selected = [n for n in rep_nonces if n != -1]
        if len(set(selected)) != len(selected):
            raise DuplicateNullifierError(
                "Cannot submit duplicated nonce to compute reputation nullifiers",
                context={"attester_id": attester_id},
            )

        nullifiers: list[int] = []
        if selected:
            for n in selected:
                if await self._nullifier_unavailable(gen_reputation_nullifier(id_n, epoch, n, attester_id)):
                    raise DuplicateNullifierError(
                        "Reputation nullifier already spent",
                        context={"attester_id": attester_id, "rep_nonce": n},
                    )

            starter = -1
            for n in range(balance):
                if not await self._nullifier_unavailable(gen_reputation_nullifier(id_n, epoch, n, attester_id)):
                    starter = n
                    break
            if starter == -1:
                raise InsufficientReputationError(
                    "All nullifiers are spent",
                    context={"attester_id": attester_id},
                )
            if starter + len(selected) > balance:
                raise InsufficientReputationError(
                    "Not enough reputation to spend",
                    context={"attester_id": attester_id, "amount": len(selected)},
                )

            for n in selected:
                if not 0 <= n < balance:
                    raise InsufficientReputationError(
                        "Reputation nonce exceeds balance",
                        context={"attester_id": attester_id, "rep_nonce": n},
                    )
                nullifiers.append(gen_reputation_nullifier(id_n, epoch, n, attester_id))

        epoch_key = gen_epoch_key(id_n, epoch, nonce, self.protocol.epoch_tree_depth)
        tree = self.gen_user_state_tree()
        inputs = build_reputation_inputs(
            self.identity,
            await self._gst_proof(),
            tree.root,
            epoch,
            nonce,
            epoch_key,
            attester_id,
            reputation,
            tree.create_proof(attester_id),
            rep_nonces,
            min_rep=options.min_rep,
            prove_graffiti=options.prove_graffiti,
            graffiti_pre_image=options.graffiti_pre_image,
        )
        result = await self._prove(Circuit.PROVE_REPUTATION, inputs)
        self._reserved_nullifiers.update(nullifiers)
        return ReputationProof.from_result(result, budget)

    async def gen_user_sign_up_proof(self, attester_id: int) -> UserSignUpProof:
        self._check_signed_up()
        self._check_attester_id(attester_id)

        epoch = self.latest_transitioned_epoch
        epoch_key = gen_epoch_key(
            self.identity.identity_nullifier,
            epoch,
            0,
            self.protocol.epoch_tree_depth,
        )
        tree = self.gen_user_state_tree()
        inputs = build_user_sign_up_inputs(
            self.identity,
            await self._gst_proof(),
            tree.root,
            epoch,
            epoch_key,
            attester_id,
            self.get_rep_by_attester(attester_id),
            tree.create_proof(attester_id),
        )
        return UserSignUpProof.from_result(await self._prove(Circuit.PROVE_USER_SIGN_UP, inputs))

    async def gen_user_state_transition_proofs(self) -> UserStateTransitionProofs:
        """
        Prove the transition out of the identity's current epoch.

        The epoch must be sealed. All inputs are computed before proving, so
        the process proofs run concurrently up to the prover's limit.
        """
        self._check_signed_up()

        epoch = self.latest_transitioned_epoch
        epoch_tree = await self._sync.gen_epoch_tree(epoch)
        attestations_by_nonce = [
            await self._sync.get_attestations(epoch_key, epoch) for epoch_key in self.get_epoch_keys(epoch)
        ]
        plan = build_transition_plan(
            self.identity,
            epoch,
            self.gen_user_state_tree(),
            self.reputations,
            attestations_by_nonce,
            epoch_tree,
            await self._gst_proof(),
            self.protocol.num_attestations_per_proof,
        )

        semaphore = asyncio.Semaphore(max(self._prover.max_concurrency, 1))

        async def prove_batch(inputs: dict[str, Any]) -> ProofResult:
            async with semaphore:
                return await self._prove(Circuit.PROCESS_ATTESTATIONS, inputs)

        with bound_context(epoch=epoch, commitment=self.commitment):
            start = await self._prove(Circuit.START_TRANSITION, plan.start)
            process = await asyncio.gather(*(prove_batch(inputs) for inputs in plan.process))
            final = await self._prove(Circuit.USER_STATE_TRANSITION, plan.final)

        logger.info("user_state_transition_proved", epoch=epoch, batches=len(process))
        return UserStateTransitionProofs(
            start=StartTransitionProof.from_result(start),
            process=[ProcessAttestationsProof.from_result(r) for r in process],
            final=FinalTransitionProof.from_result(final, self.protocol.num_epoch_key_nonce_per_epoch),
        )

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_json(self) -> dict[str, Any]:
        return {
            "identity": self.identity.serialize(),
            "commitment": str(self.commitment),
            "has_signed_up": self.has_signed_up,
            "latest_transitioned_epoch": self.latest_transitioned_epoch,
            "latest_gst_leaf_index": self.latest_gst_leaf_index,
            "reputations": {str(k): v.to_json() for k, v in self.reputations.items()},
            "transitioned_from_attestations": {
                str(k): [a.to_json() for a in v] for k, v in self.transitioned_from_attestations.items()
            },
        }

    @classmethod
    def from_json(cls, data: dict[str, Any], sync: SynchronizerView, prover: Prover) -> "UserState":
        identity = ZkIdentity.deserialize(data["identity"])
        if "commitment" in data and int(data["commitment"]) != identity.commitment:
            raise ValueError("Serialized commitment does not match identity")
        return cls(
            sync,
            prover,
            identity,
            has_signed_up=bool(data["has_signed_up"]),
            latest_transitioned_epoch=int(data["latest_transitioned_epoch"]),
            latest_gst_leaf_index=int(data["latest_gst_leaf_index"]),
            reputations={int(k): Reputation.from_json(v) for k, v in data.get("reputations", {}).items()},
            transitioned_from_attestations={
                int(k): [Attestation.from_json(a) for a in v]
                for k, v in data.get("transitioned_from_attestations", {}).items()
            },
        )
