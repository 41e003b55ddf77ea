"""
Synchronizer
============

Replays the ledger's event log into the local mirror: global state tree
leaves and roots, attestations, sealed epochs, indexed proofs and spent
nullifiers.

Events are applied one at a time, in strictly increasing
(block_number, log_index) order, under a single lock. Each handler stages its
writes in a WriteBatch that is committed together with the event record and
the replay cursor, so an event is either fully applied or not at all.
Re-delivered events are recognised by id and skipped.

A ConsistencyError raised while applying an event rejects that event only:
it is logged, recorded with status "rejected", and replay continues.

Version: 0.1.0
"""

import asyncio
from collections.abc import Callable, Iterable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from repstate.config import ProtocolSettings, SyncSettings, settings
from repstate.crypto.epoch_tree import build_epoch_tree, build_hash_chains
from repstate.crypto.hashing import hash_left_right
from repstate.crypto.merkle import IncrementalMerkleTree, SparseMerkleTree
from repstate.database.store import Collection, Datastore, WriteBatch
from repstate.errors import (
    ConsistencyError,
    InconsistentRootError,
    InvalidEpochError,
    ReputationStateError,
    StaleTransitionError,
    SyncTimeoutError,
)
from repstate.ledger.client import Deployment, LedgerClient
from repstate.ledger.events import (
    AttestationSubmitted,
    EpochEnded,
    LedgerEvent,
    ProofIndexed,
    UserSignedUp,
    UserStateTransitioned,
    parse_event,
)
from repstate.logging import bound_context, get_logger
from repstate.models.attestation import Attestation
from repstate.models.reputation import Reputation, default_user_state_leaf
from repstate.sync.interfaces import EventListener
from repstate.sync.nullifiers import NullifierKind, NullifierTracker
from repstate.zk.models import Circuit, ZKProof
from repstate.zk.proofs import FinalTransitionProof, proof_epoch_key, proof_global_state_tree
from repstate.zk.prover import Prover

logger = get_logger(__name__)

CURSOR_KEY = {"key": "cursor"}


class _NotSynced(Exception):
    pass


class Synchronizer:
    """
    Ledger mirror shared by every UserState watching the same ledger.

    Usage:
        sync = Synchronizer(store, ledger)
        await sync.start()
        await sync.wait_for_sync()
        tree = await sync.gen_gst_tree(await sync.load_current_epoch())
        await sync.stop()
    """

    def __init__(
        self,
        store: Datastore,
        ledger: LedgerClient,
        prover: Prover | None = None,
        *,
        protocol: ProtocolSettings | None = None,
        sync_settings: SyncSettings | None = None,
    ) -> None:
        self.protocol = protocol or settings.protocol
        self.sync_settings = sync_settings or settings.sync
        self._store = store
        self._ledger = ledger
        self._prover = prover
        self._nullifiers = NullifierTracker(store)

        self._lock = asyncio.Lock()
        self._listeners: list[EventListener] = []
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._deployment: Deployment | None = None

        self._loaded = False
        self._cursor: tuple[int, int] = (-1, -1)
        self.synced_block = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _load_state(self) -> None:
        if self._loaded:
            return
        state = await self._store.find_one(Collection.SYNC_STATE, CURSOR_KEY)
        if state is not None:
            self._cursor = (state["block_number"], state["log_index"])
            self.synced_block = state.get("synced_block", 0)
        self._loaded = True

    async def start(self) -> None:
        """Start background catch-up replay."""
        if self.is_running:
            return
        await self._load_state()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("synchronizer_started", synced_block=self.synced_block)

    async def stop(self) -> None:
        """
        Stop background replay.

        The stop signal is checked between events, so an event being applied
        when stop() is called is completed before this returns.
        """
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("synchronizer_stopped", synced_block=self.synced_block)

    async def _run(self) -> None:
        interval = self.sync_settings.poll_interval_seconds
        while not self._stop_event.is_set():
            try:
                await self.poll()
            except Exception as e:
                logger.error("sync_poll_failed", error=str(e))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def subscribe(self, listener: EventListener, *, replay: bool = False) -> Callable[[], None]:
        """
        Register a coroutine called after each applied event.

        Listeners run under the replay lock and must not apply events
        themselves.

        Args:
            listener: Coroutine function taking the applied event
            replay: First deliver every event already applied to the mirror,
                in log order

        Returns:
            Callable that removes the listener
        """
        async with self._lock:
            if replay:
                records = await self._store.find_many(
                    Collection.EVENT,
                    {"status": "applied"},
                    order_by={"block_number": 1, "log_index": 1},
                )
                for record in records:
                    await self._deliver(listener, parse_event(record["payload"]))
                logger.debug("listener_caught_up", events=len(records))
            self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, event: LedgerEvent) -> None:
        for listener in list(self._listeners):
            await self._deliver(listener, event)

    async def _deliver(self, listener: EventListener, event: LedgerEvent) -> None:
        try:
            await listener(event)
        except ReputationStateError as e:
            logger.warning("listener_failed", event_id=event.id, **e.to_dict())

    # =========================================================================
    # Replay
    # =========================================================================

    async def poll(self) -> int:
        """
        Fetch and apply everything the ledger has emitted since the last poll.

        Returns:
            Number of events applied
        """
        await self._load_state()
        head = await self._ledger.get_block_number()
        if head <= self.synced_block:
            return 0

        events = await self._ledger.get_events(self.synced_block + 1, head)
        applied, completed = await self._replay(events)
        if completed:
            self.synced_block = head
            await self._store.upsert(
                Collection.SYNC_STATE,
                CURSOR_KEY,
                {
                    "block_number": self._cursor[0],
                    "log_index": self._cursor[1],
                    "synced_block": head,
                },
            )
        logger.debug("sync_polled", head=head, applied=applied)
        return applied

    async def replay(self, events: Iterable[LedgerEvent]) -> int:
        """
        Apply an ordered event log.

        Returns:
            Number of events applied (skipped and rejected events excluded)
        """
        await self._load_state()
        applied, _ = await self._replay(events)
        return applied

    async def _replay(self, events: Iterable[LedgerEvent]) -> tuple[int, bool]:
        applied = 0
        for event in sorted(events, key=lambda e: e.position):
            if self._stop_event.is_set() and self._task is not None:
                return applied, False
            if await self._apply_event(event):
                applied += 1
        return applied, True

    async def _apply_event(self, event: LedgerEvent) -> bool:
        async with self._lock:
            if await self._store.find_one(Collection.EVENT, {"event_id": event.id}) is not None:
                logger.debug("event_skipped", event_id=event.id, reason="already_applied")
                return False
            if event.position <= self._cursor:
                logger.error(
                    "event_out_of_order",
                    event_id=event.id,
                    cursor=f"{self._cursor[0]}:{self._cursor[1]}",
                )
                return False

            kind = type(event).__name__
            batch = self._store.batch()
            status = "applied"
            error_code: int | None = None
            try:
                with bound_context(event_id=event.id, block_number=event.block_number):
                    await self._dispatch(event, batch)
            except ConsistencyError as e:
                logger.error("event_rejected", event_id=event.id, kind=kind, **e.to_dict())
                batch = self._store.batch()
                status = "rejected"
                error_code = e.code

            batch.upsert(
                Collection.EVENT,
                {"event_id": event.id},
                {
                    "kind": kind,
                    "block_number": event.block_number,
                    "log_index": event.log_index,
                    "status": status,
                    "error_code": error_code,
                    "payload": event.model_dump(mode="json", exclude={"transaction_hash"}),
                },
            )
            batch.upsert(
                Collection.SYNC_STATE,
                CURSOR_KEY,
                {
                    "block_number": event.block_number,
                    "log_index": event.log_index,
                    "synced_block": self.synced_block,
                },
            )
            await self._store.commit(batch)
            self._cursor = event.position

            if status != "applied":
                return False
            logger.info("event_applied", event_id=event.id, kind=kind)
            await self._notify(event)
        return True

    async def _dispatch(self, event: LedgerEvent, batch: WriteBatch) -> None:
        if isinstance(event, UserSignedUp):
            await self._on_user_signed_up(event, batch)
        elif isinstance(event, AttestationSubmitted):
            await self._on_attestation_submitted(event, batch)
        elif isinstance(event, EpochEnded):
            await self._on_epoch_ended(event, batch)
        elif isinstance(event, ProofIndexed):
            await self._on_proof_indexed(event, batch)
        elif isinstance(event, UserStateTransitioned):
            await self._on_user_state_transitioned(event, batch)
        else:
            raise ConsistencyError(
                f"Unknown event type {type(event).__name__}",
                context={"event_id": event.id},
            )

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _require_open_epoch(self, epoch: int, event: LedgerEvent) -> None:
        if await self._is_sealed(epoch):
            raise ConsistencyError(
                f"Epoch {epoch} is already sealed",
                context={"event_id": event.id, "epoch": epoch},
            )

    async def _insert_gst_leaf(self, batch: WriteBatch, epoch: int, leaf: int, event_id: str) -> int:
        tree = await self.gen_gst_tree(epoch)
        index = tree.insert(leaf)
        batch.upsert(
            Collection.GST_LEAF,
            {"epoch": epoch, "index": index},
            {"hash": leaf, "event_id": event_id},
        )
        batch.upsert(
            Collection.GST_ROOT,
            {"epoch": epoch, "root": tree.root},
            {"index": index},
        )
        return index

    async def _on_user_signed_up(self, event: UserSignedUp, batch: WriteBatch) -> None:
        await self._require_open_epoch(event.epoch, event)

        user_state_tree = SparseMerkleTree(self.protocol.user_state_tree_depth, default_user_state_leaf())
        if event.attester_id and event.airdrop:
            airdrop = Reputation.default().update(event.airdrop, 0, 0, 1)
            user_state_tree.update(event.attester_id, airdrop.hash())

        leaf = hash_left_right(event.identity_commitment, user_state_tree.root)
        index = await self._insert_gst_leaf(batch, event.epoch, leaf, event.id)
        logger.info("user_signed_up", epoch=event.epoch, gst_index=index)

    async def _on_attestation_submitted(self, event: AttestationSubmitted, batch: WriteBatch) -> None:
        reason: str | None = None
        if await self._is_sealed(event.epoch):
            reason = "epoch_sealed"
        elif not 0 <= event.epoch_key < 2**self.protocol.epoch_tree_depth:
            reason = "epoch_key_out_of_range"
        elif event.proof_index is not None:
            proof = await self.load_proof(event.proof_index)
            if proof is None or not proof["valid"]:
                reason = "invalid_proof"
            else:
                bound = proof_epoch_key(
                    Circuit(proof["circuit"]),
                    proof["public_signals"],
                    self.protocol.max_reputation_budget,
                )
                if bound != (event.epoch, event.epoch_key):
                    reason = "proof_epoch_key_mismatch"

        index = await self._store.count(Collection.ATTESTATION)
        attestation = event.attestation
        batch.upsert(
            Collection.ATTESTATION,
            {"index": index},
            {
                "epoch": event.epoch,
                "epoch_key": event.epoch_key,
                "attester_id": attestation.attester_id,
                "pos_rep": attestation.pos_rep,
                "neg_rep": attestation.neg_rep,
                "graffiti": attestation.graffiti,
                "sign_up": attestation.sign_up,
                "overwrite_graffiti": bool(attestation.overwrite_graffiti),
                "hash": attestation.hash(),
                "proof_index": event.proof_index,
                "valid": reason is None,
                "event_id": event.id,
            },
        )
        if reason is not None:
            logger.warning("attestation_invalid", event_id=event.id, reason=reason)

    async def _on_epoch_ended(self, event: EpochEnded, batch: WriteBatch) -> None:
        latest = await self.latest_sealed_epoch()
        if event.epoch != latest + 1:
            raise ConsistencyError(
                f"Epoch {event.epoch} ended out of order (latest sealed {latest})",
                context={"event_id": event.id, "epoch": event.epoch},
            )

        tree = await self._build_epoch_tree(event.epoch)
        if tree.root != event.epoch_tree_root:
            raise InconsistentRootError(
                f"Recomputed epoch tree root does not match sealed root for epoch {event.epoch}",
                context={
                    "epoch": event.epoch,
                    "expected": str(event.epoch_tree_root),
                    "computed": str(tree.root),
                },
            )

        batch.upsert(
            Collection.EPOCH,
            {"number": event.epoch},
            {"sealed": True, "epoch_root": tree.root, "event_id": event.id},
        )
        logger.info("epoch_sealed", epoch=event.epoch)

    async def _on_proof_indexed(self, event: ProofIndexed, batch: WriteBatch) -> None:
        signals = event.public_signals
        valid = await self._check_proof(event.circuit, signals, event.proof)

        if valid and event.circuit == Circuit.PROVE_REPUTATION:
            nullifiers = [n for n in signals[: self.protocol.max_reputation_budget] if n]
            spent = len(set(nullifiers)) != len(nullifiers)
            for nullifier in nullifiers:
                if spent:
                    break
                spent = await self._nullifiers.exists(nullifier)
            if spent:
                valid = False
                logger.warning("reputation_nullifier_spent", proof_index=event.proof_index)
            else:
                for nullifier in nullifiers:
                    self._nullifiers.mark(batch, nullifier, event.epoch, event.id, NullifierKind.REPUTATION)

        batch.upsert(
            Collection.PROOF,
            {"index": event.proof_index},
            {
                "circuit": event.circuit.value,
                "epoch": event.epoch,
                "public_signals": list(signals),
                "proof": event.proof.model_dump(),
                "valid": valid,
                "event_id": event.id,
            },
        )

    async def _check_proof(self, circuit: Circuit, signals: list[int], proof: ZKProof) -> bool:
        if self.sync_settings.verify_indexed_proofs and self._prover is not None:
            if not await self._prover.verify(circuit, signals, proof):
                logger.warning("indexed_proof_rejected", circuit=circuit.value)
                return False

        claimed = proof_global_state_tree(
            circuit,
            signals,
            self.protocol.max_reputation_budget,
            self.protocol.num_epoch_key_nonce_per_epoch,
        )
        if claimed is not None and not await self.gst_root_exists(claimed[1], claimed[0]):
            logger.warning("indexed_proof_rejected", circuit=circuit.value, reason="unknown_gst_root")
            return False

        if circuit == Circuit.USER_STATE_TRANSITION:
            from_epoch_tree = signals[5 + 2 * self.protocol.num_epoch_key_nonce_per_epoch]
            if not await self.epoch_tree_root_exists(from_epoch_tree, claimed[0]):
                logger.warning("indexed_proof_rejected", circuit=circuit.value, reason="unknown_epoch_tree_root")
                return False
        return True

    async def _on_user_state_transitioned(self, event: UserStateTransitioned, batch: WriteBatch) -> None:
        await self._require_open_epoch(event.epoch, event)

        proof = await self.load_proof(event.proof_index)
        if proof is None or proof["circuit"] != Circuit.USER_STATE_TRANSITION.value or not proof["valid"]:
            raise ConsistencyError(
                "Transition references a missing or invalid proof",
                context={"event_id": event.id, "proof_index": event.proof_index},
            )
        signals = proof["public_signals"]
        if signals[0] != event.gst_leaf:
            raise ConsistencyError(
                "Transition leaf does not match its proof",
                context={"event_id": event.id, "proof_index": event.proof_index},
            )

        nullifiers = FinalTransitionProof.epoch_key_nullifiers_of(
            signals, self.protocol.num_epoch_key_nonce_per_epoch
        )
        for nullifier in nullifiers:
            if await self._nullifiers.exists(nullifier) or self._nullifiers.staged(batch, nullifier):
                raise StaleTransitionError(
                    "Epoch key nullifier already spent",
                    context={"event_id": event.id, "proof_index": event.proof_index},
                )

        index = await self._insert_gst_leaf(batch, event.epoch, event.gst_leaf, event.id)
        for nullifier in nullifiers:
            self._nullifiers.mark(batch, nullifier, event.epoch, event.id, NullifierKind.EPOCH_KEY)
        logger.info("user_state_transitioned", epoch=event.epoch, gst_index=index)

    # =========================================================================
    # Epoch clock
    # =========================================================================

    async def _get_deployment(self) -> Deployment:
        if self._deployment is None:
            self._deployment = await self._ledger.get_deployment()
        return self._deployment

    async def _clock_epoch(self) -> tuple[int, int, Deployment]:
        deployment = await self._get_deployment()
        block = await self._ledger.get_latest_block()
        elapsed = max(block.timestamp - deployment.start_timestamp, 0)
        return elapsed // deployment.epoch_length + 1, block.timestamp, deployment

    async def load_current_epoch(self) -> int:
        """
        Current epoch, advisory until an EpochEnded event confirms it.

        Derived from chain time and the deployment's epoch length, capped at
        one past the latest sealed epoch. When the clock lags the mirror the
        sealed ledger wins.
        """
        by_clock, _, _ = await self._clock_epoch()
        next_unsealed = await self.latest_sealed_epoch() + 1
        if by_clock < next_unsealed:
            logger.warning("epoch_clock_lagging", clock_epoch=by_clock, sealed_epoch=next_unsealed - 1)
        return next_unsealed

    async def epoch_remaining_time(self) -> int:
        """Seconds until the clock epoch ends."""
        by_clock, now, deployment = await self._clock_epoch()
        epoch_end = deployment.start_timestamp + by_clock * deployment.epoch_length
        return max(epoch_end - now, 0)

    async def latest_sealed_epoch(self) -> int:
        records = await self._store.find_many(
            Collection.EPOCH,
            {"sealed": True},
            order_by={"number": -1},
            limit=1,
        )
        return records[0]["number"] if records else 0

    async def _is_sealed(self, epoch: int) -> bool:
        return await self._store.find_one(Collection.EPOCH, {"number": epoch, "sealed": True}) is not None

    # =========================================================================
    # Catch-up
    # =========================================================================

    async def wait_for_sync(self, target_block: int | None = None) -> int:
        """
        Wait until the mirror has replayed the ledger up to ``target_block``.

        Args:
            target_block: Block height to reach (default: ledger head now)

        Returns:
            The synced block height

        Raises:
            SyncTimeoutError: If the target is not reached within the
                configured attempts or deadline
        """
        target = target_block if target_block is not None else await self._ledger.get_block_number()
        cfg = self.sync_settings

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_NotSynced),
                stop=stop_after_attempt(cfg.wait_max_attempts) | stop_after_delay(cfg.wait_timeout_seconds),
                wait=wait_exponential(
                    multiplier=cfg.backoff_min_seconds,
                    min=cfg.backoff_min_seconds,
                    max=cfg.backoff_max_seconds,
                ),
                before_sleep=lambda retry_state: logger.debug(
                    "wait_for_sync_retry",
                    attempt=retry_state.attempt_number,
                    target=target,
                    synced_block=self.synced_block,
                ),
            ):
                with attempt:
                    if self.synced_block < target and not self.is_running:
                        await self.poll()
                    if self.synced_block < target:
                        raise _NotSynced()
        except RetryError as e:
            raise SyncTimeoutError(
                f"Mirror did not reach block {target}",
                context={"target_block": target, "synced_block": self.synced_block},
            ) from e

        return self.synced_block

    # =========================================================================
    # Queries
    # =========================================================================

    async def gen_gst_tree(self, epoch: int) -> IncrementalMerkleTree:
        tree = IncrementalMerkleTree(self.protocol.global_state_tree_depth, 0)
        leaves = await self._store.find_many(
            Collection.GST_LEAF,
            {"epoch": epoch},
            order_by={"index": 1},
        )
        for leaf in leaves:
            tree.insert(leaf["hash"])
        return tree

    async def count_gst_leaves(self, epoch: int) -> int:
        return await self._store.count(Collection.GST_LEAF, {"epoch": epoch})

    async def find_gst_leaf(self, leaf: int, epoch: int | None = None) -> dict[str, Any] | None:
        """Latest GST leaf record with this hash, optionally within one epoch."""
        where: dict[str, Any] = {"hash": leaf}
        if epoch is not None:
            where["epoch"] = epoch
        records = await self._store.find_many(
            Collection.GST_LEAF,
            where,
            order_by={"epoch": -1, "index": -1},
            limit=1,
        )
        return records[0] if records else None

    async def gst_root_exists(self, root: int, epoch: int) -> bool:
        return await self._store.find_one(Collection.GST_ROOT, {"epoch": epoch, "root": root}) is not None

    async def epoch_tree_root_exists(self, root: int, epoch: int) -> bool:
        record = await self._store.find_one(
            Collection.EPOCH,
            {"number": epoch, "sealed": True, "epoch_root": root},
        )
        return record is not None

    async def _valid_attestation_records(self, epoch: int, epoch_key: int | None = None) -> list[dict[str, Any]]:
        where: dict[str, Any] = {"epoch": epoch, "valid": True}
        if epoch_key is not None:
            where["epoch_key"] = epoch_key
        return await self._store.find_many(Collection.ATTESTATION, where, order_by={"index": 1})

    async def _build_epoch_tree(self, epoch: int) -> SparseMerkleTree:
        records = await self._valid_attestation_records(epoch)
        chains = build_hash_chains((r["epoch_key"], r["hash"]) for r in records)
        return build_epoch_tree(self.protocol.epoch_tree_depth, chains)

    async def gen_epoch_tree(self, epoch: int) -> SparseMerkleTree:
        """
        Rebuild the epoch tree of a sealed epoch.

        Raises:
            InvalidEpochError: If the epoch is not sealed
            InconsistentRootError: If the rebuilt root differs from the sealed root
        """
        record = await self._store.find_one(Collection.EPOCH, {"number": epoch, "sealed": True})
        if record is None:
            raise InvalidEpochError(f"Epoch {epoch} is not sealed", context={"epoch": epoch})

        tree = await self._build_epoch_tree(epoch)
        if tree.root != record["epoch_root"]:
            raise InconsistentRootError(
                f"Rebuilt epoch tree root does not match sealed root for epoch {epoch}",
                context={"epoch": epoch},
            )
        return tree

    async def get_attestations(self, epoch_key: int, epoch: int) -> list[Attestation]:
        """Valid attestations to an epoch key, in ledger log order."""
        records = await self._valid_attestation_records(epoch, epoch_key)
        return [
            Attestation(
                attester_id=r["attester_id"],
                pos_rep=r["pos_rep"],
                neg_rep=r["neg_rep"],
                graffiti=r["graffiti"],
                sign_up=r["sign_up"],
                overwrite_graffiti=r["overwrite_graffiti"],
            )
            for r in records
        ]

    async def get_epoch_keys(self, epoch: int) -> list[int]:
        records = await self._valid_attestation_records(epoch)
        return sorted({r["epoch_key"] for r in records})

    async def load_proof(self, index: int) -> dict[str, Any] | None:
        return await self._store.find_one(Collection.PROOF, {"index": index})

    async def nullifier_exists(self, nullifier: int) -> bool:
        return await self._nullifiers.exists(nullifier)
