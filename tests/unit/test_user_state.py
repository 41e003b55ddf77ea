"""
Unit tests for UserState.

These run full flows against the mock ledger: sign up, attest, seal the epoch,
prove the transition, submit it and let the synchronizer commit it.
"""

import pytest

from repstate.config import ProtocolSettings
from repstate.crypto.hashing import gen_reputation_nullifier, hash5, hash_left_right
from repstate.crypto.identity import ZkIdentity
from repstate.errors import (
    AlreadySignedUpError,
    DuplicateNullifierError,
    InsufficientReputationError,
    InvalidAttesterIdError,
    InvalidEpochError,
    NonceOutOfRangeError,
    NotSignedUpError,
    ProvingFailedError,
    StaleTransitionError,
)
from repstate.ledger.mock import MockLedgerClient
from repstate.models.attestation import Attestation
from repstate.models.reputation import Reputation
from repstate.sync.synchronizer import Synchronizer
from repstate.user import ReputationProofOptions, UserState
from repstate.zk.models import Circuit
from repstate.zk.mock import MockProver
from tests.helpers import end_epoch_and_transition, sign_up, submit_transition


class TestSignUp:
    """Tests for sign-up tracking."""

    @pytest.mark.asyncio
    async def test_sign_up_from_ledger(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        assert user_state.has_signed_up
        assert user_state.latest_transitioned_epoch == 1
        assert user_state.latest_gst_leaf_index == 0
        assert user_state.reputations == {}

    @pytest.mark.asyncio
    async def test_airdrop_sign_up(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)

        assert user_state.get_rep_by_attester(1) == Reputation(pos_rep=10, sign_up=1)
        assert user_state.get_rep_by_attester(2) == Reputation.default()

    @pytest.mark.asyncio
    async def test_other_commitment_ignored(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        other_identity: ZkIdentity,
    ) -> None:
        await ledger.user_sign_up(other_identity.commitment)
        await sync.wait_for_sync()

        assert not user_state.has_signed_up

    @pytest.mark.asyncio
    async def test_index_follows_earlier_sign_ups(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        other_identity: ZkIdentity,
    ) -> None:
        await ledger.user_sign_up(other_identity.commitment)
        await sign_up(user_state, ledger, sync)

        assert user_state.latest_gst_leaf_index == 1

    @pytest.mark.asyncio
    async def test_double_sign_up_rejected(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        with pytest.raises(AlreadySignedUpError):
            await user_state.sign_up(1, user_state.commitment)

        assert user_state.latest_gst_leaf_index == 0

    @pytest.mark.asyncio
    async def test_started_after_sync(
        self,
        sync: Synchronizer,
        ledger: MockLedgerClient,
        prover: MockProver,
        identity: ZkIdentity,
        other_identity: ZkIdentity,
    ) -> None:
        """A UserState attached to an already synced mirror picks up its sign-up."""
        await ledger.user_sign_up(other_identity.commitment)
        await ledger.user_sign_up(identity.commitment, attester_id=1, airdrop=4)
        await sync.wait_for_sync()

        user = UserState(sync, prover, identity)
        await user.start()
        try:
            assert user.has_signed_up
            assert user.latest_transitioned_epoch == 1
            assert user.latest_gst_leaf_index == 1
            assert user.get_rep_by_attester(1) == Reputation(pos_rep=4, sign_up=1)
        finally:
            await user.stop()

    @pytest.mark.asyncio
    async def test_started_after_transition(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        prover: MockProver,
        identity: ZkIdentity,
    ) -> None:
        """Missed epoch transitions are replayed into a late UserState."""
        await sign_up(user_state, ledger, sync)
        await ledger.attest(Attestation(attester_id=2, pos_rep=3, graffiti=5), user_state.get_epoch_keys()[1])
        await end_epoch_and_transition(user_state, ledger, sync)

        late = UserState(sync, prover, identity)
        await late.start()
        try:
            assert late.latest_transitioned_epoch == 2
            assert late.latest_gst_leaf_index == user_state.latest_gst_leaf_index
            assert late.reputations == user_state.reputations
            assert late.staged is None
        finally:
            await late.stop()


class TestUserStateTransition:
    """Tests for staging and committing epoch transitions."""

    @pytest.mark.asyncio
    async def test_single_attestation(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        """pos_rep=5 to the first epoch key ends up in the next epoch's state."""
        await sign_up(user_state, ledger, sync)
        epoch_key = user_state.get_epoch_keys()[0]
        await ledger.attest(Attestation(attester_id=1, pos_rep=5), epoch_key)

        await end_epoch_and_transition(user_state, ledger, sync)

        assert user_state.get_rep_by_attester(1) == Reputation(pos_rep=5)
        assert user_state.latest_transitioned_epoch == 2
        assert user_state.latest_gst_leaf_index == 0
        assert user_state.staged is None
        assert user_state.transitioned_from_attestations[epoch_key] == [Attestation(attester_id=1, pos_rep=5)]

        leaf = hash_left_right(user_state.commitment, user_state.gen_user_state_tree().root)
        assert (await sync.gen_gst_tree(2)).leaves == [leaf]

    @pytest.mark.asyncio
    async def test_reputation_accumulates_across_epochs(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)
        await ledger.attest(Attestation(attester_id=1, pos_rep=5), user_state.get_epoch_keys()[0])
        await end_epoch_and_transition(user_state, ledger, sync)

        await ledger.attest(Attestation(attester_id=1, neg_rep=3), user_state.get_epoch_keys()[1])
        await end_epoch_and_transition(user_state, ledger, sync)

        assert user_state.get_rep_by_attester(1) == Reputation(pos_rep=5, neg_rep=3)
        assert user_state.latest_transitioned_epoch == 3

    @pytest.mark.asyncio
    async def test_many_attestations_span_batches(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        """Three attestations on one key and one on another need three process proofs."""
        await sign_up(user_state, ledger, sync, attester_id=3, airdrop=1)
        first, second = user_state.get_epoch_keys()
        await ledger.attest(Attestation(attester_id=1, pos_rep=2), first)
        await ledger.attest(Attestation(attester_id=2, pos_rep=4, graffiti=9), first)
        await ledger.attest(Attestation(attester_id=1, neg_rep=1), first)
        await ledger.attest(Attestation(attester_id=2, pos_rep=1), second)
        await ledger.end_epoch()
        await sync.wait_for_sync()

        proofs = await user_state.gen_user_state_transition_proofs()

        assert len(proofs.process) == 3
        assert proofs.verify_chain()
        assert proofs.final.transitioned_from_epoch == 1
        assert proofs.final.epoch_key_nullifiers == user_state.get_epoch_key_nullifiers(1)

        await submit_transition(ledger, proofs)
        await sync.wait_for_sync()

        assert user_state.latest_transitioned_epoch == 2
        assert user_state.get_rep_by_attester(1) == Reputation(pos_rep=2, neg_rep=1)
        assert user_state.get_rep_by_attester(2) == Reputation(pos_rep=5, graffiti=9)
        assert user_state.get_rep_by_attester(3) == Reputation(pos_rep=1, sign_up=1)

    @pytest.mark.asyncio
    async def test_transition_without_attestations(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        await end_epoch_and_transition(user_state, ledger, sync)

        assert user_state.latest_transitioned_epoch == 2
        assert user_state.reputations == {}

    @pytest.mark.asyncio
    async def test_attestation_backed_by_epoch_key_proof(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        """An attester can require an epoch key proof before attesting."""
        await sign_up(user_state, ledger, sync)
        proof = await user_state.gen_verify_epoch_key_proof(0)
        receipt = await ledger.submit_proof(Circuit.VERIFY_EPOCH_KEY, proof.public_signals, proof.proof)
        await ledger.attest(Attestation(attester_id=1, pos_rep=7), proof.epoch_key, proof_index=receipt.proof_index)
        await sync.wait_for_sync()

        assert await sync.get_attestations(proof.epoch_key, 1) == [Attestation(attester_id=1, pos_rep=7)]

        await end_epoch_and_transition(user_state, ledger, sync)

        assert user_state.get_rep_by_attester(1) == Reputation(pos_rep=7)

    @pytest.mark.asyncio
    async def test_stage_only_for_current_epoch(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        await user_state.epoch_transition(5)

        assert user_state.staged is None

    @pytest.mark.asyncio
    async def test_stale_transition_leaves_state_unchanged(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)
        await ledger.attest(Attestation(attester_id=1, pos_rep=5), user_state.get_epoch_keys()[0])
        await ledger.end_epoch()
        await sync.wait_for_sync()
        staged = user_state.staged
        assert staged is not None
        assert staged.from_epoch == 1

        with pytest.raises(StaleTransitionError):
            await user_state.user_state_transition(2, staged.new_gst_leaf)

        assert user_state.staged is None
        assert user_state.latest_transitioned_epoch == 1
        assert user_state.reputations == {}

    @pytest.mark.asyncio
    async def test_transition_leaf_must_be_in_later_epoch(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        """Staged state matches but the leaf is only known from an earlier epoch."""
        await sign_up(user_state, ledger, sync)
        await ledger.end_epoch()
        await sync.wait_for_sync()

        with pytest.raises(StaleTransitionError):
            await user_state.user_state_transition(1, user_state.staged.new_gst_leaf)

        assert user_state.latest_transitioned_epoch == 1

    @pytest.mark.asyncio
    async def test_transition_requires_sign_up(self, user_state: UserState) -> None:
        with pytest.raises(NotSignedUpError):
            await user_state.user_state_transition(1, 123)

    @pytest.mark.asyncio
    async def test_transition_proofs_need_sealed_epoch(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        with pytest.raises(InvalidEpochError):
            await user_state.gen_user_state_transition_proofs()


class TestEpochKeyProofs:
    """Tests for epoch key and sign-up proofs."""

    @pytest.mark.asyncio
    async def test_verify_epoch_key_proof(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        prover: MockProver,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        proof = await user_state.gen_verify_epoch_key_proof(1)

        assert proof.epoch == 1
        assert proof.epoch_key == user_state.get_epoch_keys()[1]
        assert proof.global_state_tree == (await sync.gen_gst_tree(1)).root
        assert await prover.verify(Circuit.VERIFY_EPOCH_KEY, proof.public_signals, proof.proof)

    @pytest.mark.asyncio
    async def test_user_sign_up_proof(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=2, airdrop=4)

        signed = await user_state.gen_user_sign_up_proof(2)
        unsigned = await user_state.gen_user_sign_up_proof(3)

        assert signed.user_has_signed_up == 1
        assert signed.attester_id == 2
        assert signed.epoch_key == user_state.get_epoch_keys()[0]
        assert unsigned.user_has_signed_up == 0

    @pytest.mark.asyncio
    async def test_requires_sign_up(self, user_state: UserState) -> None:
        with pytest.raises(NotSignedUpError):
            await user_state.gen_verify_epoch_key_proof(0)

    @pytest.mark.asyncio
    async def test_nonce_out_of_range(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        protocol: ProtocolSettings,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        with pytest.raises(NonceOutOfRangeError):
            await user_state.gen_verify_epoch_key_proof(protocol.num_epoch_key_nonce_per_epoch)
        with pytest.raises(NonceOutOfRangeError):
            await user_state.gen_verify_epoch_key_proof(-1)

    @pytest.mark.asyncio
    async def test_invalid_attester_id(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        protocol: ProtocolSettings,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        with pytest.raises(InvalidAttesterIdError):
            await user_state.gen_user_sign_up_proof(0)
        with pytest.raises(InvalidAttesterIdError):
            await user_state.gen_user_sign_up_proof(2**protocol.user_state_tree_depth)


class TestReputationProofs:
    """Tests for reputation proofs and nullifier bookkeeping."""

    @pytest.fixture
    def spend(self):
        def options(*nonces: int, **kwargs: int) -> ReputationProofOptions:
            return ReputationProofOptions(nonce_list=list(nonces), **kwargs)

        return options

    @pytest.mark.asyncio
    async def test_spend_reputation(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        identity: ZkIdentity,
        spend,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)

        proof = await user_state.gen_prove_reputation_proof(1, 0, spend(0, 1, min_rep=5))

        expected = [
            gen_reputation_nullifier(identity.identity_nullifier, 1, 0, 1),
            gen_reputation_nullifier(identity.identity_nullifier, 1, 1, 1),
            0,
        ]
        assert proof.reputation_nullifiers == expected
        assert proof.prove_reputation_amount == 2
        assert proof.min_rep == 5
        assert proof.attester_id == 1
        assert proof.epoch_key == user_state.get_epoch_keys()[0]

    @pytest.mark.asyncio
    async def test_prove_without_spending(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)

        proof = await user_state.gen_prove_reputation_proof(1, 1)

        assert proof.reputation_nullifiers == [0, 0, 0]
        assert proof.prove_reputation_amount == 0

    @pytest.mark.asyncio
    async def test_reserved_nullifier_rejected(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        spend,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)
        await user_state.gen_prove_reputation_proof(1, 0, spend(0))

        with pytest.raises(DuplicateNullifierError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(0))

        proof = await user_state.gen_prove_reputation_proof(1, 0, spend(1))
        assert proof.prove_reputation_amount == 1

    @pytest.mark.asyncio
    async def test_reused_nonce_with_exhausted_balance(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        spend,
    ) -> None:
        """Reusing a nonce is reported as a duplicate even when nothing is left to spend."""
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=1)
        await user_state.gen_prove_reputation_proof(1, 0, spend(0))

        with pytest.raises(DuplicateNullifierError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(0))

        with pytest.raises(InsufficientReputationError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(1))

    @pytest.mark.asyncio
    async def test_duplicate_nonce_in_request(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        spend,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)

        with pytest.raises(DuplicateNullifierError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(1, 1))

    @pytest.mark.asyncio
    async def test_too_many_nonces(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        spend,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)

        with pytest.raises(ValueError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(0, 1, 2, 3))

    @pytest.mark.asyncio
    async def test_nonce_beyond_balance(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        spend,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)

        with pytest.raises(InsufficientReputationError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(10))

    @pytest.mark.asyncio
    async def test_no_reputation_to_spend(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        spend,
    ) -> None:
        await sign_up(user_state, ledger, sync)

        with pytest.raises(InsufficientReputationError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(0))

    @pytest.mark.asyncio
    async def test_negative_balance_cannot_spend(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        spend,
    ) -> None:
        await sign_up(user_state, ledger, sync)
        await ledger.attest(Attestation(attester_id=1, pos_rep=1, neg_rep=4), user_state.get_epoch_keys()[0])
        await end_epoch_and_transition(user_state, ledger, sync)

        with pytest.raises(InsufficientReputationError):
            await user_state.gen_prove_reputation_proof(1, 0, spend(0))

    @pytest.mark.asyncio
    async def test_min_rep_not_met(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=3)

        with pytest.raises(ProvingFailedError):
            await user_state.gen_prove_reputation_proof(1, 0, ReputationProofOptions(min_rep=4))

    @pytest.mark.asyncio
    async def test_prove_graffiti(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
    ) -> None:
        await sign_up(user_state, ledger, sync)
        graffiti = hash5([42])
        await ledger.attest(Attestation(attester_id=4, graffiti=graffiti), user_state.get_epoch_keys()[1])
        await end_epoch_and_transition(user_state, ledger, sync)

        proof = await user_state.gen_prove_reputation_proof(
            4,
            0,
            ReputationProofOptions(prove_graffiti=1, graffiti_pre_image=42),
        )

        assert proof.prove_graffiti == 1
        assert proof.graffiti_pre_image == 42

    @pytest.mark.asyncio
    async def test_spent_nullifier_seen_after_restore(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        prover: MockProver,
        spend,
    ) -> None:
        """A restored state has no reservations but still sees nullifiers spent on the ledger."""
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=10)
        proof = await user_state.gen_prove_reputation_proof(1, 0, spend(0))
        await ledger.submit_proof(Circuit.PROVE_REPUTATION, proof.public_signals, proof.proof)
        await sync.wait_for_sync()

        assert await sync.nullifier_exists(proof.reputation_nullifiers[0])

        restored = UserState.from_json(user_state.to_json(), sync, prover)
        with pytest.raises(DuplicateNullifierError):
            await restored.gen_prove_reputation_proof(1, 0, spend(0))

        again = await restored.gen_prove_reputation_proof(1, 0, spend(1))
        assert again.prove_reputation_amount == 1


class TestSerialization:
    """Tests for to_json / from_json."""

    @pytest.mark.asyncio
    async def test_round_trip(
        self,
        user_state: UserState,
        ledger: MockLedgerClient,
        sync: Synchronizer,
        prover: MockProver,
    ) -> None:
        await sign_up(user_state, ledger, sync, attester_id=1, airdrop=2)
        await ledger.attest(Attestation(attester_id=5, pos_rep=3, graffiti=8), user_state.get_epoch_keys()[0])
        await end_epoch_and_transition(user_state, ledger, sync)

        data = user_state.to_json()
        restored = UserState.from_json(data, sync, prover)

        assert restored.commitment == user_state.commitment
        assert restored.has_signed_up
        assert restored.latest_transitioned_epoch == 2
        assert restored.latest_gst_leaf_index == user_state.latest_gst_leaf_index
        assert restored.reputations == user_state.reputations
        assert restored.transitioned_from_attestations == user_state.transitioned_from_attestations
        assert restored.to_json() == data

    @pytest.mark.asyncio
    async def test_identity_secrets_serialized_as_strings(self, user_state: UserState) -> None:
        data = user_state.to_json()

        assert data["commitment"] == str(user_state.commitment)
        assert all(isinstance(v, str) for v in data["identity"].values())

    def test_commitment_mismatch(
        self,
        identity: ZkIdentity,
        other_identity: ZkIdentity,
        prover: MockProver,
    ) -> None:
        data = {
            "identity": identity.serialize(),
            "commitment": str(other_identity.commitment),
            "has_signed_up": False,
            "latest_transitioned_epoch": 0,
            "latest_gst_leaf_index": -1,
        }

        with pytest.raises(ValueError):
            UserState.from_json(data, None, prover)
