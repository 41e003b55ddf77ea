"""
Unit tests for the mock ledger client.
"""

import pytest

from repstate.config import LedgerMode, ProtocolSettings
from repstate.crypto.epoch_tree import build_epoch_tree, build_hash_chains
from repstate.errors import LedgerCallFailedError
from repstate.ledger.client import get_ledger_client, reset_ledger_client
from repstate.ledger.events import AttestationSubmitted, EpochEnded, ProofIndexed, UserSignedUp, parse_event
from repstate.ledger.mock import MockLedgerClient
from repstate.models.attestation import Attestation
from repstate.zk.models import Circuit, ZKProof

from tests.helpers import START_TIMESTAMP


class TestMockLedgerClient:
    """Tests for MockLedgerClient."""

    def test_client_mode(self, ledger: MockLedgerClient) -> None:
        assert ledger.mode == LedgerMode.MOCK

    @pytest.mark.asyncio
    async def test_user_sign_up_event(self, ledger: MockLedgerClient) -> None:
        receipt = await ledger.user_sign_up(12345, attester_id=1, airdrop=10)

        events = await ledger.get_events(0, await ledger.get_block_number())

        assert receipt.tx_hash.startswith("0x")
        assert len(events) == 1
        event = events[0]
        assert isinstance(event, UserSignedUp)
        assert event.epoch == 1
        assert event.identity_commitment == 12345
        assert event.airdrop == 10
        assert event.id == f"{receipt.block_number}:0"
        assert event.transaction_hash == receipt.tx_hash

    @pytest.mark.asyncio
    async def test_each_transaction_in_new_block(self, ledger: MockLedgerClient) -> None:
        first = await ledger.user_sign_up(1)
        second = await ledger.attest(Attestation(attester_id=1, pos_rep=1), 5)

        assert second.block_number == first.block_number + 1
        assert len(await ledger.get_events(second.block_number, second.block_number)) == 1

    @pytest.mark.asyncio
    async def test_attest_epoch_key_out_of_range(self, ledger: MockLedgerClient, protocol: ProtocolSettings) -> None:
        with pytest.raises(LedgerCallFailedError, match="out of range"):
            await ledger.attest(Attestation(attester_id=1), 2**protocol.epoch_tree_depth)

    @pytest.mark.asyncio
    async def test_attest_unknown_proof(self, ledger: MockLedgerClient) -> None:
        with pytest.raises(LedgerCallFailedError, match="Unknown proof index"):
            await ledger.attest(Attestation(attester_id=1), 5, proof_index=99)

    @pytest.mark.asyncio
    async def test_end_epoch_seals_root(self, ledger: MockLedgerClient, protocol: ProtocolSettings) -> None:
        a1 = Attestation(attester_id=1, pos_rep=5)
        a2 = Attestation(attester_id=2, neg_rep=1)
        await ledger.attest(a1, 7)
        await ledger.attest(a2, 7)

        await ledger.end_epoch()

        expected = build_epoch_tree(
            protocol.epoch_tree_depth,
            build_hash_chains([(7, a1.hash()), (7, a2.hash())]),
        ).root
        events = await ledger.get_events(0, await ledger.get_block_number())
        ended = events[-1]
        assert isinstance(ended, EpochEnded)
        assert ended.epoch == 1
        assert ended.epoch_tree_root == expected
        assert ledger.epoch_root(1) == expected
        assert ledger.current_epoch == 2

    @pytest.mark.asyncio
    async def test_end_epoch_advances_clock(self, ledger: MockLedgerClient, protocol: ProtocolSettings) -> None:
        await ledger.end_epoch()

        block = await ledger.get_latest_block()

        assert block.timestamp == START_TIMESTAMP + protocol.epoch_length

    @pytest.mark.asyncio
    async def test_advance_time_without_block(self, ledger: MockLedgerClient) -> None:
        before = await ledger.get_latest_block()
        ledger.advance_time(10)
        after = await ledger.get_latest_block()

        assert after.number == before.number
        assert after.timestamp == before.timestamp + 10

    @pytest.mark.asyncio
    async def test_submit_invalid_proof_reverts(self, ledger: MockLedgerClient) -> None:
        forged = ZKProof(pi_a=["1", "0", "1"], pi_b=[["0", "0"], ["0", "0"], ["1", "0"]], pi_c=["0", "0", "1"])

        with pytest.raises(LedgerCallFailedError, match="Invalid proof"):
            await ledger.submit_proof(Circuit.VERIFY_EPOCH_KEY, [1, 1, 5], forged)

    @pytest.mark.asyncio
    async def test_submit_proof_indexes(self, protocol: ProtocolSettings) -> None:
        ledger = MockLedgerClient(start_timestamp=START_TIMESTAMP)
        proof = ZKProof(pi_a=["1", "0", "1"], pi_b=[["0", "0"], ["0", "0"], ["1", "0"]], pi_c=["0", "0", "1"])

        receipt = await ledger.submit_proof(Circuit.VERIFY_EPOCH_KEY, [11, 1, 5], proof)
        await ledger.attest(Attestation(attester_id=1, pos_rep=2), 5, proof_index=receipt.proof_index)

        events = await ledger.get_events(0, await ledger.get_block_number())
        assert isinstance(events[0], ProofIndexed)
        assert events[0].proof_index == receipt.proof_index == 1
        assert isinstance(events[1], AttestationSubmitted)
        assert events[1].proof_index == 1

        with pytest.raises(LedgerCallFailedError, match="does not bind"):
            await ledger.attest(Attestation(attester_id=1), 6, proof_index=1)

    @pytest.mark.asyncio
    async def test_reputation_nullifiers_single_use(self, protocol: ProtocolSettings) -> None:
        ledger = MockLedgerClient(start_timestamp=START_TIMESTAMP)
        proof = ZKProof(pi_a=["1", "0", "1"], pi_b=[["0", "0"], ["0", "0"], ["1", "0"]], pi_c=["0", "0", "1"])
        budget = protocol.max_reputation_budget
        signals = [77] + [0] * (budget - 1) + [1, 5, 11, 1, 1, 0, 0, 0]

        await ledger.submit_proof(Circuit.PROVE_REPUTATION, signals, proof)

        with pytest.raises(LedgerCallFailedError, match="already spent"):
            await ledger.submit_proof(Circuit.PROVE_REPUTATION, signals, proof)
        assert ledger.get_stats()["spent_nullifiers"] == 1

    @pytest.mark.asyncio
    async def test_clear_all(self, ledger: MockLedgerClient) -> None:
        await ledger.user_sign_up(1)
        ledger.clear_all()

        assert await ledger.get_block_number() == 0
        assert ledger.get_stats()["events"] == 0


class TestEvents:
    """Tests for event parsing."""

    def test_parse_event(self) -> None:
        event = parse_event(
            {
                "kind": "EpochEnded",
                "block_number": 3,
                "log_index": 1,
                "epoch": 2,
                "epoch_tree_root": "123",
            }
        )

        assert isinstance(event, EpochEnded)
        assert event.epoch_tree_root == 123
        assert event.position == (3, 1)


class TestLedgerFactory:
    """Tests for get_ledger_client."""

    def test_mock_singleton(self) -> None:
        reset_ledger_client()
        try:
            client = get_ledger_client()
            assert isinstance(client, MockLedgerClient)
            assert get_ledger_client() is client
        finally:
            reset_ledger_client()
