"""
Mock Prover
===========

In-process prover for development and testing.

Each circuit's constraints are checked directly on the inputs and its public
signals are computed in the same order the real circuit exposes them, so
everything downstream (decoding, chaining checks, ledger submission) behaves
as with snarkjs. The "proof" is a digest binding the circuit to its public
signals; verify() recomputes it.

Version: 0.1.0
"""

import time
from collections.abc import Callable
from typing import Any

from repstate.crypto.hashing import (
    gen_epoch_key,
    gen_epoch_key_nullifier,
    gen_reputation_nullifier,
    hash5,
    hash_fields,
    hash_left_right,
    seal_hash_chain,
)
from repstate.crypto.merkle import compute_root
from repstate.errors import ProvingFailedError
from repstate.logging import get_logger
from repstate.models.reputation import Reputation
from repstate.zk.models import Circuit, ProofResult, PublicSignals, ZKProof
from repstate.zk.prover import Prover

logger = get_logger(__name__)


def _int(value: Any) -> int:
    return int(value)


def _ints(values: list[Any]) -> list[int]:
    return [int(v) for v in values]


def _key_path(key: int, depth: int) -> list[int]:
    return [(key >> level) & 1 for level in range(depth)]


class MockProver(Prover):
    """
    Mock prover that evaluates circuits in Python.

    Usage:
        prover = MockProver()
        result = await prover.prove(Circuit.VERIFY_EPOCH_KEY, inputs)
        assert await prover.verify(Circuit.VERIFY_EPOCH_KEY, result.signals, result.proof)
    """

    def __init__(
        self,
        epoch_tree_depth: int | None = None,
        num_epoch_key_nonce_per_epoch: int | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        from repstate.config import settings

        self.epoch_tree_depth = epoch_tree_depth or settings.protocol.epoch_tree_depth
        self.num_epoch_key_nonce_per_epoch = (
            num_epoch_key_nonce_per_epoch or settings.protocol.num_epoch_key_nonce_per_epoch
        )
        self.max_concurrency = max_concurrency or settings.prover.max_concurrency
        self.prove_calls: list[Circuit] = []

        self._circuits: dict[Circuit, Callable[[dict[str, Any]], list[int]]] = {
            Circuit.VERIFY_EPOCH_KEY: self._verify_epoch_key,
            Circuit.PROVE_REPUTATION: self._prove_reputation,
            Circuit.PROVE_USER_SIGN_UP: self._prove_user_sign_up,
            Circuit.START_TRANSITION: self._start_transition,
            Circuit.PROCESS_ATTESTATIONS: self._process_attestations,
            Circuit.USER_STATE_TRANSITION: self._user_state_transition,
        }

    # =========================================================================
    # Prover interface
    # =========================================================================

    async def prove(self, circuit: Circuit, inputs: dict[str, Any]) -> ProofResult:
        start_time = time.time()
        self.prove_calls.append(circuit)

        try:
            signals = self._circuits[circuit](inputs)
        except (KeyError, ValueError, TypeError) as e:
            raise ProvingFailedError(
                f"Malformed inputs for {circuit.value}: {e}",
                context={"circuit": circuit.value},
            ) from e

        proving_time_ms = int((time.time() - start_time) * 1000)
        logger.debug("mock_proof_generated", circuit=circuit.value, signals=len(signals))

        return ProofResult(
            circuit=circuit,
            proof=self._make_proof(circuit, signals),
            public_signals=PublicSignals.from_ints(signals),
            proving_time_ms=proving_time_ms,
        )

    async def verify(
        self,
        circuit: Circuit,
        public_signals: list[int],
        proof: ZKProof,
    ) -> bool:
        try:
            return int(proof.pi_a[0]) == self._digest(circuit, public_signals)
        except (IndexError, ValueError):
            return False

    def _digest(self, circuit: Circuit, signals: list[int]) -> int:
        tag = int.from_bytes(circuit.value.encode(), "big")
        return hash_fields([tag, len(signals), *signals])

    def _make_proof(self, circuit: Circuit, signals: list[int]) -> ZKProof:
        digest = self._digest(circuit, signals)
        return ZKProof(
            pi_a=[str(digest), "0", "1"],
            pi_b=[["0", "0"], ["0", "0"], ["1", "0"]],
            pi_c=["0", "0", "1"],
        )

    # =========================================================================
    # Constraint helpers
    # =========================================================================

    @staticmethod
    def _require(condition: bool, circuit: Circuit, message: str) -> None:
        if not condition:
            raise ProvingFailedError(
                f"Assert failed in {circuit.value}: {message}",
                context={"circuit": circuit.value},
            )

    def _check_gst_membership(
        self,
        circuit: Circuit,
        inputs: dict[str, Any],
        user_tree_root: int,
    ) -> int:
        commitment = hash_left_right(
            hash_left_right(_int(inputs["identity_nullifier"]), _int(inputs["identity_trapdoor"])),
            0,
        )
        leaf = hash_left_right(commitment, user_tree_root)
        root = compute_root(
            leaf,
            _ints(inputs["GST_path_elements"]),
            _ints(inputs["GST_path_index"]),
        )
        gst_root = _int(inputs["GST_root"])
        self._require(root == gst_root, circuit, "global state tree membership")
        return gst_root

    def _check_epoch_key(self, circuit: Circuit, inputs: dict[str, Any], nonce: int) -> int:
        self._require(
            0 <= nonce < self.num_epoch_key_nonce_per_epoch,
            circuit,
            "epoch key nonce in range",
        )
        epoch_key = gen_epoch_key(
            _int(inputs["identity_nullifier"]),
            _int(inputs["epoch"]),
            nonce,
            self.epoch_tree_depth,
        )
        self._require(epoch_key == _int(inputs["epoch_key"]), circuit, "epoch key derivation")
        return epoch_key

    def _check_reputation_leaf(self, circuit: Circuit, inputs: dict[str, Any]) -> Reputation:
        reputation = Reputation(
            pos_rep=_int(inputs["pos_rep"]),
            neg_rep=_int(inputs["neg_rep"]),
            graffiti=_int(inputs["graffiti"]),
            sign_up=_int(inputs["sign_up"]),
        )
        siblings = _ints(inputs["UST_path_elements"])
        attester_id = _int(inputs["attester_id"])
        root = compute_root(reputation.hash(), siblings, _key_path(attester_id, len(siblings)))
        self._require(root == _int(inputs["user_tree_root"]), circuit, "user state tree membership")
        return reputation

    # =========================================================================
    # Circuits
    # =========================================================================

    def _verify_epoch_key(self, inputs: dict[str, Any]) -> list[int]:
        circuit = Circuit.VERIFY_EPOCH_KEY
        gst_root = self._check_gst_membership(circuit, inputs, _int(inputs["user_tree_root"]))
        epoch_key = self._check_epoch_key(circuit, inputs, _int(inputs["nonce"]))
        return [gst_root, _int(inputs["epoch"]), epoch_key]

    def _prove_reputation(self, inputs: dict[str, Any]) -> list[int]:
        circuit = Circuit.PROVE_REPUTATION
        gst_root = self._check_gst_membership(circuit, inputs, _int(inputs["user_tree_root"]))
        epoch_key = self._check_epoch_key(circuit, inputs, _int(inputs["epoch_key_nonce"]))
        reputation = self._check_reputation_leaf(circuit, inputs)

        epoch = _int(inputs["epoch"])
        attester_id = _int(inputs["attester_id"])
        identity_nullifier = _int(inputs["identity_nullifier"])
        selectors = _ints(inputs["selectors"])
        rep_nonces = _ints(inputs["rep_nonce"])
        amount = _int(inputs["rep_nullifiers_amount"])
        min_rep = _int(inputs["min_rep"])
        prove_graffiti = _int(inputs["prove_graffiti"])
        graffiti_pre_image = _int(inputs["graffiti_pre_image"])

        balance = reputation.pos_rep - reputation.neg_rep
        self._require(sum(selectors) == amount, circuit, "nullifier amount matches selectors")
        self._require(balance >= min_rep, circuit, "minimum reputation")
        self._require(balance >= amount, circuit, "reputation covers nullifiers")

        nullifiers: list[int] = []
        for selected, nonce in zip(selectors, rep_nonces, strict=True):
            if selected:
                self._require(0 <= nonce < balance, circuit, "reputation nonce in range")
                nullifiers.append(gen_reputation_nullifier(identity_nullifier, epoch, nonce, attester_id))
            else:
                nullifiers.append(0)

        if prove_graffiti:
            self._require(
                hash5([graffiti_pre_image]) == reputation.graffiti,
                circuit,
                "graffiti pre-image",
            )

        return [
            *nullifiers,
            epoch,
            epoch_key,
            gst_root,
            attester_id,
            amount,
            min_rep,
            prove_graffiti,
            graffiti_pre_image,
        ]

    def _prove_user_sign_up(self, inputs: dict[str, Any]) -> list[int]:
        circuit = Circuit.PROVE_USER_SIGN_UP
        gst_root = self._check_gst_membership(circuit, inputs, _int(inputs["user_tree_root"]))
        epoch_key = self._check_epoch_key(circuit, inputs, 0)
        reputation = self._check_reputation_leaf(circuit, inputs)
        return [
            _int(inputs["epoch"]),
            epoch_key,
            gst_root,
            _int(inputs["attester_id"]),
            reputation.sign_up,
        ]

    def _start_transition(self, inputs: dict[str, Any]) -> list[int]:
        circuit = Circuit.START_TRANSITION
        user_tree_root = _int(inputs["user_tree_root"])
        gst_root = self._check_gst_membership(circuit, inputs, user_tree_root)
        identity_nullifier = _int(inputs["identity_nullifier"])
        epoch = _int(inputs["epoch"])
        nonce = _int(inputs["nonce"])
        return [
            hash5([identity_nullifier, user_tree_root, epoch, nonce]),
            hash5([identity_nullifier, 0, epoch, nonce]),
            gst_root,
        ]

    def _process_attestations(self, inputs: dict[str, Any]) -> list[int]:
        circuit = Circuit.PROCESS_ATTESTATIONS
        identity_nullifier = _int(inputs["identity_nullifier"])
        epoch = _int(inputs["epoch"])
        from_nonce = _int(inputs["from_nonce"])
        to_nonce = _int(inputs["to_nonce"])
        roots = _ints(inputs["intermediate_user_state_tree_roots"])
        input_blinded_user_state = _int(inputs["input_blinded_user_state"])

        self._require(
            input_blinded_user_state == hash5([identity_nullifier, roots[0], epoch, from_nonce]),
            circuit,
            "input blinded user state",
        )

        selectors = _ints(inputs["selectors"])
        self._require(len(roots) == len(selectors) + 1, circuit, "intermediate root count")

        chain = _int(inputs["hash_chain_starter"])
        for i, selected in enumerate(selectors):
            if not selected:
                self._require(roots[i + 1] == roots[i], circuit, "padding leaves root unchanged")
                continue

            attester_id = _int(inputs["attester_ids"][i])
            siblings = _ints(inputs["path_elements"][i])
            path = _key_path(attester_id, len(siblings))
            old = Reputation(
                pos_rep=_int(inputs["old_pos_reps"][i]),
                neg_rep=_int(inputs["old_neg_reps"][i]),
                graffiti=_int(inputs["old_graffities"][i]),
                sign_up=_int(inputs["old_sign_ups"][i]),
            )
            self._require(
                compute_root(old.hash(), siblings, path) == roots[i],
                circuit,
                "old reputation leaf",
            )

            pos_rep = _int(inputs["pos_reps"][i])
            neg_rep = _int(inputs["neg_reps"][i])
            graffiti = _int(inputs["graffities"][i])
            sign_up = _int(inputs["sign_ups"][i])
            new = old.update(
                pos_rep,
                neg_rep,
                graffiti,
                sign_up,
                overwrite_graffiti=bool(_int(inputs["overwrite_graffities"][i])),
            )
            self._require(
                compute_root(new.hash(), siblings, path) == roots[i + 1],
                circuit,
                "new reputation leaf",
            )
            attestation_hash = hash5([attester_id, pos_rep, neg_rep, graffiti, sign_up])
            chain = hash_left_right(attestation_hash, chain)

        return [
            hash5([identity_nullifier, roots[-1], epoch, to_nonce]),
            hash5([identity_nullifier, chain, epoch, to_nonce]),
            input_blinded_user_state,
        ]

    def _user_state_transition(self, inputs: dict[str, Any]) -> list[int]:
        circuit = Circuit.USER_STATE_TRANSITION
        identity_nullifier = _int(inputs["identity_nullifier"])
        epoch = _int(inputs["epoch"])
        roots = _ints(inputs["intermediate_user_state_tree_roots"])
        blinded_user_states = _ints(inputs["blinded_user_state"])
        start_nonce = _int(inputs["start_epoch_key_nonce"])
        end_nonce = _int(inputs["end_epoch_key_nonce"])
        epoch_tree_root = _int(inputs["epoch_tree_root"])

        gst_root = self._check_gst_membership(circuit, inputs, roots[0])
        self._require(
            blinded_user_states[0] == hash5([identity_nullifier, roots[0], epoch, start_nonce]),
            circuit,
            "first blinded user state",
        )
        self._require(
            blinded_user_states[1] == hash5([identity_nullifier, roots[1], epoch, end_nonce]),
            circuit,
            "last blinded user state",
        )

        hash_chains = _ints(inputs["hash_chain_results"])
        blinded_hash_chains = _ints(inputs["blinded_hash_chain_results"])
        epk_paths = inputs["epk_path_elements"]
        self._require(
            len(hash_chains) == self.num_epoch_key_nonce_per_epoch,
            circuit,
            "one hash chain per nonce",
        )

        nullifiers: list[int] = []
        for nonce, chain in enumerate(hash_chains):
            self._require(
                blinded_hash_chains[nonce] == hash5([identity_nullifier, chain, epoch, nonce]),
                circuit,
                "blinded hash chain",
            )
            siblings = _ints(epk_paths[nonce])
            epoch_key = gen_epoch_key(identity_nullifier, epoch, nonce, len(siblings))
            leaf = seal_hash_chain(chain)
            self._require(
                compute_root(leaf, siblings, _key_path(epoch_key, len(siblings))) == epoch_tree_root,
                circuit,
                "epoch tree membership",
            )
            nullifiers.append(gen_epoch_key_nullifier(identity_nullifier, epoch, nonce))

        commitment = hash_left_right(
            hash_left_right(identity_nullifier, _int(inputs["identity_trapdoor"])),
            0,
        )
        return [
            hash_left_right(commitment, roots[1]),
            *nullifiers,
            epoch,
            *blinded_user_states,
            gst_root,
            *blinded_hash_chains,
            epoch_tree_root,
        ]
