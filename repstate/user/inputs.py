"""
Proof Inputs
============

Pure builders for circuit inputs. Keys follow the circuits' signal names.
Values are plain integers; ``stringify_big_ints`` converts a finished input
dict into the decimal-string form provers expect.

The user state transition is split into a start proof, one process proof per
batch of ``num_attestations_per_proof`` attestations, and a final proof.
``build_transition_plan`` computes every input of all three phases up front.

Version: 0.1.0
"""

import math
from dataclasses import dataclass, field
from typing import Any

from repstate.crypto.hashing import gen_epoch_key, hash5, hash_left_right
from repstate.crypto.identity import ZkIdentity
from repstate.crypto.merkle import MerkleProof, SparseMerkleTree
from repstate.models.attestation import Attestation
from repstate.models.reputation import Reputation


def stringify_big_ints(value: Any) -> Any:
    """Recursively convert integers to decimal strings."""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {k: stringify_big_ints(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [stringify_big_ints(v) for v in value]
    return value


def blinded_user_state(identity_nullifier: int, user_state_root: int, epoch: int, nonce: int) -> int:
    return hash5([identity_nullifier, user_state_root, epoch, nonce])


def blinded_hash_chain(identity_nullifier: int, hash_chain: int, epoch: int, nonce: int) -> int:
    return hash5([identity_nullifier, hash_chain, epoch, nonce])


def _membership_inputs(
    identity: ZkIdentity,
    gst_proof: MerkleProof,
    user_tree_root: int,
) -> dict[str, Any]:
    return {
        "GST_path_elements": list(gst_proof.siblings),
        "GST_path_index": list(gst_proof.path_indices),
        "GST_root": gst_proof.root,
        "identity_nullifier": identity.identity_nullifier,
        "identity_trapdoor": identity.trapdoor,
        "user_tree_root": user_tree_root,
    }


def build_epoch_key_inputs(
    identity: ZkIdentity,
    gst_proof: MerkleProof,
    user_tree_root: int,
    epoch: int,
    nonce: int,
    epoch_key: int,
) -> dict[str, Any]:
    return {
        **_membership_inputs(identity, gst_proof, user_tree_root),
        "nonce": nonce,
        "epoch": epoch,
        "epoch_key": epoch_key,
    }


def build_reputation_inputs(
    identity: ZkIdentity,
    gst_proof: MerkleProof,
    user_tree_root: int,
    epoch: int,
    nonce: int,
    epoch_key: int,
    attester_id: int,
    reputation: Reputation,
    ust_proof: MerkleProof,
    rep_nonces: list[int],
    min_rep: int = 0,
    prove_graffiti: int = 0,
    graffiti_pre_image: int = 0,
) -> dict[str, Any]:
    """
    Inputs for proveReputation.

    ``rep_nonces`` has one slot per unit of reputation budget; -1 marks an
    unused slot.
    """
    selectors = [0 if n == -1 else 1 for n in rep_nonces]
    return {
        **_membership_inputs(identity, gst_proof, user_tree_root),
        "epoch": epoch,
        "epoch_key_nonce": nonce,
        "epoch_key": epoch_key,
        "attester_id": attester_id,
        "pos_rep": reputation.pos_rep,
        "neg_rep": reputation.neg_rep,
        "graffiti": reputation.graffiti,
        "sign_up": reputation.sign_up,
        "UST_path_elements": list(ust_proof.siblings),
        "rep_nullifiers_amount": sum(selectors),
        "selectors": selectors,
        "rep_nonce": list(rep_nonces),
        "min_rep": min_rep,
        "prove_graffiti": prove_graffiti,
        "graffiti_pre_image": graffiti_pre_image,
    }


def build_user_sign_up_inputs(
    identity: ZkIdentity,
    gst_proof: MerkleProof,
    user_tree_root: int,
    epoch: int,
    epoch_key: int,
    attester_id: int,
    reputation: Reputation,
    ust_proof: MerkleProof,
) -> dict[str, Any]:
    return {
        **_membership_inputs(identity, gst_proof, user_tree_root),
        "epoch": epoch,
        "epoch_key": epoch_key,
        "attester_id": attester_id,
        "pos_rep": reputation.pos_rep,
        "neg_rep": reputation.neg_rep,
        "graffiti": reputation.graffiti,
        "sign_up": reputation.sign_up,
        "UST_path_elements": list(ust_proof.siblings),
    }


def build_start_transition_inputs(
    identity: ZkIdentity,
    gst_proof: MerkleProof,
    user_tree_root: int,
    epoch: int,
    nonce: int = 0,
) -> dict[str, Any]:
    return {
        **_membership_inputs(identity, gst_proof, user_tree_root),
        "epoch": epoch,
        "nonce": nonce,
    }


@dataclass
class _ProcessEntries:
    """Per-attestation columns of the process phase, padding included."""

    roots: list[int]
    old_pos_reps: list[int] = field(default_factory=list)
    old_neg_reps: list[int] = field(default_factory=list)
    old_graffities: list[int] = field(default_factory=list)
    old_sign_ups: list[int] = field(default_factory=list)
    path_elements: list[list[int]] = field(default_factory=list)
    attester_ids: list[int] = field(default_factory=list)
    pos_reps: list[int] = field(default_factory=list)
    neg_reps: list[int] = field(default_factory=list)
    graffities: list[int] = field(default_factory=list)
    overwrite_graffities: list[int] = field(default_factory=list)
    sign_ups: list[int] = field(default_factory=list)
    selectors: list[int] = field(default_factory=list)

    def add(
        self,
        old: Reputation,
        path: list[int],
        root: int,
        attestation: Attestation | None,
    ) -> None:
        self.old_pos_reps.append(old.pos_rep)
        self.old_neg_reps.append(old.neg_rep)
        self.old_graffities.append(old.graffiti)
        self.old_sign_ups.append(old.sign_up)
        self.path_elements.append(path)
        self.roots.append(root)
        if attestation is None:
            self.selectors.append(0)
            self.attester_ids.append(0)
            self.pos_reps.append(0)
            self.neg_reps.append(0)
            self.graffities.append(0)
            self.overwrite_graffities.append(0)
            self.sign_ups.append(0)
        else:
            self.selectors.append(1)
            self.attester_ids.append(attestation.attester_id)
            self.pos_reps.append(attestation.pos_rep)
            self.neg_reps.append(attestation.neg_rep)
            self.graffities.append(attestation.graffiti)
            self.overwrite_graffities.append(int(bool(attestation.overwrite_graffiti)))
            self.sign_ups.append(attestation.sign_up)

    def batch(self, start: int, end: int) -> dict[str, Any]:
        return {
            "intermediate_user_state_tree_roots": self.roots[start : end + 1],
            "old_pos_reps": self.old_pos_reps[start:end],
            "old_neg_reps": self.old_neg_reps[start:end],
            "old_graffities": self.old_graffities[start:end],
            "old_sign_ups": self.old_sign_ups[start:end],
            "path_elements": self.path_elements[start:end],
            "attester_ids": self.attester_ids[start:end],
            "pos_reps": self.pos_reps[start:end],
            "neg_reps": self.neg_reps[start:end],
            "graffities": self.graffities[start:end],
            "overwrite_graffities": self.overwrite_graffities[start:end],
            "sign_ups": self.sign_ups[start:end],
            "selectors": self.selectors[start:end],
        }


@dataclass
class TransitionPlan:
    """All inputs for one user state transition, plus the state it produces."""

    start: dict[str, Any]
    process: list[dict[str, Any]]
    final: dict[str, Any]
    new_user_state_root: int
    new_gst_leaf: int
    new_reputations: dict[int, Reputation]


def build_transition_plan(
    identity: ZkIdentity,
    epoch: int,
    user_state_tree: SparseMerkleTree,
    reputations: dict[int, Reputation],
    attestations_by_nonce: list[list[Attestation]],
    epoch_tree: SparseMerkleTree,
    gst_proof: MerkleProof,
    num_attestations_per_proof: int,
) -> TransitionPlan:
    """
    Build start, process and final inputs for transitioning out of ``epoch``.

    Attestations are folded in log order per epoch key nonce. Each batch's
    input blinded user state is the previous batch's output (the start
    proof's output for the first batch). Crossing a batch boundary inside a
    nonce checkpoints the same (epoch, nonce); moving to the next nonce
    resets the hash chain to zero.
    """
    size = num_attestations_per_proof
    id_n = identity.identity_nullifier
    last_nonce = len(attestations_by_nonce) - 1

    tree = user_state_tree.copy()
    records = dict(reputations)
    initial_root = tree.root
    entries = _ProcessEntries(roots=[initial_root])

    from_nonces = [0]
    to_nonces: list[int] = []
    chain_starters: list[int] = []
    checkpoints = [blinded_user_state(id_n, initial_root, epoch, 0)]
    hash_chains: list[int] = []
    blinded_chains: list[int] = []
    epk_paths: list[list[int]] = []

    for nonce, attestations in enumerate(attestations_by_nonce):
        epoch_key = gen_epoch_key(id_n, epoch, nonce, epoch_tree.depth)
        chain = 0
        to_nonces.append(nonce)
        chain_starters.append(chain)

        for i, attestation in enumerate(attestations):
            if i and i % size == 0:
                to_nonces.append(nonce)
                from_nonces.append(nonce)
                chain_starters.append(chain)
                checkpoints.append(blinded_user_state(id_n, tree.root, epoch, nonce))

            attester_id = attestation.attester_id
            old = records.get(attester_id, Reputation.default())
            path = tree.create_proof(attester_id).siblings
            new = old.update(
                attestation.pos_rep,
                attestation.neg_rep,
                attestation.graffiti,
                attestation.sign_up,
                overwrite_graffiti=attestation.overwrite_graffiti,
            )
            records[attester_id] = new
            tree.update(attester_id, new.hash())
            entries.add(old, path, tree.root, attestation)
            chain = hash_left_right(attestation.hash(), chain)

        filled = math.ceil(len(attestations) / size) * size if attestations else size
        for _ in range(filled - len(attestations)):
            entries.add(Reputation.default(), tree.create_proof(0).siblings, tree.root, None)

        epk_paths.append(epoch_tree.create_proof(epoch_key).siblings)
        hash_chains.append(chain)
        checkpoints.append(blinded_user_state(id_n, tree.root, epoch, nonce))
        blinded_chains.append(blinded_hash_chain(id_n, chain, epoch, nonce))
        if nonce != last_nonce:
            from_nonces.append(nonce)

    process = [
        {
            "epoch": epoch,
            "from_nonce": from_nonces[i],
            "to_nonce": to_nonces[i],
            "identity_nullifier": id_n,
            **entries.batch(size * i, size * (i + 1)),
            "hash_chain_starter": chain_starters[i],
            "input_blinded_user_state": checkpoints[i],
        }
        for i in range(len(from_nonces))
    ]

    final_root = tree.root
    final = {
        "epoch": epoch,
        "blinded_user_state": [
            blinded_user_state(id_n, initial_root, epoch, 0),
            blinded_user_state(id_n, final_root, epoch, last_nonce),
        ],
        "intermediate_user_state_tree_roots": [initial_root, final_root],
        "start_epoch_key_nonce": 0,
        "end_epoch_key_nonce": last_nonce,
        "identity_nullifier": id_n,
        "identity_trapdoor": identity.trapdoor,
        "GST_path_elements": list(gst_proof.siblings),
        "GST_path_index": list(gst_proof.path_indices),
        "GST_root": gst_proof.root,
        "epk_path_elements": epk_paths,
        "hash_chain_results": hash_chains,
        "blinded_hash_chain_results": blinded_chains,
        "epoch_tree_root": epoch_tree.root,
    }

    return TransitionPlan(
        start=build_start_transition_inputs(identity, gst_proof, initial_root, epoch, 0),
        process=process,
        final=final,
        new_user_state_root=final_root,
        new_gst_leaf=hash_left_right(identity.commitment, final_root),
        new_reputations=records,
    )
