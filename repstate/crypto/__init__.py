"""
Crypto Module
=============

Field hashing, identities, epoch keys, nullifiers and Merkle trees.
"""

from repstate.crypto.epoch_tree import build_epoch_tree, build_hash_chains, default_epoch_tree_leaf
from repstate.crypto.hashing import (
    SNARK_SCALAR_FIELD,
    gen_epoch_key,
    gen_epoch_key_nullifier,
    gen_reputation_nullifier,
    hash5,
    hash_fields,
    hash_left_right,
    seal_hash_chain,
)
from repstate.crypto.identity import ZkIdentity
from repstate.crypto.merkle import (
    IncrementalMerkleTree,
    MerkleProof,
    SparseMerkleTree,
    compute_root,
    verify_proof,
)


__all__ = [
    "SNARK_SCALAR_FIELD",
    "hash_fields",
    "hash_left_right",
    "hash5",
    "gen_epoch_key",
    "gen_epoch_key_nullifier",
    "gen_reputation_nullifier",
    "seal_hash_chain",
    "ZkIdentity",
    "MerkleProof",
    "IncrementalMerkleTree",
    "SparseMerkleTree",
    "compute_root",
    "verify_proof",
    "build_hash_chains",
    "build_epoch_tree",
    "default_epoch_tree_leaf",
]
