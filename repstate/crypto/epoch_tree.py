"""
Epoch Tree
==========

Builds the per-epoch aggregation tree: one leaf per epoch key holding the
sealed hash chain of every valid attestation addressed to it, in log order.
"""

from collections.abc import Iterable

from repstate.crypto.hashing import hash_left_right, seal_hash_chain
from repstate.crypto.merkle import SparseMerkleTree


def default_epoch_tree_leaf() -> int:
    return seal_hash_chain(0)


def build_hash_chains(attestations: Iterable[tuple[int, int]]) -> dict[int, int]:
    """
    Fold (epoch_key, attestation_hash) pairs into one hash chain per epoch key.

    Pairs must be supplied in ledger log order.
    """
    chains: dict[int, int] = {}
    for epoch_key, attestation_hash in attestations:
        chains[epoch_key] = hash_left_right(attestation_hash, chains.get(epoch_key, 0))
    return chains


def build_epoch_tree(depth: int, hash_chains: dict[int, int]) -> SparseMerkleTree:
    tree = SparseMerkleTree(depth, default_epoch_tree_leaf())
    for epoch_key, chain in hash_chains.items():
        tree.update(epoch_key, seal_hash_chain(chain))
    return tree
