"""
Unit tests for Merkle trees and the epoch tree builder.
"""

import pytest

from repstate.crypto.epoch_tree import build_epoch_tree, build_hash_chains, default_epoch_tree_leaf
from repstate.crypto.hashing import hash_left_right, seal_hash_chain
from repstate.crypto.merkle import (
    IncrementalMerkleTree,
    MerkleProof,
    SparseMerkleTree,
    compute_root,
    verify_proof,
)


class TestIncrementalMerkleTree:
    """Tests for the append-only tree."""

    def test_empty_root_is_zero_hash(self) -> None:
        tree = IncrementalMerkleTree(2, 0)
        level1 = hash_left_right(0, 0)
        assert tree.root == hash_left_right(level1, level1)

    def test_insert_returns_index(self) -> None:
        tree = IncrementalMerkleTree(3)
        assert tree.insert(10) == 0
        assert tree.insert(20) == 1
        assert len(tree) == 2
        assert tree.leaves == [10, 20]

    def test_root_changes_on_insert(self) -> None:
        tree = IncrementalMerkleTree(3)
        empty = tree.root
        tree.insert(5)
        assert tree.root != empty

    def test_proofs_verify(self) -> None:
        tree = IncrementalMerkleTree(3)
        for leaf in (11, 22, 33, 44, 55):
            tree.insert(leaf)

        for index in range(5):
            proof = tree.create_proof(index)
            assert proof.leaf == tree.leaves[index]
            assert proof.root == tree.root
            assert verify_proof(proof)

    def test_path_indices_are_index_bits(self) -> None:
        tree = IncrementalMerkleTree(3)
        for leaf in range(6):
            tree.insert(leaf + 100)
        assert tree.create_proof(5).path_indices == [1, 0, 1]

    def test_proof_for_missing_leaf(self) -> None:
        tree = IncrementalMerkleTree(2)
        tree.insert(1)
        with pytest.raises(ValueError):
            tree.create_proof(1)

    def test_full_tree(self) -> None:
        tree = IncrementalMerkleTree(1)
        tree.insert(1)
        tree.insert(2)
        with pytest.raises(ValueError, match="full"):
            tree.insert(3)

    def test_index_of(self) -> None:
        tree = IncrementalMerkleTree(2)
        tree.insert(7)
        tree.insert(8)
        assert tree.index_of(8) == 1
        assert tree.index_of(9) == -1

    def test_tampered_proof_fails(self) -> None:
        tree = IncrementalMerkleTree(2)
        tree.insert(7)
        proof = tree.create_proof(0)
        forged = MerkleProof(leaf=8, siblings=proof.siblings, path_indices=proof.path_indices, root=proof.root)
        assert not verify_proof(forged)


class TestSparseMerkleTree:
    """Tests for the key-addressed tree."""

    def test_default_leaf(self) -> None:
        tree = SparseMerkleTree(4, 99)
        assert tree.get(3) == 99

    def test_update_and_get(self) -> None:
        tree = SparseMerkleTree(4, 0)
        tree.update(5, 123)
        assert tree.get(5) == 123
        assert tree.keys() == [5]

    def test_membership_and_non_membership_proofs(self) -> None:
        tree = SparseMerkleTree(4, 0)
        tree.update(5, 123)

        member = tree.create_proof(5)
        absent = tree.create_proof(6)

        assert member.leaf == 123 and verify_proof(member)
        assert absent.leaf == 0 and verify_proof(absent)
        assert compute_root(absent.leaf, absent.siblings, absent.path_indices) == tree.root

    def test_key_out_of_range(self) -> None:
        tree = SparseMerkleTree(3, 0)
        with pytest.raises(ValueError, match="out of range"):
            tree.update(8, 1)
        with pytest.raises(ValueError):
            tree.get(-1)

    def test_update_order_independent(self) -> None:
        a = SparseMerkleTree(4, 0)
        b = SparseMerkleTree(4, 0)
        a.update(1, 10)
        a.update(9, 90)
        b.update(9, 90)
        b.update(1, 10)
        assert a.root == b.root

    def test_copy_is_independent(self) -> None:
        tree = SparseMerkleTree(4, 0)
        tree.update(2, 20)
        clone = tree.copy()
        clone.update(3, 30)

        assert tree.get(3) == 0
        assert clone.get(2) == 20
        assert tree.root != clone.root


class TestEpochTree:
    """Tests for the epoch tree builder."""

    def test_hash_chains_in_log_order(self) -> None:
        chains = build_hash_chains([(1, 100), (2, 200), (1, 101)])
        assert chains[1] == hash_left_right(101, hash_left_right(100, 0))
        assert chains[2] == hash_left_right(200, 0)

    def test_epoch_tree_leaves_are_sealed(self) -> None:
        chains = build_hash_chains([(3, 100)])
        tree = build_epoch_tree(4, chains)

        assert tree.get(3) == seal_hash_chain(chains[3])
        assert tree.get(4) == default_epoch_tree_leaf()

    def test_empty_epoch(self) -> None:
        tree = build_epoch_tree(4, {})
        assert tree.root == SparseMerkleTree(4, default_epoch_tree_leaf()).root
