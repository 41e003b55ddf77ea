"""
Merkle Trees
============

Fixed-depth binary Merkle trees over field elements.

- IncrementalMerkleTree: append-only, used for the global state tree
- SparseMerkleTree: key-addressed, used for the user state tree and the
  epoch tree

Both keep only non-default nodes, one dict per level, with per-level default
hashes precomputed from the tree's default leaf. Level 0 holds the leaves and
level ``depth`` holds the root.

Version: 0.1.0
"""

from dataclasses import dataclass, field

from repstate.crypto.hashing import hash_left_right


@dataclass(frozen=True)
class MerkleProof:
    """Membership path from a leaf to the root."""

    leaf: int
    siblings: list[int] = field(default_factory=list)
    path_indices: list[int] = field(default_factory=list)
    root: int = 0


def compute_root(leaf: int, siblings: list[int], path_indices: list[int]) -> int:
    node = leaf
    for sibling, is_right in zip(siblings, path_indices, strict=True):
        node = hash_left_right(sibling, node) if is_right else hash_left_right(node, sibling)
    return node


def verify_proof(proof: MerkleProof) -> bool:
    """Check that a proof's path hashes up to its root."""
    return compute_root(proof.leaf, proof.siblings, proof.path_indices) == proof.root


class _MerkleTree:
    def __init__(self, depth: int, default_leaf: int) -> None:
        if depth < 1:
            raise ValueError(f"Tree depth must be positive, got {depth}")
        self.depth = depth
        self.default_leaf = default_leaf
        self.zeros = [default_leaf]
        for _ in range(depth):
            self.zeros.append(hash_left_right(self.zeros[-1], self.zeros[-1]))
        self._nodes: list[dict[int, int]] = [{} for _ in range(depth + 1)]

    @property
    def capacity(self) -> int:
        return 2**self.depth

    @property
    def root(self) -> int:
        return self._node(self.depth, 0)

    def _node(self, level: int, index: int) -> int:
        return self._nodes[level].get(index, self.zeros[level])

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.capacity:
            raise ValueError(f"Index {index} out of range for depth {self.depth}")

    def _set_leaf(self, index: int, value: int) -> None:
        self._nodes[0][index] = value
        for level in range(self.depth):
            index >>= 1
            left = self._node(level, index * 2)
            right = self._node(level, index * 2 + 1)
            self._nodes[level + 1][index] = hash_left_right(left, right)

    def _proof(self, index: int) -> MerkleProof:
        siblings: list[int] = []
        path_indices: list[int] = []
        position = index
        for level in range(self.depth):
            siblings.append(self._node(level, position ^ 1))
            path_indices.append(position & 1)
            position >>= 1
        return MerkleProof(
            leaf=self._node(0, index),
            siblings=siblings,
            path_indices=path_indices,
            root=self.root,
        )


class IncrementalMerkleTree(_MerkleTree):
    """Append-only tree. Leaves are addressed by insertion index."""

    def __init__(self, depth: int, zero_value: int = 0) -> None:
        super().__init__(depth, zero_value)
        self.next_index = 0

    def __len__(self) -> int:
        return self.next_index

    @property
    def leaves(self) -> list[int]:
        return [self._node(0, i) for i in range(self.next_index)]

    def insert(self, leaf: int) -> int:
        """Append a leaf and return its index."""
        if self.next_index >= self.capacity:
            raise ValueError(f"Tree of depth {self.depth} is full")
        index = self.next_index
        self._set_leaf(index, leaf)
        self.next_index += 1
        return index

    def index_of(self, leaf: int) -> int:
        """Index of the first occurrence of ``leaf``, or -1."""
        for i in range(self.next_index):
            if self._node(0, i) == leaf:
                return i
        return -1

    def create_proof(self, index: int) -> MerkleProof:
        if not 0 <= index < self.next_index:
            raise ValueError(f"No leaf at index {index} (tree has {self.next_index})")
        return self._proof(index)


class SparseMerkleTree(_MerkleTree):
    """
    Key-addressed tree with a default leaf for every absent key.

    Proofs are available for any key in range; for an absent key the proof's
    leaf is the default leaf, which proves non-membership.
    """

    def update(self, key: int, value: int) -> None:
        self._check_index(key)
        self._set_leaf(key, value)

    def get(self, key: int) -> int:
        self._check_index(key)
        return self._node(0, key)

    def create_proof(self, key: int) -> MerkleProof:
        self._check_index(key)
        return self._proof(key)

    def keys(self) -> list[int]:
        return sorted(self._nodes[0])

    def copy(self) -> "SparseMerkleTree":
        clone = SparseMerkleTree(self.depth, self.default_leaf)
        clone._nodes = [dict(level) for level in self._nodes]
        return clone
