"""
Field Hashing
=============

Hash helpers over the BN254 scalar field.

Inputs are reduced into the field, encoded as 32-byte big-endian words,
hashed with SHA-256 and the digest is reduced back into the field. All
derived values (commitments, epoch keys, nullifiers, tree nodes) go through
these helpers so every component agrees on them.

Version: 0.1.0
"""

import hashlib
from collections.abc import Iterable, Sequence

# BN254 scalar field order
SNARK_SCALAR_FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

EPOCH_KEY_NULLIFIER_DOMAIN = 1
REPUTATION_NULLIFIER_DOMAIN = 2


def _to_word(value: int) -> bytes:
    return (int(value) % SNARK_SCALAR_FIELD).to_bytes(32, "big")


def hash_fields(values: Iterable[int]) -> int:
    """Hash a sequence of field elements to a single field element."""
    digest = hashlib.sha256(b"".join(_to_word(v) for v in values)).digest()
    return int.from_bytes(digest, "big") % SNARK_SCALAR_FIELD


def hash_left_right(left: int, right: int) -> int:
    """Hash two field elements (tree nodes, GST leaves, hash chains)."""
    return hash_fields((left, right))


def hash5(values: Sequence[int]) -> int:
    """Hash up to five field elements, zero-padded to exactly five."""
    if len(values) > 5:
        raise ValueError(f"hash5 takes at most 5 inputs, got {len(values)}")
    return hash_fields([*values, *([0] * (5 - len(values)))])


def gen_epoch_key(
    identity_nullifier: int,
    epoch: int,
    nonce: int,
    epoch_tree_depth: int,
) -> int:
    """Derive the epoch key for (identity, epoch, nonce), bounded by the epoch tree."""
    return hash5([identity_nullifier, epoch, nonce]) % (2**epoch_tree_depth)


def gen_epoch_key_nullifier(identity_nullifier: int, epoch: int, nonce: int) -> int:
    return hash5([EPOCH_KEY_NULLIFIER_DOMAIN, identity_nullifier, epoch, nonce])


def gen_reputation_nullifier(
    identity_nullifier: int,
    epoch: int,
    nonce: int,
    attester_id: int,
) -> int:
    return hash5([REPUTATION_NULLIFIER_DOMAIN, identity_nullifier, epoch, nonce, attester_id])


def seal_hash_chain(hash_chain: int) -> int:
    """Epoch tree leaf for a finished attestation hash chain."""
    return hash_left_right(1, hash_chain)
