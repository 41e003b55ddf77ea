"""
Identity
========

Secret (nullifier, trapdoor) pair held by a single user, and its public
commitment.
"""

import secrets
from dataclasses import dataclass

from repstate.crypto.hashing import hash_left_right


def _random_field_element() -> int:
    # 31 bytes keeps the value below the field order
    return int.from_bytes(secrets.token_bytes(31), "big")


@dataclass(frozen=True)
class ZkIdentity:
    """Identity secret. The commitment is a one-way function of both halves."""

    identity_nullifier: int
    trapdoor: int

    @classmethod
    def generate(cls) -> "ZkIdentity":
        return cls(
            identity_nullifier=_random_field_element(),
            trapdoor=_random_field_element(),
        )

    @property
    def secret_hash(self) -> int:
        return hash_left_right(self.identity_nullifier, self.trapdoor)

    @property
    def commitment(self) -> int:
        return hash_left_right(self.secret_hash, 0)

    def serialize(self) -> dict[str, str]:
        return {
            "identity_nullifier": str(self.identity_nullifier),
            "trapdoor": str(self.trapdoor),
        }

    @classmethod
    def deserialize(cls, data: dict[str, str]) -> "ZkIdentity":
        return cls(
            identity_nullifier=int(data["identity_nullifier"]),
            trapdoor=int(data["trapdoor"]),
        )

    def __repr__(self) -> str:
        return f"ZkIdentity(commitment={self.commitment})"
