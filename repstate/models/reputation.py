"""
Reputation
==========

Accumulated reputation one user holds with one attester.

Version: 0.1.0
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from repstate.crypto.hashing import SNARK_SCALAR_FIELD, hash5


class Reputation(BaseModel):
    """
    Reputation record stored as a user state tree leaf.

    pos_rep and neg_rep accumulate modulo the SNARK field, graffiti is replaced
    only on an explicit overwrite, and sign_up is a monotonic OR.
    """

    model_config = ConfigDict(frozen=True)

    pos_rep: int = Field(default=0, ge=0)
    neg_rep: int = Field(default=0, ge=0)
    graffiti: int = Field(default=0, ge=0)
    sign_up: int = Field(default=0, ge=0, le=1)

    @classmethod
    def default(cls) -> "Reputation":
        return cls()

    def update(
        self,
        pos_rep: int,
        neg_rep: int,
        graffiti: int,
        sign_up: int,
        overwrite_graffiti: bool | None = None,
    ) -> "Reputation":
        """Return the record with one attestation folded in."""
        if overwrite_graffiti is None:
            overwrite_graffiti = graffiti != 0
        return Reputation(
            pos_rep=(self.pos_rep + pos_rep) % SNARK_SCALAR_FIELD,
            neg_rep=(self.neg_rep + neg_rep) % SNARK_SCALAR_FIELD,
            graffiti=graffiti if overwrite_graffiti else self.graffiti,
            sign_up=1 if (self.sign_up or sign_up) else 0,
        )

    def hash(self) -> int:
        return hash5([self.pos_rep, self.neg_rep, self.graffiti, self.sign_up])

    @property
    def balance(self) -> int:
        """Spendable reputation; never negative."""
        return max(self.pos_rep - self.neg_rep, 0)

    def to_json(self) -> dict[str, str]:
        return {
            "pos_rep": str(self.pos_rep),
            "neg_rep": str(self.neg_rep),
            "graffiti": str(self.graffiti),
            "sign_up": str(self.sign_up),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Reputation":
        return cls(
            pos_rep=int(data["pos_rep"]),
            neg_rep=int(data["neg_rep"]),
            graffiti=int(data["graffiti"]),
            sign_up=int(data["sign_up"]),
        )


def default_user_state_leaf() -> int:
    return Reputation.default().hash()
