"""
Attestation
===========

A single reputation update issued by an attester to an epoch key.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from repstate.crypto.hashing import hash5


class Attestation(BaseModel):
    """Immutable attestation payload as logged by the ledger."""

    model_config = ConfigDict(frozen=True)

    attester_id: int = Field(..., gt=0)
    pos_rep: int = Field(default=0, ge=0)
    neg_rep: int = Field(default=0, ge=0)
    graffiti: int = Field(default=0, ge=0)
    sign_up: int = Field(default=0, ge=0, le=1)
    overwrite_graffiti: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_overwrite(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("overwrite_graffiti") is None:
            data = {**data, "overwrite_graffiti": int(data.get("graffiti", 0) or 0) != 0}
        return data

    def hash(self) -> int:
        return hash5([self.attester_id, self.pos_rep, self.neg_rep, self.graffiti, self.sign_up])

    def to_json(self) -> dict[str, Any]:
        return {
            "attester_id": str(self.attester_id),
            "pos_rep": str(self.pos_rep),
            "neg_rep": str(self.neg_rep),
            "graffiti": str(self.graffiti),
            "sign_up": str(self.sign_up),
            "overwrite_graffiti": bool(self.overwrite_graffiti),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Attestation":
        return cls(
            attester_id=int(data["attester_id"]),
            pos_rep=int(data["pos_rep"]),
            neg_rep=int(data["neg_rep"]),
            graffiti=int(data["graffiti"]),
            sign_up=int(data["sign_up"]),
            overwrite_graffiti=data.get("overwrite_graffiti"),
        )
