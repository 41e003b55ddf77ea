"""
ZK-SNARK Data Models
====================

Pydantic models for circuit identifiers, Groth16 proofs and prover output.

Version: 0.1.0
"""

import json
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class Circuit(str, Enum):
    """Circuits known to the prover and the ledger verifier."""

    VERIFY_EPOCH_KEY = "verifyEpochKey"
    PROVE_REPUTATION = "proveReputation"
    PROVE_USER_SIGN_UP = "proveUserSignUp"
    START_TRANSITION = "startTransition"
    PROCESS_ATTESTATIONS = "processAttestations"
    USER_STATE_TRANSITION = "userStateTransition"


class ZKProof(BaseModel):
    """
    A zero-knowledge proof.

    Compatible with snarkjs Groth16 proof format.
    """

    # Proof points (G1 and G2 elements)
    pi_a: list[str] = Field(..., description="Proof point A (G1)")
    pi_b: list[list[str]] = Field(..., description="Proof point B (G2)")
    pi_c: list[str] = Field(..., description="Proof point C (G1)")

    protocol: str = Field(default="groth16")
    curve: str = Field(default="bn128")

    def to_calldata(self) -> list[int]:
        """Convert to Solidity calldata format (8 uint256)."""
        return [
            int(self.pi_a[0]),
            int(self.pi_a[1]),
            int(self.pi_b[0][0]),
            int(self.pi_b[0][1]),
            int(self.pi_b[1][0]),
            int(self.pi_b[1][1]),
            int(self.pi_c[0]),
            int(self.pi_c[1]),
        ]

    def to_hex(self) -> str:
        """Convert to hex string for storage."""
        return json.dumps(self.model_dump()).encode().hex()

    @classmethod
    def from_hex(cls, hex_str: str) -> "ZKProof":
        data = json.loads(bytes.fromhex(hex_str).decode())
        return cls(**data)


class PublicSignals(BaseModel):
    """Public inputs and outputs of a proof, as decimal strings."""

    signals: list[str] = Field(..., description="Public signals as decimal strings")

    @classmethod
    def from_ints(cls, values: list[int]) -> "PublicSignals":
        return cls(signals=[str(v) for v in values])

    def to_int_list(self) -> list[int]:
        return [int(s) for s in self.signals]


class ProofResult(BaseModel):
    """Output of a single prove call."""

    circuit: Circuit
    proof: ZKProof
    public_signals: PublicSignals
    proving_time_ms: int = Field(default=0, ge=0)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def signals(self) -> list[int]:
        return self.public_signals.to_int_list()
