"""
Ledger Events
=============

Typed log records emitted by the ledger. Events are totally ordered by
(block_number, log_index), and that pair doubles as the stable event id used
for idempotent replay.

Version: 0.1.0
"""

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from repstate.models.attestation import Attestation
from repstate.zk.models import Circuit, ZKProof


class EventKind(str, Enum):
    USER_SIGNED_UP = "UserSignedUp"
    ATTESTATION_SUBMITTED = "AttestationSubmitted"
    EPOCH_ENDED = "EpochEnded"
    USER_STATE_TRANSITIONED = "UserStateTransitioned"
    PROOF_INDEXED = "ProofIndexed"


class LedgerEvent(BaseModel):
    """Common envelope for every ledger log record."""

    block_number: int = Field(..., ge=0)
    log_index: int = Field(..., ge=0)
    transaction_hash: str | None = None

    @property
    def id(self) -> str:
        return f"{self.block_number}:{self.log_index}"

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


class UserSignedUp(LedgerEvent):
    kind: Literal[EventKind.USER_SIGNED_UP] = EventKind.USER_SIGNED_UP
    epoch: int = Field(..., ge=1)
    identity_commitment: int
    attester_id: int = 0
    airdrop: int = 0


class AttestationSubmitted(LedgerEvent):
    kind: Literal[EventKind.ATTESTATION_SUBMITTED] = EventKind.ATTESTATION_SUBMITTED
    epoch: int = Field(..., ge=1)
    epoch_key: int
    attestation: Attestation
    proof_index: int | None = None


class EpochEnded(LedgerEvent):
    kind: Literal[EventKind.EPOCH_ENDED] = EventKind.EPOCH_ENDED
    epoch: int = Field(..., ge=1)
    epoch_tree_root: int


class ProofIndexed(LedgerEvent):
    kind: Literal[EventKind.PROOF_INDEXED] = EventKind.PROOF_INDEXED
    proof_index: int
    circuit: Circuit
    epoch: int
    public_signals: list[int]
    proof: ZKProof


class UserStateTransitioned(LedgerEvent):
    kind: Literal[EventKind.USER_STATE_TRANSITIONED] = EventKind.USER_STATE_TRANSITIONED
    epoch: int = Field(..., ge=1)
    gst_leaf: int
    proof_index: int


AnyLedgerEvent = Annotated[
    UserSignedUp | AttestationSubmitted | EpochEnded | ProofIndexed | UserStateTransitioned,
    Field(discriminator="kind"),
]


class EventEnvelope(BaseModel):
    """Wrapper used to parse a raw event dict into its typed model."""

    event: AnyLedgerEvent


def parse_event(data: dict) -> LedgerEvent:
    return EventEnvelope(event=data).event
