"""
Ledger Client Interface
=======================

Abstract base class and models for the ledger collaborator: the event source
the synchronizer replays and the acceptor of submitted proofs.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from repstate.config import LedgerMode, settings
from repstate.ledger.events import LedgerEvent
from repstate.logging import get_logger
from repstate.zk.models import Circuit, ZKProof

logger = get_logger(__name__)


class Block(BaseModel):
    """Ledger head."""

    number: int = Field(..., ge=0)
    timestamp: int = Field(..., ge=0, description="Unix seconds")


class Deployment(BaseModel):
    """Parameters fixed when the ledger contract was deployed."""

    start_timestamp: int = Field(..., ge=0)
    epoch_length: int = Field(..., ge=1, description="Epoch length in seconds")
    contract_address: str = ""


class TransactionReceipt(BaseModel):
    """Result of a submitted transaction."""

    tx_hash: str
    block_number: int
    proof_index: int | None = None
    events: list[str] = Field(default_factory=list, description="Ids of emitted events")


class LedgerClient(ABC):
    """
    Abstract base class for ledger clients.

    Implements the Strategy pattern for different ledger modes.
    """

    @property
    @abstractmethod
    def mode(self) -> LedgerMode:
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        ...

    @abstractmethod
    async def get_deployment(self) -> Deployment:
        ...

    @abstractmethod
    async def get_latest_block(self) -> Block:
        ...

    async def get_block_number(self) -> int:
        return (await self.get_latest_block()).number

    @abstractmethod
    async def get_events(self, from_block: int, to_block: int) -> list[LedgerEvent]:
        """
        Get events emitted in a block range.

        Args:
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Events ordered by (block_number, log_index)
        """
        ...

    @abstractmethod
    async def submit_proof(
        self,
        circuit: Circuit,
        public_signals: list[int],
        proof: ZKProof,
    ) -> TransactionReceipt:
        """
        Submit a proof to the ledger.

        Raises:
            LedgerCallFailedError: If the ledger rejects the transaction
        """
        ...


# Global client instance
_client: LedgerClient | None = None


def get_ledger_client() -> LedgerClient:
    """
    Get the configured ledger client instance.

    Returns:
        LedgerClient instance based on settings
    """
    global _client

    if _client is None:
        mode = settings.ledger.mode

        if mode == LedgerMode.MOCK:
            from repstate.ledger.mock import MockLedgerClient

            _client = MockLedgerClient()
        elif mode == LedgerMode.RPC:
            raise NotImplementedError(
                f"Ledger mode '{mode.value}' not yet implemented. "
                "Use LEDGER_MODE=mock for development."
            )
        else:
            raise ValueError(f"Unknown ledger mode: {mode}")

        logger.info(
            "ledger_client_initialized",
            mode=mode.value,
        )

    return _client


def set_ledger_client(client: LedgerClient) -> None:
    """
    Set a custom ledger client.

    Args:
        client: LedgerClient instance
    """
    global _client
    _client = client
    logger.info(
        "ledger_client_set",
        mode=client.mode.value,
    )


def reset_ledger_client() -> None:
    """Reset the client to be re-initialized."""
    global _client
    _client = None
