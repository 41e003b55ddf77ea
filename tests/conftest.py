"""
Test Configuration
==================

Pytest fixtures for repstate tests.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["LEDGER_MODE"] = "mock"
os.environ["PROVER_MODE"] = "mock"
os.environ["DATASTORE_BACKEND"] = "memory"

# Small trees keep the tests fast
os.environ["PROTOCOL_GLOBAL_STATE_TREE_DEPTH"] = "4"
os.environ["PROTOCOL_USER_STATE_TREE_DEPTH"] = "4"
os.environ["PROTOCOL_EPOCH_TREE_DEPTH"] = "16"
os.environ["PROTOCOL_NUM_EPOCH_KEY_NONCE_PER_EPOCH"] = "2"
os.environ["PROTOCOL_MAX_REPUTATION_BUDGET"] = "3"
os.environ["PROTOCOL_NUM_ATTESTATIONS_PER_PROOF"] = "2"
os.environ["PROTOCOL_EPOCH_LENGTH"] = "30"

os.environ["SYNC_POLL_INTERVAL_SECONDS"] = "0.01"
os.environ["SYNC_WAIT_TIMEOUT_SECONDS"] = "1"
os.environ["SYNC_WAIT_MAX_ATTEMPTS"] = "5"
os.environ["SYNC_BACKOFF_MIN_SECONDS"] = "0.01"
os.environ["SYNC_BACKOFF_MAX_SECONDS"] = "0.02"

from repstate.config import ProtocolSettings, settings  # noqa: E402
from repstate.crypto.identity import ZkIdentity  # noqa: E402
from repstate.database.store import MemoryDatastore  # noqa: E402
from repstate.ledger.mock import MockLedgerClient  # noqa: E402
from repstate.sync.synchronizer import Synchronizer  # noqa: E402
from repstate.user.user_state import UserState  # noqa: E402
from repstate.zk.mock import MockProver  # noqa: E402
from tests.helpers import START_TIMESTAMP  # noqa: E402


@pytest.fixture
def protocol() -> ProtocolSettings:
    """Protocol parameters configured for tests."""
    return settings.protocol


@pytest.fixture
def store() -> MemoryDatastore:
    """Fresh in-memory datastore."""
    return MemoryDatastore()


@pytest.fixture
def prover() -> MockProver:
    """Mock prover evaluating circuits directly."""
    return MockProver()


@pytest.fixture
def ledger(prover: MockProver) -> MockLedgerClient:
    """Mock ledger that verifies submitted proofs with the mock prover."""
    client = MockLedgerClient(start_timestamp=START_TIMESTAMP, prover=prover)
    client.clear_all()
    return client


@pytest_asyncio.fixture
async def sync(
    store: MemoryDatastore,
    ledger: MockLedgerClient,
    prover: MockProver,
) -> AsyncGenerator[Synchronizer, None]:
    """Synchronizer over the mock ledger, stopped after the test."""
    synchronizer = Synchronizer(store, ledger, prover)
    yield synchronizer
    await synchronizer.stop()


@pytest.fixture
def identity() -> ZkIdentity:
    """Fixed identity so epoch keys are reproducible."""
    return ZkIdentity(
        identity_nullifier=0x1D2C3B4A59687766554433221100FFEEDDCCBBAA99887766554433221100,
        trapdoor=0x0A1B2C3D4E5F60718293A4B5C6D7E8F90112233445566778899AABBCCDDEE,
    )


@pytest.fixture
def other_identity() -> ZkIdentity:
    return ZkIdentity(
        identity_nullifier=0x2E3D4C5B6A79887766554433221100FFEEDDCCBBAA998877665544332211,
        trapdoor=0x1B2C3D4E5F60718293A4B5C6D7E8F90112233445566778899AABBCCDDEEFF,
    )


@pytest_asyncio.fixture
async def user_state(
    sync: Synchronizer,
    prover: MockProver,
    identity: ZkIdentity,
) -> AsyncGenerator[UserState, None]:
    """UserState following the synchronizer's events."""
    user = UserState(sync, prover, identity)
    await user.start()
    yield user
    await user.stop()

