"""
REPSTATE Library
================

Off-chain state synchronization and proof assembly for pseudonymous,
attester-scoped reputation.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - crypto: Field hashing, identities, Merkle trees
    - models: Reputation and attestation records
    - database: Datastore abstraction (memory, MongoDB)
    - ledger: Ledger interface (mock/rpc)
    - zk: Circuit identifiers, provers, decoded proofs
    - sync: Ledger mirror and nullifier tracking
    - user: Identity-scoped user state and proof inputs

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "Repstate Team"

from repstate.config import settings
from repstate.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
