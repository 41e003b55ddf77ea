"""
Domain models: reputation records and attestations.
"""

from repstate.models.attestation import Attestation
from repstate.models.reputation import Reputation, default_user_state_leaf


__all__ = ["Attestation", "Reputation", "default_user_state_leaf"]
