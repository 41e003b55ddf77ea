"""
User Module
===========

Identity-scoped reputation state and proof assembly.

Usage:
    from repstate.user import UserState

    user = UserState(sync, prover, identity)
    await user.start()
    proofs = await user.gen_user_state_transition_proofs()
"""

from repstate.user.inputs import (
    TransitionPlan,
    blinded_hash_chain,
    blinded_user_state,
    build_epoch_key_inputs,
    build_reputation_inputs,
    build_start_transition_inputs,
    build_transition_plan,
    build_user_sign_up_inputs,
    stringify_big_ints,
)
from repstate.user.options import ReputationProofOptions
from repstate.user.user_state import StagedTransition, UserState


__all__ = [
    "UserState",
    "StagedTransition",
    "ReputationProofOptions",
    "TransitionPlan",
    "build_epoch_key_inputs",
    "build_reputation_inputs",
    "build_user_sign_up_inputs",
    "build_start_transition_inputs",
    "build_transition_plan",
    "stringify_big_ints",
    "blinded_user_state",
    "blinded_hash_chain",
]
