"""
ZK-SNARK Module
===============

Circuit identifiers, Groth16 proof models, provers and decoded proofs.

Usage:
    from repstate.zk import Circuit, get_prover

    prover = get_prover()
    result = await prover.prove(Circuit.VERIFY_EPOCH_KEY, inputs)
    valid = await prover.verify(Circuit.VERIFY_EPOCH_KEY, result.signals, result.proof)
"""

from repstate.zk.mock import MockProver
from repstate.zk.models import Circuit, ProofResult, PublicSignals, ZKProof
from repstate.zk.proofs import (
    EpochKeyProof,
    FinalTransitionProof,
    ProcessAttestationsProof,
    ReputationProof,
    StartTransitionProof,
    UserSignUpProof,
    UserStateTransitionProofs,
    proof_epoch_key,
    proof_global_state_tree,
)
from repstate.zk.prover import Prover, SnarkjsProver, get_prover, set_prover


__all__ = [
    "Circuit",
    "ZKProof",
    "PublicSignals",
    "ProofResult",
    "Prover",
    "SnarkjsProver",
    "MockProver",
    "get_prover",
    "set_prover",
    "EpochKeyProof",
    "ReputationProof",
    "UserSignUpProof",
    "StartTransitionProof",
    "ProcessAttestationsProof",
    "FinalTransitionProof",
    "UserStateTransitionProofs",
    "proof_epoch_key",
    "proof_global_state_tree",
]
