"""
Decoded Proofs
==============

Typed views over prover output. Each model decodes the fixed-position public
signals of one circuit.

Version: 0.1.0
"""

from pydantic import BaseModel, Field

from repstate.zk.models import Circuit, ProofResult, ZKProof


class DecodedProof(BaseModel):
    """Proof plus its raw public signals."""

    circuit: Circuit
    proof: ZKProof
    public_signals: list[int] = Field(default_factory=list)


class EpochKeyProof(DecodedProof):
    global_state_tree: int
    epoch: int
    epoch_key: int

    @classmethod
    def from_result(cls, result: ProofResult) -> "EpochKeyProof":
        s = result.signals
        return cls(
            circuit=result.circuit,
            proof=result.proof,
            public_signals=s,
            global_state_tree=s[0],
            epoch=s[1],
            epoch_key=s[2],
        )


class ReputationProof(DecodedProof):
    reputation_nullifiers: list[int]
    epoch: int
    epoch_key: int
    global_state_tree: int
    attester_id: int
    prove_reputation_amount: int
    min_rep: int
    prove_graffiti: int
    graffiti_pre_image: int

    @classmethod
    def from_result(cls, result: ProofResult, max_reputation_budget: int) -> "ReputationProof":
        s = result.signals
        b = max_reputation_budget
        return cls(
            circuit=result.circuit,
            proof=result.proof,
            public_signals=s,
            reputation_nullifiers=s[:b],
            epoch=s[b],
            epoch_key=s[b + 1],
            global_state_tree=s[b + 2],
            attester_id=s[b + 3],
            prove_reputation_amount=s[b + 4],
            min_rep=s[b + 5],
            prove_graffiti=s[b + 6],
            graffiti_pre_image=s[b + 7],
        )


class UserSignUpProof(DecodedProof):
    epoch: int
    epoch_key: int
    global_state_tree: int
    attester_id: int
    user_has_signed_up: int

    @classmethod
    def from_result(cls, result: ProofResult) -> "UserSignUpProof":
        s = result.signals
        return cls(
            circuit=result.circuit,
            proof=result.proof,
            public_signals=s,
            epoch=s[0],
            epoch_key=s[1],
            global_state_tree=s[2],
            attester_id=s[3],
            user_has_signed_up=s[4],
        )


class StartTransitionProof(DecodedProof):
    blinded_user_state: int
    blinded_hash_chain: int
    global_state_tree: int

    @classmethod
    def from_result(cls, result: ProofResult) -> "StartTransitionProof":
        s = result.signals
        return cls(
            circuit=result.circuit,
            proof=result.proof,
            public_signals=s,
            blinded_user_state=s[0],
            blinded_hash_chain=s[1],
            global_state_tree=s[2],
        )


class ProcessAttestationsProof(DecodedProof):
    output_blinded_user_state: int
    output_blinded_hash_chain: int
    input_blinded_user_state: int

    @classmethod
    def from_result(cls, result: ProofResult) -> "ProcessAttestationsProof":
        s = result.signals
        return cls(
            circuit=result.circuit,
            proof=result.proof,
            public_signals=s,
            output_blinded_user_state=s[0],
            output_blinded_hash_chain=s[1],
            input_blinded_user_state=s[2],
        )


class FinalTransitionProof(DecodedProof):
    new_global_state_tree_leaf: int
    epoch_key_nullifiers: list[int]
    transitioned_from_epoch: int
    blinded_user_states: list[int]
    from_global_state_tree: int
    blinded_hash_chains: list[int]
    from_epoch_tree: int

    @classmethod
    def from_result(
        cls,
        result: ProofResult,
        num_epoch_key_nonce_per_epoch: int,
    ) -> "FinalTransitionProof":
        s = result.signals
        n = num_epoch_key_nonce_per_epoch
        return cls(
            circuit=result.circuit,
            proof=result.proof,
            public_signals=s,
            new_global_state_tree_leaf=s[0],
            epoch_key_nullifiers=s[1 : 1 + n],
            transitioned_from_epoch=s[1 + n],
            blinded_user_states=s[2 + n : 4 + n],
            from_global_state_tree=s[4 + n],
            blinded_hash_chains=s[5 + n : 5 + 2 * n],
            from_epoch_tree=s[5 + 2 * n],
        )

    @staticmethod
    def epoch_key_nullifiers_of(public_signals: list[int], num_epoch_key_nonce_per_epoch: int) -> list[int]:
        return public_signals[1 : 1 + num_epoch_key_nonce_per_epoch]

    @staticmethod
    def from_epoch_of(public_signals: list[int], num_epoch_key_nonce_per_epoch: int) -> int:
        return public_signals[1 + num_epoch_key_nonce_per_epoch]


class UserStateTransitionProofs(BaseModel):
    """The start, process and final proofs of one user state transition."""

    start: StartTransitionProof
    process: list[ProcessAttestationsProof]
    final: FinalTransitionProof

    def verify_chain(self) -> bool:
        """
        Check the blinded-state chain a verifier checks independently.

        The first batch consumes the start output, every batch consumes the
        previous batch's output, the final proof binds the start state and the
        last batch's output, and every final blinded hash chain is produced by
        some batch.
        """
        if not self.process:
            return False

        expected = self.start.blinded_user_state
        for batch in self.process:
            if batch.input_blinded_user_state != expected:
                return False
            expected = batch.output_blinded_user_state

        if self.final.blinded_user_states != [self.start.blinded_user_state, expected]:
            return False
        if self.final.from_global_state_tree != self.start.global_state_tree:
            return False

        produced = {batch.output_blinded_hash_chain for batch in self.process}
        return all(chain in produced for chain in self.final.blinded_hash_chains)


def proof_epoch_key(
    circuit: Circuit,
    public_signals: list[int],
    max_reputation_budget: int,
) -> tuple[int, int] | None:
    """(epoch, epoch_key) bound by an epoch-key-carrying proof, else None."""
    if circuit == Circuit.VERIFY_EPOCH_KEY:
        return public_signals[1], public_signals[2]
    if circuit == Circuit.PROVE_REPUTATION:
        return public_signals[max_reputation_budget], public_signals[max_reputation_budget + 1]
    if circuit == Circuit.PROVE_USER_SIGN_UP:
        return public_signals[0], public_signals[1]
    return None


def proof_global_state_tree(
    circuit: Circuit,
    public_signals: list[int],
    max_reputation_budget: int,
    num_epoch_key_nonce_per_epoch: int,
) -> tuple[int, int] | None:
    """(epoch, GST root) a proof claims membership in, else None."""
    if circuit == Circuit.VERIFY_EPOCH_KEY:
        return public_signals[1], public_signals[0]
    if circuit == Circuit.PROVE_REPUTATION:
        return public_signals[max_reputation_budget], public_signals[max_reputation_budget + 2]
    if circuit == Circuit.PROVE_USER_SIGN_UP:
        return public_signals[0], public_signals[2]
    if circuit == Circuit.USER_STATE_TRANSITION:
        n = num_epoch_key_nonce_per_epoch
        return public_signals[1 + n], public_signals[4 + n]
    return None
