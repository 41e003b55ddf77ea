"""
Options for reputation proofs.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ReputationProofOptions:
    """
    Every recognised option of ``UserState.gen_prove_reputation_proof``.

    Attributes:
        min_rep: Minimum pos_rep - neg_rep the proof asserts
        prove_graffiti: Non-zero to also prove the graffiti pre-image
        graffiti_pre_image: Value whose hash must equal the stored graffiti
        nonce_list: Reputation nonces to spend; padded with -1 up to the
            reputation budget. None spends nothing.
    """

    min_rep: int = 0
    prove_graffiti: int = 0
    graffiti_pre_image: int = 0
    nonce_list: list[int] | None = None
