"""
Shared test flows.
"""

from repstate.ledger.mock import MockLedgerClient
from repstate.sync.synchronizer import Synchronizer
from repstate.user.user_state import UserState
from repstate.zk.models import Circuit
from repstate.zk.proofs import UserStateTransitionProofs

START_TIMESTAMP = 1_700_000_000


async def submit_transition(ledger: MockLedgerClient, proofs: UserStateTransitionProofs) -> None:
    """Submit every proof of a user state transition, final proof last."""
    await ledger.submit_proof(Circuit.START_TRANSITION, proofs.start.public_signals, proofs.start.proof)
    for batch in proofs.process:
        await ledger.submit_proof(Circuit.PROCESS_ATTESTATIONS, batch.public_signals, batch.proof)
    await ledger.submit_proof(Circuit.USER_STATE_TRANSITION, proofs.final.public_signals, proofs.final.proof)


async def sign_up(user: UserState, ledger: MockLedgerClient, sync: Synchronizer, **kwargs: int) -> None:
    await ledger.user_sign_up(user.commitment, **kwargs)
    await sync.wait_for_sync()


async def end_epoch_and_transition(user: UserState, ledger: MockLedgerClient, sync: Synchronizer) -> None:
    """Seal the current epoch, prove the transition out of it and commit it."""
    await ledger.end_epoch()
    await sync.wait_for_sync()
    proofs = await user.gen_user_state_transition_proofs()
    await submit_transition(ledger, proofs)
    await sync.wait_for_sync()
