"""Shared plumbing for escrow components."""

import logging
from dataclasses import dataclass

from championship.config import Settings
from championship.errors import NotFoundError, StateConflictError, WrongPhaseError
from championship.models import Agent, Challenge, PayoutRecord, PayoutType, Phase
from championship.phase import challenge_phase
from championship.ports import BalanceOracle, Clock, Custody
from championship.storage.base import ChallengeStore

logger = logging.getLogger(__name__)


@dataclass
class EscrowContext:
    """Collaborators every component works against."""

    store: ChallengeStore
    custody: Custody
    clock: Clock
    settings: Settings
    balance_oracle: BalanceOracle | None = None


class EscrowService:
    """Base for components. Methods assume an open store transaction."""

    def __init__(self, ctx: EscrowContext):
        self.ctx = ctx

    @property
    def store(self) -> ChallengeStore:
        return self.ctx.store

    @property
    def custody(self) -> Custody:
        return self.ctx.custody

    @property
    def settings(self) -> Settings:
        return self.ctx.settings

    def now(self) -> int:
        return self.ctx.clock.now()

    def load_challenge(self, challenge_id: str) -> Challenge:
        challenge = self.store.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError(f"Challenge {challenge_id} not found", challenge_id)
        return challenge

    def require_not_terminal(self, challenge: Challenge) -> None:
        if challenge.finalized:
            raise StateConflictError(f"Challenge {challenge.id} is finalized", challenge.id)
        if challenge.cancelled:
            raise StateConflictError(f"Challenge {challenge.id} is cancelled", challenge.id)

    def require_phase(self, challenge: Challenge, expected: Phase, action: str) -> None:
        current = challenge_phase(challenge, self.now())
        if current is not expected:
            raise WrongPhaseError(
                f"Cannot {action} during {current.value}; requires {expected.value}",
                challenge.id,
            )

    def find_agent(self, challenge: Challenge, agent_id: str) -> tuple[int, Agent]:
        index = challenge.find_agent(agent_id)
        if index is None:
            raise NotFoundError(
                f"Agent {agent_id} not enrolled in {challenge.id}", challenge.id
            )
        return index, challenge.agents[index]

    def require_active_agent(self, challenge: Challenge, agent_id: str) -> tuple[int, Agent]:
        index, agent = self.find_agent(challenge, agent_id)
        if agent.withdrawn:
            raise StateConflictError(
                f"Agent {agent_id} has withdrawn from {challenge.id}", challenge.id
            )
        return index, agent

    def pay_out(
        self,
        challenge_id: str,
        recipient: str,
        amount: int,
        payout_type: PayoutType,
    ) -> None:
        """Record a payout and move funds out of the vault."""
        if amount <= 0:
            return
        self.store.append_payout(
            PayoutRecord(
                challenge_id=challenge_id,
                recipient=recipient,
                amount=amount,
                payout_type=payout_type,
            )
        )
        self.custody.debit(challenge_id, recipient, amount)
