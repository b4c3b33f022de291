"""One vote per account during judging."""

import logging

from championship.arithmetic import checked_add
from championship.errors import (
    AlreadyExistsError,
    InvalidConfigError,
    StateConflictError,
    UnauthorizedError,
)
from championship.events import VoteCast
from championship.models import Challenge, Phase, VoteProof
from championship.services.base import EscrowService

logger = logging.getLogger(__name__)


class OutcomeTally(EscrowService):
    def vote(self, challenge_id: str, agent_id: str, caller: str) -> tuple[Challenge, VoteCast]:
        challenge = self.load_challenge(challenge_id)
        self.require_not_terminal(challenge)
        self.require_phase(challenge, Phase.JUDGING, "vote")

        quorum = self.settings.limits.min_agents
        if challenge.active_agent_count < quorum:
            raise StateConflictError(
                f"Cannot vote in {challenge_id}: {challenge.active_agent_count} "
                f"active agents below quorum {quorum}",
                challenge_id,
            )

        index, agent = self.require_active_agent(challenge, agent_id)

        if self.store.get_vote(challenge_id, caller) is not None:
            raise AlreadyExistsError(f"{caller} already voted in {challenge_id}", challenge_id)

        self._check_voter_balance(challenge_id, caller)

        new_count = checked_add(agent.vote_count, 1)

        self.store.insert_vote(
            VoteProof(challenge_id=challenge_id, account=caller, agent_id=agent_id)
        )
        challenge.agents[index].vote_count = new_count
        self.store.update_challenge(challenge)

        logger.info(f"Vote for {agent_id} in {challenge_id} by {caller} (now {new_count})")
        return challenge, VoteCast(challenge_id=challenge_id, agent_id=agent_id, voter=caller)

    def _check_voter_balance(self, challenge_id: str, caller: str) -> None:
        minimum = self.settings.voting.min_vote_balance
        if minimum <= 0:
            return
        oracle = self.ctx.balance_oracle
        if oracle is None:
            raise InvalidConfigError(
                "voting.min_vote_balance is set but no balance oracle is configured",
                challenge_id,
            )
        balance = oracle.balance_of(caller)
        if balance < minimum:
            raise UnauthorizedError(
                f"{caller} balance {balance} below voting minimum {minimum}", challenge_id
            )
