"""Side wagers on agents during the competition window."""

import logging

from championship.arithmetic import checked_add
from championship.errors import PaymentMismatchError, UnauthorizedError
from championship.events import BetPlaced
from championship.models import AccountBetTotal, BetRecord, Challenge, Phase
from championship.services.base import EscrowService

logger = logging.getLogger(__name__)


class WageringMarket(EscrowService):
    def place_bet(
        self,
        challenge_id: str,
        agent_id: str,
        caller: str,
        amount: int,
    ) -> tuple[Challenge, BetPlaced]:
        """Add to the caller's cumulative wager on an active agent.

        Every sum is computed and checked before the first write, so an
        overflow leaves no partial update behind.
        """
        challenge = self.load_challenge(challenge_id)
        self.require_not_terminal(challenge)
        self.require_phase(challenge, Phase.COMPETITION, "bet")
        index, agent = self.require_active_agent(challenge, agent_id)

        if amount <= 0:
            raise PaymentMismatchError(
                f"Bet amount must be positive, got {amount}", challenge_id
            )

        if caller == challenge.creator and not self.settings.betting.allow_creator_bets:
            raise UnauthorizedError(
                f"Creator {caller} may not bet on {challenge_id}", challenge_id
            )

        bet = self.store.get_bet(challenge_id, caller, agent_id) or BetRecord(
            challenge_id=challenge_id, account=caller, agent_id=agent_id
        )
        total = self.store.get_account_bet_total(challenge_id, caller) or AccountBetTotal(
            challenge_id=challenge_id, account=caller
        )

        new_bet = checked_add(bet.amount, amount)
        new_total = checked_add(total.amount, amount)
        new_agent_pool = checked_add(agent.bet_pool, amount)
        new_bet_pool = checked_add(challenge.total_bet_pool, amount)

        bet.amount = new_bet
        total.amount = new_total
        challenge.agents[index].bet_pool = new_agent_pool
        challenge.total_bet_pool = new_bet_pool

        self.store.save_bet(bet)
        self.store.save_account_bet_total(total)
        self.store.update_challenge(challenge)

        self.custody.credit(challenge_id, caller, amount)

        logger.info(
            f"Bet {amount} on {agent_id} in {challenge_id} by {caller} "
            f"agent_pool={new_agent_pool} bet_pool={new_bet_pool}"
        )
        event = BetPlaced(
            challenge_id=challenge_id, agent_id=agent_id, bettor=caller, amount=amount
        )
        return challenge, event
