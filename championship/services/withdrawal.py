"""Early exit for an agent during the competition window."""

import logging

from championship.arithmetic import checked_add, checked_sub, percent_of
from championship.errors import InsufficientFundsError, UnauthorizedError
from championship.events import AgentWithdrawn
from championship.models import Challenge, Phase
from championship.services.base import EscrowService

logger = logging.getLogger(__name__)


class WithdrawalPath(EscrowService):
    def withdraw(
        self, challenge_id: str, agent_id: str, caller: str
    ) -> tuple[Challenge, AgentWithdrawn]:
        """Retire the caller's agent and refund most of its entry fee.

        The full entry fee leaves the entry pool. The refund goes to the owner
        and the remainder is paid to the platform at once.
        """
        challenge = self.load_challenge(challenge_id)
        self.require_not_terminal(challenge)
        self.require_phase(challenge, Phase.COMPETITION, "withdraw")
        index, agent = self.require_active_agent(challenge, agent_id)

        if agent.owner != caller:
            raise UnauthorizedError(
                f"{caller} does not own agent {agent_id} in {challenge_id}", challenge_id
            )

        withdrawal = self.settings.withdrawal
        refund = percent_of(challenge.entry_fee, withdrawal.refund_pct)
        fee = percent_of(challenge.entry_fee, withdrawal.fee_pct)
        new_pool = checked_sub(challenge.total_entry_pool, challenge.entry_fee)

        vault = self.custody.vault_balance(challenge_id)
        required = checked_add(refund, fee)
        if vault < required:
            logger.error(
                f"Invariant breach withdrawing {agent_id} from {challenge_id}: "
                f"vault={vault} required={required}"
            )
            raise InsufficientFundsError(
                f"Vault balance {vault} below withdrawal {required}", challenge_id
            )

        challenge.agents[index].withdrawn = True
        challenge.total_entry_pool = new_pool
        self.store.update_challenge(challenge)

        self.pay_out(challenge_id, caller, refund, "withdrawal_refund")
        self.pay_out(challenge_id, challenge.platform, fee, "withdrawal_fee")

        logger.info(
            f"Withdrew agent {agent_id} from {challenge_id}: refund={refund} to {caller}, "
            f"fee={fee} to {challenge.platform}, entry_pool={new_pool}"
        )
        event = AgentWithdrawn(
            challenge_id=challenge_id, agent_id=agent_id, owner=caller, refund=refund, fee=fee
        )
        return challenge, event
