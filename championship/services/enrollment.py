"""Entry fee collection and agent admission."""

import logging

from championship.arithmetic import checked_add
from championship.errors import (
    AlreadyExistsError,
    InvalidConfigError,
    PaymentMismatchError,
    StateConflictError,
)
from championship.events import AgentEnrolled
from championship.models import Agent, Challenge, EnrollmentProof, Phase
from championship.services.base import EscrowService

logger = logging.getLogger(__name__)


class EnrollmentLedger(EscrowService):
    def enroll(
        self,
        challenge_id: str,
        agent_id: str,
        caller: str,
        payment: int,
    ) -> tuple[Challenge, AgentEnrolled]:
        """Admit one agent per account at exactly the entry fee.

        The EnrollmentProof insert is the duplicate guard; a second enrollment
        by the same account fails with AlreadyExistsError.
        """
        if not agent_id:
            raise InvalidConfigError("agent_id cannot be empty", challenge_id)

        challenge = self.load_challenge(challenge_id)
        self.require_phase(challenge, Phase.ENROLLMENT, "enroll")
        self.require_not_terminal(challenge)

        max_agents = self.settings.limits.max_agents
        if len(challenge.agents) >= max_agents:
            raise StateConflictError(
                f"Challenge {challenge_id} is full ({max_agents} agents)", challenge_id
            )

        if challenge.find_agent(agent_id) is not None:
            raise AlreadyExistsError(
                f"Agent {agent_id} already enrolled in {challenge_id}", challenge_id
            )

        if payment != challenge.entry_fee:
            raise PaymentMismatchError(
                f"Payment {payment} does not match entry fee {challenge.entry_fee}",
                challenge_id,
            )

        if self.store.get_enrollment(challenge_id, caller) is not None:
            raise AlreadyExistsError(
                f"{caller} already enrolled in {challenge_id}", challenge_id
            )

        new_pool = checked_add(challenge.total_entry_pool, challenge.entry_fee)

        index = len(challenge.agents)
        challenge.agents.append(Agent(agent_id=agent_id, owner=caller))
        challenge.total_entry_pool = new_pool
        self.store.update_challenge(challenge)
        self.store.insert_enrollment(
            EnrollmentProof(challenge_id=challenge_id, account=caller, agent_id=agent_id)
        )

        self.custody.credit(challenge_id, caller, payment)

        logger.info(
            f"Enrolled agent {agent_id} (#{index}) in {challenge_id} owner={caller} "
            f"entry_pool={new_pool}"
        )
        event = AgentEnrolled(
            challenge_id=challenge_id, agent_id=agent_id, owner=caller, index=index
        )
        return challenge, event
