"""Challenge creation and the two terminal transitions."""

import logging
import re

from championship.arithmetic import MAX_AMOUNT
from championship.errors import (
    AlreadyExistsError,
    InsufficientFundsError,
    InvalidConfigError,
    StateConflictError,
    WrongPhaseError,
)
from championship.events import ChallengeCancelled, ChallengeCreated, ChallengeFinalized
from championship.models import Agent, Challenge, ChallengeMetadata
from championship.services.base import EscrowService
from championship.services.settlement import SettlementEngine

logger = logging.getLogger(__name__)

_CHALLENGE_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")


def select_winner(agents: list[Agent]) -> int | None:
    """Index of the non-withdrawn agent with the most votes.

    Strict greater-than over enrollment order: the first agent to reach the
    maximum keeps it against later agents with an equal count.
    """
    winner: int | None = None
    max_votes = 0
    for index, agent in enumerate(agents):
        if agent.withdrawn:
            continue
        if winner is None or agent.vote_count > max_votes:
            winner = index
            max_votes = agent.vote_count
    return winner


class ChallengeRegistry(EscrowService):
    """Owns create, cancel, and finalize."""

    def create(
        self,
        challenge_id: str,
        entry_fee: int,
        enroll_end: int,
        compete_end: int,
        judge_end: int,
        caller: str,
        metadata: ChallengeMetadata | None = None,
    ) -> tuple[Challenge, ChallengeCreated]:
        if not _CHALLENGE_ID_RE.match(challenge_id):
            raise InvalidConfigError(f"Invalid challenge id: {challenge_id!r}")

        if self.store.get_challenge(challenge_id) is not None:
            raise AlreadyExistsError(f"Challenge {challenge_id} already exists", challenge_id)

        limits = self.settings.limits
        if entry_fee < limits.min_entry_fee:
            raise InvalidConfigError(
                f"Entry fee {entry_fee} below minimum {limits.min_entry_fee}",
                challenge_id,
            )
        if entry_fee > MAX_AMOUNT:
            raise InvalidConfigError(
                f"Entry fee {entry_fee} exceeds the largest representable amount",
                challenge_id,
            )

        now = self.now()
        if enroll_end < now:
            raise InvalidConfigError("enroll_end is in the past", challenge_id)
        if compete_end <= enroll_end:
            raise InvalidConfigError("compete_end must be after enroll_end", challenge_id)
        if judge_end <= compete_end:
            raise InvalidConfigError("judge_end must be after compete_end", challenge_id)

        challenge = Challenge(
            id=challenge_id,
            creator=caller,
            platform=self.settings.platform_account,
            entry_fee=entry_fee,
            enroll_end=enroll_end,
            compete_end=compete_end,
            judge_end=judge_end,
            metadata=metadata,
        )
        self.store.insert_challenge(challenge)

        logger.info(
            f"Created challenge {challenge_id} by {caller} fee={entry_fee} "
            f"enroll_end={enroll_end} compete_end={compete_end} judge_end={judge_end}"
        )
        event = ChallengeCreated(
            challenge_id=challenge_id,
            creator=caller,
            entry_fee=entry_fee,
            enroll_end=enroll_end,
            compete_end=compete_end,
            judge_end=judge_end,
        )
        return challenge, event

    def cancel(self, challenge_id: str) -> tuple[Challenge, ChallengeCancelled]:
        """Abandon a challenge that never reached quorum. Anyone may call."""
        challenge = self.load_challenge(challenge_id)
        self.require_not_terminal(challenge)

        if self.now() <= challenge.enroll_end:
            raise WrongPhaseError(
                f"Enrollment for {challenge_id} has not ended", challenge_id
            )

        quorum = self.settings.limits.min_agents
        if challenge.active_agent_count >= quorum:
            raise StateConflictError(
                f"Cannot cancel {challenge_id}: {challenge.active_agent_count} "
                f"active agents meets quorum {quorum}",
                challenge_id,
            )

        challenge.cancelled = True
        self.store.update_challenge(challenge)

        logger.info(f"Cancelled challenge {challenge_id}")
        return challenge, ChallengeCancelled(challenge_id=challenge_id)

    def finalize(self, challenge_id: str) -> tuple[Challenge, ChallengeFinalized]:
        """Lock in the winner and release the platform's cut. Anyone may call."""
        challenge = self.load_challenge(challenge_id)
        self.require_not_terminal(challenge)

        if self.now() <= challenge.judge_end:
            raise WrongPhaseError(f"Judging for {challenge_id} has not ended", challenge_id)

        quorum = self.settings.limits.min_agents
        if challenge.active_agent_count < quorum:
            raise StateConflictError(
                f"Cannot finalize {challenge_id}: {challenge.active_agent_count} "
                f"active agents below quorum {quorum}",
                challenge_id,
            )

        winner_index = select_winner(challenge.agents)
        if winner_index is None:
            # Unreachable while quorum >= 1
            raise StateConflictError(f"No eligible agent in {challenge_id}", challenge_id)

        platform_fee = SettlementEngine(self.settings.fees).platform_fee(challenge)

        challenge.winner_index = winner_index
        challenge.finalized = True
        self.store.update_challenge(challenge)

        if platform_fee > 0:
            vault = self.custody.vault_balance(challenge_id)
            if vault < platform_fee:
                logger.error(
                    f"Invariant breach finalizing {challenge_id}: vault={vault} "
                    f"platform_fee={platform_fee}"
                )
                raise InsufficientFundsError(
                    f"Vault cannot cover platform fee {platform_fee}", challenge_id
                )
            self.pay_out(challenge_id, challenge.platform, platform_fee, "platform_fee")

        winner = challenge.agents[winner_index]
        logger.info(
            f"Finalized challenge {challenge_id} winner={winner.agent_id} "
            f"votes={winner.vote_count} platform_fee={platform_fee}"
        )
        event = ChallengeFinalized(
            challenge_id=challenge_id,
            winner_agent_id=winner.agent_id,
            winner_owner=winner.owner,
            platform_fee=platform_fee,
        )
        return challenge, event
