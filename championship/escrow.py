"""ChampionshipEscrow - the atomic operation surface over all components.

Every mutating call runs inside one store transaction. Components perform all
checks before touching custody, so a rejected call leaves no trace, and the
resulting event is emitted only after the transaction commits.
"""

import hashlib
import logging
from typing import Callable, TypeVar

from championship.config import Settings, get_settings
from championship.errors import EscrowError, InvalidConfigError, NotFoundError
from championship.events import EscrowEvent, EventSink, LoggingEventSink
from championship.models import (
    AccountBetTotal,
    AccountStatus,
    Agent,
    BetRecord,
    Challenge,
    ChallengeMetadata,
    PayoutQuote,
    PayoutRecord,
    Phase,
    PoolTotals,
    SolvencyReport,
)
from championship.phase import challenge_phase
from championship.ports import BalanceOracle, Clock, Custody, SystemClock
from championship.services import (
    ChallengeRegistry,
    ClaimLedger,
    EnrollmentLedger,
    EscrowContext,
    OutcomeTally,
    WageringMarket,
    WithdrawalPath,
)
from championship.storage.base import ChallengeStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def hash_challenge_text(text: str) -> str:
    """Lowercase hex SHA-256 of the full challenge text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ChampionshipEscrow:
    """Phased entry, wagering, judging, and settlement for challenges."""

    def __init__(
        self,
        store: ChallengeStore,
        custody: Custody,
        clock: Clock | None = None,
        settings: Settings | None = None,
        event_sink: EventSink | None = None,
        balance_oracle: BalanceOracle | None = None,
    ):
        settings = settings or get_settings()

        if settings.voting.min_vote_balance > 0 and balance_oracle is None:
            raise InvalidConfigError(
                "voting.min_vote_balance requires a balance oracle; "
                "set it to 0 on hosts without arbitrary-account balance lookup"
            )

        self.ctx = EscrowContext(
            store=store,
            custody=custody,
            clock=clock or SystemClock(),
            settings=settings,
            balance_oracle=balance_oracle,
        )
        self.events = event_sink or LoggingEventSink()

        self.registry = ChallengeRegistry(self.ctx)
        self.enrollment = EnrollmentLedger(self.ctx)
        self.wagering = WageringMarket(self.ctx)
        self.tally = OutcomeTally(self.ctx)
        self.claims = ClaimLedger(self.ctx)
        self.withdrawals = WithdrawalPath(self.ctx)

    @property
    def store(self) -> ChallengeStore:
        return self.ctx.store

    @property
    def settings(self) -> Settings:
        return self.ctx.settings

    def _run(
        self,
        operation: str,
        challenge_id: str,
        fn: Callable[[], tuple[T, EscrowEvent]],
    ) -> T:
        try:
            with self.store.transaction(challenge_id):
                result, event = fn()
        except EscrowError as e:
            if e.fatal:
                logger.error(f"{operation} on {challenge_id} failed [{e.kind.value}]: {e}")
            else:
                logger.warning(f"{operation} on {challenge_id} rejected [{e.kind.value}]: {e}")
            raise

        # Already committed: sink failures are logged, not raised
        try:
            self.events.emit(event)
        except Exception as e:
            logger.error(
                f"{operation} on {challenge_id} committed but "
                f"{event.event} event was not emitted: {e}",
                exc_info=True,
            )
        return result

    def _read(self, fn: Callable[[], T]) -> T:
        with self.store.transaction():
            return fn()

    # ========================================================================
    # Operations
    # ========================================================================

    def create(
        self,
        challenge_id: str,
        entry_fee: int,
        enroll_end: int,
        compete_end: int,
        judge_end: int,
        caller: str,
        metadata: ChallengeMetadata | None = None,
    ) -> Challenge:
        return self._run(
            "create",
            challenge_id,
            lambda: self.registry.create(
                challenge_id, entry_fee, enroll_end, compete_end, judge_end, caller, metadata
            ),
        )

    def enroll(self, challenge_id: str, agent_id: str, caller: str, payment: int) -> Challenge:
        return self._run(
            "enroll",
            challenge_id,
            lambda: self.enrollment.enroll(challenge_id, agent_id, caller, payment),
        )

    def bet(self, challenge_id: str, agent_id: str, caller: str, amount: int) -> Challenge:
        return self._run(
            "bet",
            challenge_id,
            lambda: self.wagering.place_bet(challenge_id, agent_id, caller, amount),
        )

    def vote(self, challenge_id: str, agent_id: str, caller: str) -> Challenge:
        return self._run(
            "vote", challenge_id, lambda: self.tally.vote(challenge_id, agent_id, caller)
        )

    def cancel(self, challenge_id: str, caller: str | None = None) -> Challenge:
        return self._run("cancel", challenge_id, lambda: self.registry.cancel(challenge_id))

    def finalize(self, challenge_id: str, caller: str | None = None) -> Challenge:
        return self._run("finalize", challenge_id, lambda: self.registry.finalize(challenge_id))

    def claim(self, challenge_id: str, caller: str) -> PayoutQuote:
        return self._run("claim", challenge_id, lambda: self.claims.claim(challenge_id, caller))

    def withdraw(self, challenge_id: str, agent_id: str, caller: str) -> Challenge:
        return self._run(
            "withdraw",
            challenge_id,
            lambda: self.withdrawals.withdraw(challenge_id, agent_id, caller),
        )

    def sweep_dust(self, challenge_id: str, caller: str) -> int:
        return self._run(
            "sweep_dust", challenge_id, lambda: self.claims.sweep_dust(challenge_id, caller)
        )

    # ========================================================================
    # Queries
    # ========================================================================

    def get_challenge(self, challenge_id: str) -> Challenge:
        return self._read(lambda: self.claims.load_challenge(challenge_id))

    def list_challenges(self) -> list[Challenge]:
        return self._read(self.store.list_challenges)

    def get_agent(self, challenge_id: str, agent_id: str) -> Agent:
        challenge = self.get_challenge(challenge_id)
        _, agent = self.claims.find_agent(challenge, agent_id)
        return agent

    def get_bet(self, challenge_id: str, account: str, agent_id: str) -> BetRecord:
        record = self._read(lambda: self.store.get_bet(challenge_id, account, agent_id))
        if record is None:
            raise NotFoundError(
                f"No bet by {account} on {agent_id} in {challenge_id}", challenge_id
            )
        return record

    def get_agent_bet_total(self, challenge_id: str, account: str) -> AccountBetTotal:
        """Cumulative amount ``account`` wagered across all agents."""
        record = self._read(lambda: self.store.get_account_bet_total(challenge_id, account))
        if record is None:
            raise NotFoundError(f"No bets by {account} in {challenge_id}", challenge_id)
        return record

    def get_pools(self, challenge_id: str) -> PoolTotals:
        challenge = self.get_challenge(challenge_id)
        return PoolTotals(
            challenge_id=challenge.id,
            total_entry_pool=challenge.total_entry_pool,
            total_bet_pool=challenge.total_bet_pool,
            agent_bet_pools={agent.agent_id: agent.bet_pool for agent in challenge.agents},
        )

    def get_phase(self, challenge_id: str) -> Phase:
        return challenge_phase(self.get_challenge(challenge_id), self.ctx.clock.now())

    def quote_payout(self, challenge_id: str, account: str) -> PayoutQuote:
        return self._read(lambda: self.claims.quote(challenge_id, account))

    def solvency(self, challenge_id: str) -> SolvencyReport:
        return self._read(lambda: self.claims.solvency(challenge_id))

    def list_payouts(self, challenge_id: str) -> list[PayoutRecord]:
        return self._read(lambda: self.store.list_payouts(challenge_id))

    def verify_challenge_text(self, challenge_id: str, text: str) -> bool:
        """Check revealed challenge text against the hash committed at creation."""
        challenge = self.get_challenge(challenge_id)
        if challenge.metadata is None or challenge.metadata.challenge_hash is None:
            raise NotFoundError(f"Challenge {challenge_id} has no committed hash", challenge_id)
        return hash_challenge_text(text) == challenge.metadata.challenge_hash

    def get_account_status(self, challenge_id: str, account: str) -> AccountStatus:
        """Where ``account`` stands in a challenge: enrollment, vote, bets, claim."""
        return self._read(lambda: self._account_status(challenge_id, account))

    def _account_status(self, challenge_id: str, account: str) -> AccountStatus:
        challenge = self.claims.load_challenge(challenge_id)
        enrollment = self.store.get_enrollment(challenge_id, account)
        vote = self.store.get_vote(challenge_id, account)
        bet_total = self.store.get_account_bet_total(challenge_id, account)
        claim = self.store.get_claim(challenge_id, account)

        agent_withdrawn = False
        if enrollment is not None:
            _, agent = self.claims.find_agent(challenge, enrollment.agent_id)
            agent_withdrawn = agent.withdrawn

        claimable = 0
        if claim is None and challenge.is_terminal:
            claimable = self.claims.quote_for(challenge, account).total

        return AccountStatus(
            challenge_id=challenge.id,
            account=account,
            phase=challenge_phase(challenge, self.ctx.clock.now()),
            finalized=challenge.finalized,
            cancelled=challenge.cancelled,
            enroll_end=challenge.enroll_end,
            compete_end=challenge.compete_end,
            judge_end=challenge.judge_end,
            enrolled_agent_id=enrollment.agent_id if enrollment else None,
            agent_withdrawn=agent_withdrawn,
            voted_agent_id=vote.agent_id if vote else None,
            bet_total=bet_total.amount if bet_total else 0,
            claimed_amount=claim.amount if claim else None,
            claimable=claimable,
        )
