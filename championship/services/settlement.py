"""Payout computation and the once-per-account claim ledger.

SettlementEngine is pure: it turns a terminal challenge plus one account's
records into a PayoutQuote. ClaimLedger loads those records from the store,
enforces the single-claim rule, and moves the funds.

Every percentage split floors, so a finalized vault can keep a few units of
rounding residue ("dust") after every eligible account has claimed. What
happens to it is governed by ``settlement.dust_policy``.
"""

import logging

from championship.arithmetic import checked_add, checked_sub, percent_of, pro_rata
from championship.config import FeeSplitConfig
from championship.errors import (
    AlreadyExistsError,
    InsufficientFundsError,
    NoPayoutError,
    StateConflictError,
)
from championship.events import DustSwept, PayoutClaimed
from championship.models import (
    AccountBetTotal,
    BetRecord,
    Challenge,
    ClaimProof,
    EnrollmentProof,
    PayoutComponent,
    PayoutQuote,
    SolvencyReport,
)
from championship.services.base import EscrowService

logger = logging.getLogger(__name__)


class SettlementEngine:
    """Fixed-split payout math over a challenge's frozen totals."""

    def __init__(self, fees: FeeSplitConfig):
        self.fees = fees

    def winner_prize(self, challenge: Challenge) -> int:
        return percent_of(challenge.total_entry_pool, self.fees.entry_winner_pct)

    def creator_share(self, challenge: Challenge) -> int:
        return checked_add(
            percent_of(challenge.total_entry_pool, self.fees.entry_creator_pct),
            percent_of(challenge.total_bet_pool, self.fees.bet_creator_pct),
        )

    def platform_fee(self, challenge: Challenge) -> int:
        return checked_add(
            percent_of(challenge.total_entry_pool, self.fees.entry_platform_pct),
            percent_of(challenge.total_bet_pool, self.fees.bet_platform_pct),
        )

    def bet_payout_pool(self, challenge: Challenge) -> int:
        return percent_of(challenge.total_bet_pool, self.fees.bet_winner_pct)

    def bettor_winnings(self, challenge: Challenge, stake: int) -> int:
        """Pro-rata share of the bet payout pool for a stake on the winner."""
        winner = challenge.winner
        if winner is None or stake <= 0 or winner.bet_pool <= 0:
            return 0
        return pro_rata(self.bet_payout_pool(challenge), stake, winner.bet_pool)

    def quote(
        self,
        challenge: Challenge,
        account: str,
        enrollment: EnrollmentProof | None = None,
        winner_bet: BetRecord | None = None,
        bet_total: AccountBetTotal | None = None,
    ) -> PayoutQuote:
        """Everything ``account`` is owed, broken down by role.

        A non-terminal challenge owes nothing yet and yields an empty quote.
        """
        quote = PayoutQuote(challenge_id=challenge.id, account=account)

        if challenge.cancelled:
            if enrollment is not None and self._enrollment_refundable(challenge, enrollment):
                quote.components.append(
                    PayoutComponent(
                        payout_type="cancellation_refund", amount=challenge.entry_fee
                    )
                )
            if bet_total is not None and bet_total.amount > 0:
                quote.components.append(
                    PayoutComponent(payout_type="cancellation_refund", amount=bet_total.amount)
                )

        elif challenge.finalized:
            winner = challenge.winner
            if winner is not None and winner.owner == account:
                quote.components.append(
                    PayoutComponent(payout_type="entry_prize", amount=self.winner_prize(challenge))
                )
            if challenge.creator == account:
                quote.components.append(
                    PayoutComponent(
                        payout_type="creator_share", amount=self.creator_share(challenge)
                    )
                )
            if (
                winner is not None
                and winner_bet is not None
                and winner_bet.agent_id == winner.agent_id
            ):
                winnings = self.bettor_winnings(challenge, winner_bet.amount)
                quote.components.append(
                    PayoutComponent(payout_type="bet_winnings", amount=winnings)
                )

        quote.components = [c for c in quote.components if c.amount > 0]
        # Overflow check on the combined total
        checked_add(*(c.amount for c in quote.components))
        return quote

    @staticmethod
    def _enrollment_refundable(challenge: Challenge, enrollment: EnrollmentProof) -> bool:
        # An agent that withdrew already took its refund on the way out
        index = challenge.find_agent(enrollment.agent_id)
        if index is None:
            return False
        return not challenge.agents[index].withdrawn


class ClaimLedger(EscrowService):
    """Claims, payout quotes, and vault solvency for terminal challenges."""

    @property
    def engine(self) -> SettlementEngine:
        return SettlementEngine(self.settings.fees)

    def quote_for(self, challenge: Challenge, account: str) -> PayoutQuote:
        winner = challenge.winner
        winner_bet = (
            self.store.get_bet(challenge.id, account, winner.agent_id) if winner else None
        )
        return self.engine.quote(
            challenge,
            account,
            enrollment=self.store.get_enrollment(challenge.id, account),
            winner_bet=winner_bet,
            bet_total=self.store.get_account_bet_total(challenge.id, account),
        )

    def quote(self, challenge_id: str, account: str) -> PayoutQuote:
        """Side-effect free preview of a claim. Zero is allowed."""
        return self.quote_for(self.load_challenge(challenge_id), account)

    def claim(self, challenge_id: str, caller: str) -> tuple[PayoutQuote, PayoutClaimed]:
        challenge = self.load_challenge(challenge_id)
        if not challenge.is_terminal:
            raise StateConflictError(
                f"Challenge {challenge_id} is neither finalized nor cancelled", challenge_id
            )

        if self.store.get_claim(challenge_id, caller) is not None:
            raise AlreadyExistsError(f"{caller} already claimed from {challenge_id}", challenge_id)

        quote = self.quote_for(challenge, caller)
        total = quote.total
        if total == 0:
            raise NoPayoutError(f"Nothing to claim for {caller} in {challenge_id}", challenge_id)

        vault = self.custody.vault_balance(challenge_id)
        if vault < total:
            logger.error(
                f"Invariant breach claiming from {challenge_id}: vault={vault} "
                f"payout={total} claimant={caller}"
            )
            raise InsufficientFundsError(
                f"Vault balance {vault} below payout {total}", challenge_id
            )

        self.store.insert_claim(
            ClaimProof(challenge_id=challenge_id, account=caller, amount=total)
        )
        for component in quote.components:
            self.pay_out(challenge_id, caller, component.amount, component.payout_type)

        breakdown = ", ".join(f"{c.payout_type}={c.amount}" for c in quote.components)
        logger.info(f"Claim by {caller} from {challenge_id}: {total} ({breakdown})")
        return quote, PayoutClaimed(challenge_id=challenge_id, claimant=caller, amount=total)

    # ------------------------------------------------------------------
    # Obligations and dust
    # ------------------------------------------------------------------

    def eligible_accounts(self, challenge: Challenge) -> set[str]:
        """Accounts that may hold a non-zero claim on a terminal challenge."""
        if challenge.cancelled:
            accounts = {p.account for p in self.store.list_enrollments(challenge.id)}
            accounts.update(
                t.account for t in self.store.list_account_bet_totals(challenge.id)
            )
            return accounts
        if challenge.finalized:
            winner = challenge.winner
            accounts = {challenge.creator}
            if winner is not None:
                accounts.add(winner.owner)
                accounts.update(
                    b.account
                    for b in self.store.list_bets(challenge.id)
                    if b.agent_id == winner.agent_id
                )
            return accounts
        return set()

    def outstanding_obligations(self, challenge: Challenge) -> int:
        """Funds the vault still owes.

        While active that is every pooled unit; once terminal it is the sum of
        unclaimed quotes.
        """
        if not challenge.is_terminal:
            return checked_add(challenge.total_entry_pool, challenge.total_bet_pool)

        outstanding = 0
        for account in sorted(self.eligible_accounts(challenge)):
            if self.store.get_claim(challenge.id, account) is not None:
                continue
            outstanding = checked_add(outstanding, self.quote_for(challenge, account).total)
        return outstanding

    def solvency(self, challenge_id: str) -> SolvencyReport:
        challenge = self.load_challenge(challenge_id)
        vault = self.custody.vault_balance(challenge_id)
        outstanding = self.outstanding_obligations(challenge)
        report = SolvencyReport(
            challenge_id=challenge_id,
            vault_balance=vault,
            outstanding=outstanding,
            dust=vault - outstanding,
        )
        if not report.is_solvent:
            logger.error(
                f"Vault {challenge_id} insolvent: balance={vault} outstanding={outstanding}"
            )
        return report

    def sweep_dust(self, challenge_id: str, caller: str) -> tuple[int, DustSwept]:
        """Forward rounding residue of a terminal challenge to the platform."""
        challenge = self.load_challenge(challenge_id)
        if self.settings.settlement.dust_policy != "sweep_to_platform":
            raise StateConflictError(
                f"Dust policy '{self.settings.settlement.dust_policy}' does not allow sweeping",
                challenge_id,
            )
        if not challenge.is_terminal:
            raise StateConflictError(
                f"Challenge {challenge_id} is still active", challenge_id
            )

        report = self.solvency(challenge_id)
        if report.dust <= 0:
            raise NoPayoutError(f"No dust to sweep in {challenge_id}", challenge_id)

        dust = checked_sub(report.vault_balance, report.outstanding)
        self.pay_out(challenge_id, challenge.platform, dust, "dust_sweep")

        logger.info(f"Swept {dust} dust from {challenge_id} to {challenge.platform} by {caller}")
        return dust, DustSwept(challenge_id=challenge_id, recipient=challenge.platform, amount=dust)
