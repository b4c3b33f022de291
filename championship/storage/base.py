"""ChallengeStore abstract base.

One logical table per entity, keyed by (challenge_id, secondary key). Proof
inserts are "insert if absent": a duplicate raises AlreadyExistsError, which
makes the insert itself the deduplication check.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager

from championship.models import (
    AccountBetTotal,
    BetRecord,
    Challenge,
    ClaimProof,
    EnrollmentProof,
    PayoutRecord,
    VoteProof,
)


class ChallengeStore(ABC):
    """Keyed read/insert/update for every escrow entity."""

    @abstractmethod
    def transaction(self, challenge_id: str | None = None) -> AbstractContextManager[None]:
        """Scope in which all writes commit together or not at all.

        Scopes naming the same challenge never overlap.
        """

    # Challenges (agents travel with their challenge)
    @abstractmethod
    def get_challenge(self, challenge_id: str) -> Challenge | None: ...

    @abstractmethod
    def insert_challenge(self, challenge: Challenge) -> None: ...

    @abstractmethod
    def update_challenge(self, challenge: Challenge) -> None: ...

    @abstractmethod
    def list_challenges(self) -> list[Challenge]: ...

    # Proofs
    @abstractmethod
    def get_enrollment(self, challenge_id: str, account: str) -> EnrollmentProof | None: ...

    @abstractmethod
    def insert_enrollment(self, proof: EnrollmentProof) -> None: ...

    @abstractmethod
    def list_enrollments(self, challenge_id: str) -> list[EnrollmentProof]: ...

    @abstractmethod
    def get_vote(self, challenge_id: str, account: str) -> VoteProof | None: ...

    @abstractmethod
    def insert_vote(self, proof: VoteProof) -> None: ...

    @abstractmethod
    def get_claim(self, challenge_id: str, account: str) -> ClaimProof | None: ...

    @abstractmethod
    def insert_claim(self, proof: ClaimProof) -> None: ...

    # Wagers
    @abstractmethod
    def get_bet(self, challenge_id: str, account: str, agent_id: str) -> BetRecord | None: ...

    @abstractmethod
    def save_bet(self, record: BetRecord) -> None: ...

    @abstractmethod
    def list_bets(self, challenge_id: str) -> list[BetRecord]: ...

    @abstractmethod
    def get_account_bet_total(self, challenge_id: str, account: str) -> AccountBetTotal | None: ...

    @abstractmethod
    def save_account_bet_total(self, record: AccountBetTotal) -> None: ...

    @abstractmethod
    def list_account_bet_totals(self, challenge_id: str) -> list[AccountBetTotal]: ...

    # Audit
    @abstractmethod
    def append_payout(self, record: PayoutRecord) -> None: ...

    @abstractmethod
    def list_payouts(self, challenge_id: str) -> list[PayoutRecord]: ...
