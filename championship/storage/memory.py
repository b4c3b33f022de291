"""In-memory ChallengeStore with snapshot rollback."""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from championship.errors import AlreadyExistsError, NotFoundError
from championship.models import (
    AccountBetTotal,
    BetRecord,
    Challenge,
    ClaimProof,
    EnrollmentProof,
    PayoutRecord,
    VoteProof,
)
from championship.storage.base import ChallengeStore

logger = logging.getLogger(__name__)


class InMemoryChallengeStore(ChallengeStore):
    """Dict-backed tables keyed by (challenge_id, secondary key).

    Reads and writes copy models in and out so callers never hold a live
    reference to stored state. Inside a transaction the first write to a
    challenge saves that challenge's rows, and a failing block restores them.
    """

    _KEYED_TABLES = (
        "_challenges",
        "_enrollments",
        "_votes",
        "_claims",
        "_bets",
        "_bet_totals",
    )

    def __init__(self) -> None:
        self._challenges: dict[str, Challenge] = {}
        self._enrollments: dict[tuple[str, str], EnrollmentProof] = {}
        self._votes: dict[tuple[str, str], VoteProof] = {}
        self._claims: dict[tuple[str, str], ClaimProof] = {}
        self._bets: dict[tuple[str, str, str], BetRecord] = {}
        self._bet_totals: dict[tuple[str, str], AccountBetTotal] = {}
        self._payouts: list[PayoutRecord] = []
        self._lock = threading.RLock()
        self._depth = 0
        self._saved: dict[str, dict] = {}

    @contextmanager
    def transaction(self, challenge_id: str | None = None) -> Iterator[None]:
        with self._lock:
            if self._depth:
                # Nested scopes join the outer transaction
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            self._saved = {}
            try:
                yield
            except BaseException:
                for owner, rows in self._saved.items():
                    self._restore(owner, rows)
                logger.debug(f"Rolled back in-memory transaction ({len(self._saved)} challenges)")
                raise
            finally:
                self._depth = 0
                self._saved = {}

    @staticmethod
    def _owner(key) -> str:
        return key if isinstance(key, str) else key[0]

    def _touch(self, challenge_id: str) -> None:
        """Save a challenge's rows before its first write in a transaction."""
        if not self._depth or challenge_id in self._saved:
            return
        rows = {}
        for name in self._KEYED_TABLES:
            table = getattr(self, name)
            rows[name] = {
                key: copy.deepcopy(value)
                for key, value in table.items()
                if self._owner(key) == challenge_id
            }
        rows["_payouts"] = [p for p in self._payouts if p.challenge_id == challenge_id]
        self._saved[challenge_id] = rows

    def _restore(self, challenge_id: str, rows: dict) -> None:
        for name in self._KEYED_TABLES:
            table = getattr(self, name)
            for key in [k for k in table if self._owner(k) == challenge_id]:
                del table[key]
            table.update(rows[name])
        self._payouts = [
            p for p in self._payouts if p.challenge_id != challenge_id
        ] + rows["_payouts"]

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    def get_challenge(self, challenge_id: str) -> Challenge | None:
        challenge = self._challenges.get(challenge_id)
        return challenge.model_copy(deep=True) if challenge else None

    def insert_challenge(self, challenge: Challenge) -> None:
        self._touch(challenge.id)
        if challenge.id in self._challenges:
            raise AlreadyExistsError(f"Challenge {challenge.id} already exists", challenge.id)
        self._challenges[challenge.id] = challenge.model_copy(deep=True)

    def update_challenge(self, challenge: Challenge) -> None:
        self._touch(challenge.id)
        if challenge.id not in self._challenges:
            raise NotFoundError(f"Challenge {challenge.id} not found", challenge.id)
        self._challenges[challenge.id] = challenge.model_copy(deep=True)

    def list_challenges(self) -> list[Challenge]:
        return [c.model_copy(deep=True) for c in self._challenges.values()]

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def get_enrollment(self, challenge_id: str, account: str) -> EnrollmentProof | None:
        return self._enrollments.get((challenge_id, account))

    def insert_enrollment(self, proof: EnrollmentProof) -> None:
        self._touch(proof.challenge_id)
        key = (proof.challenge_id, proof.account)
        if key in self._enrollments:
            raise AlreadyExistsError(
                f"{proof.account} already enrolled in {proof.challenge_id}",
                proof.challenge_id,
            )
        self._enrollments[key] = proof

    def list_enrollments(self, challenge_id: str) -> list[EnrollmentProof]:
        return [p for (cid, _), p in self._enrollments.items() if cid == challenge_id]

    def get_vote(self, challenge_id: str, account: str) -> VoteProof | None:
        return self._votes.get((challenge_id, account))

    def insert_vote(self, proof: VoteProof) -> None:
        self._touch(proof.challenge_id)
        key = (proof.challenge_id, proof.account)
        if key in self._votes:
            raise AlreadyExistsError(
                f"{proof.account} already voted in {proof.challenge_id}",
                proof.challenge_id,
            )
        self._votes[key] = proof

    def get_claim(self, challenge_id: str, account: str) -> ClaimProof | None:
        return self._claims.get((challenge_id, account))

    def insert_claim(self, proof: ClaimProof) -> None:
        self._touch(proof.challenge_id)
        key = (proof.challenge_id, proof.account)
        if key in self._claims:
            raise AlreadyExistsError(
                f"{proof.account} already claimed from {proof.challenge_id}",
                proof.challenge_id,
            )
        self._claims[key] = proof

    # ------------------------------------------------------------------
    # Wagers
    # ------------------------------------------------------------------

    def get_bet(self, challenge_id: str, account: str, agent_id: str) -> BetRecord | None:
        record = self._bets.get((challenge_id, account, agent_id))
        return record.model_copy() if record else None

    def save_bet(self, record: BetRecord) -> None:
        self._touch(record.challenge_id)
        self._bets[(record.challenge_id, record.account, record.agent_id)] = record.model_copy()

    def list_bets(self, challenge_id: str) -> list[BetRecord]:
        return [r.model_copy() for (cid, _, _), r in self._bets.items() if cid == challenge_id]

    def get_account_bet_total(self, challenge_id: str, account: str) -> AccountBetTotal | None:
        record = self._bet_totals.get((challenge_id, account))
        return record.model_copy() if record else None

    def save_account_bet_total(self, record: AccountBetTotal) -> None:
        self._touch(record.challenge_id)
        self._bet_totals[(record.challenge_id, record.account)] = record.model_copy()

    def list_account_bet_totals(self, challenge_id: str) -> list[AccountBetTotal]:
        return [
            r.model_copy() for (cid, _), r in self._bet_totals.items() if cid == challenge_id
        ]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_payout(self, record: PayoutRecord) -> None:
        self._touch(record.challenge_id)
        self._payouts.append(record)

    def list_payouts(self, challenge_id: str) -> list[PayoutRecord]:
        return [p for p in self._payouts if p.challenge_id == challenge_id]
