"""
Unit Tests: In-Memory Store

Test cases:
- A failed transaction restores every challenge it wrote to
- Challenges the transaction never wrote are left as they are
- Nested scopes join the outer transaction
- Duplicate proofs raise AlreadyExists
"""

import pytest

from championship.errors import AlreadyExistsError
from championship.models import BetRecord, Challenge, EnrollmentProof, PayoutRecord
from championship.storage import InMemoryChallengeStore


def _challenge(challenge_id: str) -> Challenge:
    return Challenge(
        id=challenge_id,
        creator="creator",
        platform="platform",
        entry_fee=100,
        enroll_end=1,
        compete_end=2,
        judge_end=3,
    )


@pytest.fixture
def seeded_store() -> InMemoryChallengeStore:
    store = InMemoryChallengeStore()
    store.insert_challenge(_challenge("c1"))
    store.insert_challenge(_challenge("c2"))
    store.save_bet(BetRecord(challenge_id="c1", account="a", agent_id="A", amount=5))
    return store


def test_failed_transaction_restores_written_challenges(seeded_store):
    with pytest.raises(RuntimeError):
        with seeded_store.transaction("c1"):
            updated = seeded_store.get_challenge("c1")
            updated.total_bet_pool = 50
            seeded_store.update_challenge(updated)
            seeded_store.save_bet(
                BetRecord(challenge_id="c1", account="a", agent_id="A", amount=50)
            )
            seeded_store.insert_enrollment(
                EnrollmentProof(challenge_id="c2", account="a", agent_id="A")
            )
            seeded_store.append_payout(
                PayoutRecord(
                    challenge_id="c1", recipient="a", amount=5, payout_type="platform_fee"
                )
            )
            raise RuntimeError("transfer failed")

    assert seeded_store.get_challenge("c1").total_bet_pool == 0
    assert seeded_store.get_bet("c1", "a", "A").amount == 5
    assert seeded_store.get_enrollment("c2", "a") is None
    assert seeded_store.list_payouts("c1") == []


def test_rollback_keeps_untouched_challenges(seeded_store):
    seeded_store.append_payout(
        PayoutRecord(challenge_id="c2", recipient="b", amount=7, payout_type="platform_fee")
    )

    with pytest.raises(RuntimeError):
        with seeded_store.transaction("c1"):
            seeded_store.save_bet(
                BetRecord(challenge_id="c1", account="b", agent_id="A", amount=1)
            )
            raise RuntimeError("transfer failed")

    assert [p.amount for p in seeded_store.list_payouts("c2")] == [7]
    assert seeded_store.get_challenge("c2") is not None
    assert seeded_store.get_bet("c1", "b", "A") is None


def test_successful_transaction_keeps_writes(seeded_store):
    with seeded_store.transaction("c1"):
        seeded_store.save_bet(BetRecord(challenge_id="c1", account="b", agent_id="A", amount=9))

    assert seeded_store.get_bet("c1", "b", "A").amount == 9


def test_nested_scope_rolls_back_with_outer(seeded_store):
    with pytest.raises(RuntimeError):
        with seeded_store.transaction("c1"):
            with seeded_store.transaction():
                seeded_store.save_bet(
                    BetRecord(challenge_id="c1", account="b", agent_id="A", amount=3)
                )
            raise RuntimeError("transfer failed")

    assert seeded_store.get_bet("c1", "b", "A") is None


def test_duplicate_enrollment_proof(seeded_store):
    proof = EnrollmentProof(challenge_id="c1", account="a", agent_id="A")
    seeded_store.insert_enrollment(proof)
    with pytest.raises(AlreadyExistsError):
        seeded_store.insert_enrollment(proof)
