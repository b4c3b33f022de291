"""
Unit Tests: Challenge Registry

Test cases:
- Create validation (fee floor and ceiling, ordered boundaries, duplicate id)
- Cancel only after enrollment and only below quorum
- Finalize only after judging and only at quorum
- Winner selection tie-break and platform fee transfer
"""

import pytest

from championship.arithmetic import MAX_AMOUNT
from championship.errors import (
    AlreadyExistsError,
    InvalidConfigError,
    NotFoundError,
    StateConflictError,
    WrongPhaseError,
)
from championship.models import Agent, ChallengeMetadata
from championship.services.registry import select_winner
from tests.conftest import (
    COMPETE_END,
    CREATOR,
    ENROLL_END,
    ENTRY_FEE,
    FOUR_AGENTS,
    JUDGE_END,
    NOW,
    PLATFORM,
    THREE_AGENTS,
)

# ============================================================================
# Create
# ============================================================================


def test_create_persists_zeroed_challenge(escrow, sink):
    challenge = escrow.create("c1", ENTRY_FEE, ENROLL_END, COMPETE_END, JUDGE_END, caller=CREATOR)

    assert challenge.creator == CREATOR
    assert challenge.platform == PLATFORM
    assert challenge.total_entry_pool == 0
    assert challenge.total_bet_pool == 0
    assert challenge.agents == []
    assert not challenge.finalized and not challenge.cancelled
    assert challenge.winner_index is None
    assert [e.event for e in sink.events] == ["challenge_created"]


def test_create_rejects_duplicate_id(escrow):
    escrow.create("c1", ENTRY_FEE, ENROLL_END, COMPETE_END, JUDGE_END, caller=CREATOR)
    with pytest.raises(AlreadyExistsError):
        escrow.create("c1", ENTRY_FEE, ENROLL_END, COMPETE_END, JUDGE_END, caller="someone")


def test_create_rejects_fee_below_minimum(escrow):
    with pytest.raises(InvalidConfigError):
        escrow.create("c1", ENTRY_FEE - 1, ENROLL_END, COMPETE_END, JUDGE_END, caller=CREATOR)


def test_create_rejects_fee_above_u64(escrow):
    with pytest.raises(InvalidConfigError):
        escrow.create("c1", MAX_AMOUNT + 1, ENROLL_END, COMPETE_END, JUDGE_END, caller=CREATOR)
    with pytest.raises(NotFoundError):
        escrow.get_challenge("c1")


def test_create_accepts_fee_at_u64_max(escrow):
    challenge = escrow.create("c1", MAX_AMOUNT, ENROLL_END, COMPETE_END, JUDGE_END, caller=CREATOR)
    assert challenge.entry_fee == MAX_AMOUNT


@pytest.mark.parametrize(
    "enroll_end, compete_end, judge_end",
    [
        (NOW - 1, COMPETE_END, JUDGE_END),
        (ENROLL_END, ENROLL_END, JUDGE_END),
        (ENROLL_END, COMPETE_END, COMPETE_END),
        (ENROLL_END, COMPETE_END, ENROLL_END),
    ],
)
def test_create_rejects_bad_boundaries(escrow, enroll_end, compete_end, judge_end):
    with pytest.raises(InvalidConfigError):
        escrow.create("c1", ENTRY_FEE, enroll_end, compete_end, judge_end, caller=CREATOR)


def test_create_accepts_enroll_end_equal_to_now(escrow):
    challenge = escrow.create("c1", ENTRY_FEE, NOW, COMPETE_END, JUDGE_END, caller=CREATOR)
    assert challenge.enroll_end == NOW


def test_create_stores_metadata(escrow):
    metadata = ChallengeMetadata(
        title="Sorting", description="Fastest sort wins", challenge_hash="AB" * 32
    )
    escrow.create(
        "c1", ENTRY_FEE, ENROLL_END, COMPETE_END, JUDGE_END, caller=CREATOR, metadata=metadata
    )
    stored = escrow.get_challenge("c1")
    assert stored.metadata.title == "Sorting"
    assert stored.metadata.challenge_hash == "ab" * 32


def test_get_missing_challenge(escrow):
    with pytest.raises(NotFoundError):
        escrow.get_challenge("nope")


# ============================================================================
# Cancel
# ============================================================================


def test_cancel_during_enrollment_is_wrong_phase(escrow, open_challenge):
    open_challenge(agents=THREE_AGENTS[:2])
    with pytest.raises(WrongPhaseError):
        escrow.cancel("c1")


def test_cancel_below_quorum(escrow, open_challenge, to_competition, sink):
    open_challenge(agents=THREE_AGENTS[:2])
    to_competition()

    challenge = escrow.cancel("c1")

    assert challenge.cancelled
    assert not challenge.finalized
    assert sink.of_type("challenge_cancelled")


def test_cancel_at_quorum_is_conflict(escrow, open_challenge, to_competition):
    open_challenge(agents=THREE_AGENTS)
    to_competition()
    with pytest.raises(StateConflictError):
        escrow.cancel("c1")


def test_cancel_is_terminal(escrow, open_challenge, to_closed):
    open_challenge(agents=THREE_AGENTS[:1])
    to_closed()
    escrow.cancel("c1")

    with pytest.raises(StateConflictError):
        escrow.cancel("c1")
    with pytest.raises(StateConflictError):
        escrow.finalize("c1")


# ============================================================================
# Finalize
# ============================================================================


def test_finalize_before_judging_ends(escrow, open_challenge, clock):
    open_challenge(agents=THREE_AGENTS)
    clock.set(JUDGE_END)
    with pytest.raises(WrongPhaseError):
        escrow.finalize("c1")


def test_finalize_below_quorum(escrow, open_challenge, to_closed):
    open_challenge(agents=THREE_AGENTS[:2])
    to_closed()
    with pytest.raises(StateConflictError):
        escrow.finalize("c1")


def test_finalize_picks_winner_and_pays_platform(
    escrow, open_challenge, to_judging, to_closed, custody, sink
):
    open_challenge(agents=THREE_AGENTS)
    to_judging()
    escrow.vote("c1", "B", "voter1")
    to_closed()

    challenge = escrow.finalize("c1")

    assert challenge.finalized
    assert challenge.winner.agent_id == "B"
    assert custody.balance_of(PLATFORM) == 3
    assert custody.vault_balance("c1") == 297

    payouts = escrow.list_payouts("c1")
    assert [(p.recipient, p.amount, p.payout_type) for p in payouts] == [
        (PLATFORM, 3, "platform_fee")
    ]
    event = sink.of_type("challenge_finalized")[0]
    assert event.winner_agent_id == "B"
    assert event.winner_owner == "owner_b"
    assert event.platform_fee == 3


def test_finalize_is_terminal(escrow, open_challenge, to_closed):
    open_challenge(agents=THREE_AGENTS)
    to_closed()
    escrow.finalize("c1")

    with pytest.raises(StateConflictError):
        escrow.finalize("c1")
    with pytest.raises(StateConflictError):
        escrow.cancel("c1")


def test_finalize_tie_break_first_to_reach_max(escrow, open_challenge, to_judging, to_closed):
    open_challenge(agents=FOUR_AGENTS)
    to_judging()
    votes = {"A": 3, "B": 3, "C": 5, "D": 5}
    voter = 0
    for agent_id, count in votes.items():
        for _ in range(count):
            escrow.vote("c1", agent_id, f"voter{voter}")
            voter += 1
    to_closed()

    challenge = escrow.finalize("c1")

    assert challenge.winner.agent_id == "C"


# ============================================================================
# Winner selection
# ============================================================================


def _agents(*votes, withdrawn=()):
    return [
        Agent(agent_id=f"a{i}", owner=f"o{i}", vote_count=v, withdrawn=i in withdrawn)
        for i, v in enumerate(votes)
    ]


def test_select_winner_tie_break():
    assert select_winner(_agents(3, 3, 5, 5)) == 2


def test_select_winner_all_zero_picks_first_active():
    assert select_winner(_agents(0, 0, 0)) == 0
    assert select_winner(_agents(0, 0, 0, withdrawn={0})) == 1


def test_select_winner_skips_withdrawn():
    assert select_winner(_agents(9, 1, 2, withdrawn={0})) == 2


def test_select_winner_none_active():
    assert select_winner(_agents(1, withdrawn={0})) is None
