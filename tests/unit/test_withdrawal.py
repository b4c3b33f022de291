"""
Unit Tests: Withdrawal Path

Test cases:
- 98/2 split of the entry fee, full fee leaves the entry pool
- Owner-only, competition-only, once per agent
- Withdrawn stake is excluded from finalize math
"""

import pytest

from championship.errors import (
    NotFoundError,
    StateConflictError,
    UnauthorizedError,
    WrongPhaseError,
)
from tests.conftest import ENTRY_FEE, FOUR_AGENTS, PLATFORM


def test_withdraw_splits_entry_fee(escrow, open_challenge, to_competition, custody, sink):
    open_challenge(agents=FOUR_AGENTS)
    to_competition()

    challenge = escrow.withdraw("c1", "D", "owner_d")

    assert challenge.agents[3].withdrawn
    assert challenge.total_entry_pool == 300
    assert challenge.active_agent_count == 3
    assert custody.balance_of("owner_d") == 98
    assert custody.balance_of(PLATFORM) == 2
    assert custody.vault_balance("c1") == 300

    payouts = [(p.recipient, p.amount, p.payout_type) for p in escrow.list_payouts("c1")]
    assert payouts == [
        ("owner_d", 98, "withdrawal_refund"),
        (PLATFORM, 2, "withdrawal_fee"),
    ]
    event = sink.of_type("agent_withdrawn")[0]
    assert (event.refund, event.fee) == (98, 2)


def test_withdrawn_stake_excluded_from_finalize(
    escrow, open_challenge, to_competition, to_judging, to_closed, custody
):
    open_challenge(agents=FOUR_AGENTS)
    to_competition()
    escrow.withdraw("c1", "D", "owner_d")
    to_judging()
    escrow.vote("c1", "A", "voter1")
    to_closed()

    escrow.finalize("c1")

    # 2 from the withdrawal plus floor(300 * 1 / 100)
    assert custody.balance_of(PLATFORM) == 5
    assert escrow.quote_payout("c1", "owner_a").total == 285


def test_withdraw_by_non_owner(escrow, open_challenge, to_competition):
    open_challenge(agents=FOUR_AGENTS)
    to_competition()
    with pytest.raises(UnauthorizedError):
        escrow.withdraw("c1", "D", "owner_a")


def test_withdraw_twice(escrow, open_challenge, to_competition):
    open_challenge(agents=FOUR_AGENTS)
    to_competition()
    escrow.withdraw("c1", "D", "owner_d")
    with pytest.raises(StateConflictError):
        escrow.withdraw("c1", "D", "owner_d")


def test_withdraw_outside_competition(escrow, open_challenge, to_judging):
    open_challenge(agents=FOUR_AGENTS)
    with pytest.raises(WrongPhaseError):
        escrow.withdraw("c1", "D", "owner_d")
    to_judging()
    with pytest.raises(WrongPhaseError):
        escrow.withdraw("c1", "D", "owner_d")


def test_withdraw_unknown_agent(escrow, open_challenge, to_competition):
    open_challenge(agents=FOUR_AGENTS)
    to_competition()
    with pytest.raises(NotFoundError):
        escrow.withdraw("c1", "Z", "owner_d")


def test_withdraw_keeps_entry_fee_exactly_accounted(
    escrow, open_challenge, to_competition, custody
):
    open_challenge(agents=FOUR_AGENTS, entry_fee=ENTRY_FEE + 1)
    to_competition()

    escrow.withdraw("c1", "D", "owner_d")

    # floor(101 * 98 / 100) + floor(101 * 2 / 100) leaves one unit behind
    assert custody.balance_of("owner_d") == 98
    assert custody.balance_of(PLATFORM) == 2
    assert escrow.get_challenge("c1").total_entry_pool == 3 * (ENTRY_FEE + 1)
    assert escrow.solvency("c1").dust == 1
