"""
Integration Test: SQL Store

Runs the escrow against SQLAlchemy tables on in-memory SQLite.

Test cases:
- Full finalize-and-claim lifecycle with vault and wallet rows
- Store and custody share one transaction (rollback on failed transfer)
- Full unsigned 64-bit range survives a round trip through the database
- Duplicate proof inserts surface as AlreadyExists
- Overlapping bets on one challenge never lose an update (SQLite file)
- Funded wallets pass the voter balance gate
"""

import threading
import time

import pytest

from championship.arithmetic import MAX_AMOUNT
from championship.config import VotingConfig
from championship.errors import AlreadyExistsError, InsufficientFundsError, UnauthorizedError
from championship.escrow import ChampionshipEscrow
from championship.models import ChallengeMetadata, EnrollmentProof
from championship.storage import SqlChallengeStore, SqlCustody, create_store_engine
from tests.conftest import CREATOR, PLATFORM, THREE_AGENTS, make_settings


@pytest.fixture
def sql_store():
    return SqlChallengeStore(create_store_engine("sqlite://"))


@pytest.fixture
def sql_custody(sql_store):
    return SqlCustody(sql_store)


@pytest.fixture
def sql_escrow(sql_store, sql_custody, clock, sink, settings):
    return ChampionshipEscrow(
        store=sql_store,
        custody=sql_custody,
        clock=clock,
        settings=settings,
        event_sink=sink,
    )


def test_full_lifecycle(
    sql_escrow, sql_custody, open_challenge, to_competition, to_judging, to_closed
):
    open_challenge(agents=THREE_AGENTS, target=sql_escrow)
    to_competition()
    sql_escrow.bet("c1", "A", "b1", 300)
    sql_escrow.bet("c1", "A", "b2", 700)
    to_judging()
    sql_escrow.vote("c1", "A", "voter1")
    sql_escrow.vote("c1", "B", "voter2")
    sql_escrow.vote("c1", "A", "voter3")
    to_closed()

    challenge = sql_escrow.finalize("c1")
    assert challenge.winner.agent_id == "A"

    assert sql_escrow.claim("c1", "owner_a").total == 285
    assert sql_escrow.claim("c1", CREATOR).total == 32
    assert sql_escrow.claim("c1", "b1").total == 285
    assert sql_escrow.claim("c1", "b2").total == 665
    with pytest.raises(AlreadyExistsError):
        sql_escrow.claim("c1", "b2")

    assert sql_custody.balance_of(PLATFORM) == 33
    assert sql_custody.vault_balance("c1") == 0
    assert len(sql_escrow.list_payouts("c1")) == 5

    reloaded = sql_escrow.get_challenge("c1")
    assert [a.vote_count for a in reloaded.agents] == [2, 1, 0]
    assert reloaded.finalized and reloaded.winner_index == 0


def test_withdraw_and_cancel(
    sql_escrow, sql_custody, open_challenge, to_competition
):
    open_challenge(agents=THREE_AGENTS, target=sql_escrow)
    to_competition()
    sql_escrow.withdraw("c1", "C", "owner_c")
    sql_escrow.cancel("c1")

    assert sql_escrow.claim("c1", "owner_a").total == 100
    assert sql_custody.balance_of("owner_c") == 98
    assert sql_escrow.get_challenge("c1").agents[2].withdrawn
    assert sql_escrow.solvency("c1").is_solvent


class FailingSqlCustody(SqlCustody):
    def debit(self, challenge_id, destination, amount):
        raise InsufficientFundsError("vault unavailable", challenge_id)


def test_failed_transfer_rolls_back_store(sql_store, clock, sink, settings, open_challenge, to_closed):
    escrow = ChampionshipEscrow(
        store=sql_store,
        custody=FailingSqlCustody(sql_store),
        clock=clock,
        settings=settings,
        event_sink=sink,
    )
    open_challenge(agents=THREE_AGENTS, target=escrow)
    to_closed()

    with pytest.raises(InsufficientFundsError):
        escrow.finalize("c1")

    challenge = escrow.get_challenge("c1")
    assert not challenge.finalized
    assert escrow.list_payouts("c1") == []


def test_failed_enroll_leaves_vault_untouched(sql_escrow, sql_custody, open_challenge):
    open_challenge(agents=THREE_AGENTS[:1], target=sql_escrow)
    with pytest.raises(AlreadyExistsError):
        sql_escrow.enroll("c1", "A2", "owner_a", 100)
    assert sql_custody.vault_balance("c1") == 100
    assert len(sql_escrow.get_challenge("c1").agents) == 1


def test_u64_amounts_round_trip(sql_escrow, sql_custody, open_challenge, to_competition):
    open_challenge(agents=THREE_AGENTS, target=sql_escrow)
    to_competition()
    big = MAX_AMOUNT - 300

    sql_escrow.bet("c1", "A", "whale", big)

    assert sql_escrow.get_bet("c1", "whale", "A").amount == big
    assert sql_escrow.get_challenge("c1").total_bet_pool == big
    assert sql_custody.vault_balance("c1") == MAX_AMOUNT


def test_metadata_round_trip(sql_escrow):
    metadata = ChallengeMetadata(title="T", description="D", challenge_hash="0" * 64)
    sql_escrow.create("c1", 100, 2_000, 3_000, 4_000, caller=CREATOR, metadata=metadata)
    assert sql_escrow.get_challenge("c1").metadata == metadata


def test_duplicate_proof_insert(sql_store):
    proof = EnrollmentProof(challenge_id="c1", account="a", agent_id="A")
    sql_store.insert_enrollment(proof)
    with pytest.raises(AlreadyExistsError):
        sql_store.insert_enrollment(proof)


class StallingClock:
    """Sleeps on every read so concurrent operations interleave."""

    def __init__(self, inner, delay: float = 0.05):
        self.inner = inner
        self.delay = delay

    def now(self) -> int:
        time.sleep(self.delay)
        return self.inner.now()


def test_concurrent_bets_keep_pools_consistent(
    tmp_path, clock, sink, settings, open_challenge, to_competition
):
    store = SqlChallengeStore.from_url(f"sqlite:///{tmp_path / 'escrow.db'}")
    custody = SqlCustody(store)
    escrow = ChampionshipEscrow(
        store=store,
        custody=custody,
        clock=StallingClock(clock),
        settings=settings,
        event_sink=sink,
    )
    open_challenge(agents=THREE_AGENTS, target=escrow)
    to_competition()

    errors = []

    def place(bettor: str) -> None:
        try:
            escrow.bet("c1", "A", bettor, 100)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=place, args=(f"b{i}",)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    challenge = escrow.get_challenge("c1")
    assert challenge.total_bet_pool == 400
    assert challenge.agents[0].bet_pool == 400
    assert sum(b.amount for b in store.list_bets("c1")) == 400
    assert sum(t.amount for t in store.list_account_bet_totals("c1")) == 400
    assert custody.vault_balance("c1") == 300 + 400
    assert len(sink.of_type("bet_placed")) == 4


def test_funded_wallet_passes_vote_gate(
    sql_store, sql_custody, clock, sink, tmp_path, open_challenge, to_judging
):
    escrow = ChampionshipEscrow(
        store=sql_store,
        custody=sql_custody,
        clock=clock,
        settings=make_settings(tmp_path, voting=VotingConfig(min_vote_balance=50)),
        event_sink=sink,
        balance_oracle=sql_custody,
    )
    open_challenge(agents=THREE_AGENTS, target=escrow)
    to_judging()

    with pytest.raises(UnauthorizedError):
        escrow.vote("c1", "A", "voter1")

    sql_custody.fund("voter1", 50)
    escrow.vote("c1", "A", "voter1")

    assert sql_custody.balance_of("voter1") == 50
    assert escrow.get_agent("c1", "A").vote_count == 1
