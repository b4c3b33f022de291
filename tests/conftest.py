"""Shared fixtures: a fixed clock, in-memory store and custody, and an escrow factory."""

import pytest

from championship.config import LimitsConfig, Settings
from championship.custody import InMemoryCustody
from championship.escrow import ChampionshipEscrow
from championship.events import MemoryEventSink
from championship.ports import FixedClock
from championship.storage import InMemoryChallengeStore

NOW = 1_000
ENROLL_END = 2_000
COMPETE_END = 3_000
JUDGE_END = 4_000
ENTRY_FEE = 100

CREATOR = "creator"
PLATFORM = "platform"


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings isolated from .env and data/config.yaml, with a low fee floor."""
    overrides.setdefault("limits", LimitsConfig(min_entry_fee=ENTRY_FEE))
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        platform_account=PLATFORM,
        **overrides,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def store() -> InMemoryChallengeStore:
    return InMemoryChallengeStore()


@pytest.fixture
def custody() -> InMemoryCustody:
    return InMemoryCustody()


@pytest.fixture
def sink() -> MemoryEventSink:
    return MemoryEventSink()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def make_escrow(store, custody, clock, sink, tmp_path):
    """Build an escrow over the shared fixtures with optional settings overrides."""

    def _make(balance_oracle=None, **overrides) -> ChampionshipEscrow:
        return ChampionshipEscrow(
            store=store,
            custody=custody,
            clock=clock,
            settings=make_settings(tmp_path, **overrides),
            event_sink=sink,
            balance_oracle=balance_oracle,
        )

    return _make


@pytest.fixture
def escrow(make_escrow) -> ChampionshipEscrow:
    return make_escrow()


@pytest.fixture
def open_challenge(escrow):
    """Create a challenge and return a helper that enrolls agents into it."""

    def _open(
        challenge_id: str = "c1",
        agents=(),
        entry_fee: int = ENTRY_FEE,
        creator: str = CREATOR,
        target: ChampionshipEscrow | None = None,
    ):
        target = target or escrow
        target.create(challenge_id, entry_fee, ENROLL_END, COMPETE_END, JUDGE_END, caller=creator)
        for agent_id, owner in agents:
            target.enroll(challenge_id, agent_id, owner, entry_fee)
        return target.get_challenge(challenge_id)

    return _open


@pytest.fixture
def to_competition(clock):
    return lambda: clock.set(ENROLL_END + 1)


@pytest.fixture
def to_judging(clock):
    return lambda: clock.set(COMPETE_END + 1)


@pytest.fixture
def to_closed(clock):
    return lambda: clock.set(JUDGE_END + 1)


THREE_AGENTS = (("A", "owner_a"), ("B", "owner_b"), ("C", "owner_c"))
FOUR_AGENTS = THREE_AGENTS + (("D", "owner_d"),)
