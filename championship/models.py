"""Pydantic models for challenges, agents, proofs, and settlement records."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from championship.arithmetic import MAX_AMOUNT

Amount = int

PayoutType = Literal[
    "entry_prize",
    "bet_winnings",
    "creator_share",
    "platform_fee",
    "cancellation_refund",
    "withdrawal_refund",
    "withdrawal_fee",
    "dust_sweep",
]

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    ENROLLMENT = "enrollment"
    COMPETITION = "competition"
    JUDGING = "judging"
    CLOSED = "closed"


# ============================================================================
# Aggregates
# ============================================================================


class ChallengeMetadata(BaseModel):
    """Optional commitment data attached at creation."""

    title: str = ""
    description: str = ""
    challenge_hash: str | None = Field(
        default=None,
        description="Lowercase hex SHA-256 of the full challenge text",
    )

    @field_validator("challenge_hash", mode="before")
    @classmethod
    def normalize_hash(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        v = str(v).lower()
        if not _HASH_RE.match(v):
            raise ValueError("challenge_hash must be 64 hex characters")
        return v


class Agent(BaseModel):
    """An enrolled entrant. Identified by its position in Challenge.agents."""

    agent_id: str
    owner: str
    vote_count: int = Field(default=0, ge=0)
    bet_pool: Amount = Field(default=0, ge=0)
    withdrawn: bool = False


class Challenge(BaseModel):
    """One phased competition instance."""

    id: str
    creator: str
    platform: str
    entry_fee: Amount = Field(ge=0, le=MAX_AMOUNT)
    enroll_end: int
    compete_end: int
    judge_end: int
    total_entry_pool: Amount = 0
    total_bet_pool: Amount = 0
    finalized: bool = False
    cancelled: bool = False
    winner_index: int | None = None
    agents: list[Agent] = Field(default_factory=list)
    metadata: ChallengeMetadata | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.finalized or self.cancelled

    @property
    def active_agent_count(self) -> int:
        return sum(1 for agent in self.agents if not agent.withdrawn)

    @property
    def winner(self) -> Agent | None:
        if not self.finalized or self.winner_index is None:
            return None
        return self.agents[self.winner_index]

    def find_agent(self, agent_id: str) -> int | None:
        """Return the agent's position, or None."""
        for index, agent in enumerate(self.agents):
            if agent.agent_id == agent_id:
                return index
        return None


# ============================================================================
# Per-(challenge, account) records
# ============================================================================


class EnrollmentProof(BaseModel):
    challenge_id: str
    account: str
    agent_id: str
    created_at: datetime = Field(default_factory=_utcnow)


class VoteProof(BaseModel):
    challenge_id: str
    account: str
    agent_id: str
    created_at: datetime = Field(default_factory=_utcnow)


class ClaimProof(BaseModel):
    challenge_id: str
    account: str
    amount: Amount
    created_at: datetime = Field(default_factory=_utcnow)


class BetRecord(BaseModel):
    """Cumulative amount one account wagered on one agent."""

    challenge_id: str
    account: str
    agent_id: str
    amount: Amount = 0


class AccountBetTotal(BaseModel):
    """Cumulative amount one account wagered across all agents."""

    challenge_id: str
    account: str
    amount: Amount = 0


class PayoutRecord(BaseModel):
    """Append-only audit row for every transfer out of a vault."""

    challenge_id: str
    recipient: str
    amount: Amount
    payout_type: PayoutType
    created_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# Query results
# ============================================================================


class PoolTotals(BaseModel):
    challenge_id: str
    total_entry_pool: Amount
    total_bet_pool: Amount
    agent_bet_pools: dict[str, Amount] = Field(default_factory=dict)


class AccountStatus(BaseModel):
    """One account's standing in a challenge.

    ``claimed_amount`` stays None until the account claims; ``claimable`` is
    what a claim would pay right now.
    """

    challenge_id: str
    account: str
    phase: Phase
    finalized: bool
    cancelled: bool
    enroll_end: int
    compete_end: int
    judge_end: int
    enrolled_agent_id: str | None = None
    agent_withdrawn: bool = False
    voted_agent_id: str | None = None
    bet_total: Amount = 0
    claimed_amount: Amount | None = None
    claimable: Amount = 0


class PayoutComponent(BaseModel):
    payout_type: PayoutType
    amount: Amount


class PayoutQuote(BaseModel):
    """A claimant's payout broken down by role."""

    challenge_id: str
    account: str
    components: list[PayoutComponent] = Field(default_factory=list)

    @property
    def total(self) -> Amount:
        return sum(component.amount for component in self.components)


class SolvencyReport(BaseModel):
    challenge_id: str
    vault_balance: Amount
    outstanding: Amount
    dust: int

    @property
    def is_solvent(self) -> bool:
        return self.vault_balance >= self.outstanding
