"""Escrow events and the sinks that record them.

Events are emitted only after an operation's transaction has committed.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Protocol, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EscrowEvent(BaseModel):
    """Common event envelope."""

    event: str
    challenge_id: str
    emitted_at: datetime = Field(default_factory=_utcnow)


class ChallengeCreated(EscrowEvent):
    event: Literal["challenge_created"] = "challenge_created"
    creator: str
    entry_fee: int
    enroll_end: int
    compete_end: int
    judge_end: int


class AgentEnrolled(EscrowEvent):
    event: Literal["agent_enrolled"] = "agent_enrolled"
    agent_id: str
    owner: str
    index: int


class BetPlaced(EscrowEvent):
    event: Literal["bet_placed"] = "bet_placed"
    agent_id: str
    bettor: str
    amount: int


class VoteCast(EscrowEvent):
    event: Literal["vote_cast"] = "vote_cast"
    agent_id: str
    voter: str


class ChallengeCancelled(EscrowEvent):
    event: Literal["challenge_cancelled"] = "challenge_cancelled"


class ChallengeFinalized(EscrowEvent):
    event: Literal["challenge_finalized"] = "challenge_finalized"
    winner_agent_id: str
    winner_owner: str
    platform_fee: int


class PayoutClaimed(EscrowEvent):
    event: Literal["payout_claimed"] = "payout_claimed"
    claimant: str
    amount: int


class AgentWithdrawn(EscrowEvent):
    event: Literal["agent_withdrawn"] = "agent_withdrawn"
    agent_id: str
    owner: str
    refund: int
    fee: int


class DustSwept(EscrowEvent):
    event: Literal["dust_swept"] = "dust_swept"
    recipient: str
    amount: int


AnyEvent = Union[
    ChallengeCreated,
    AgentEnrolled,
    BetPlaced,
    VoteCast,
    ChallengeCancelled,
    ChallengeFinalized,
    PayoutClaimed,
    AgentWithdrawn,
    DustSwept,
]


class EventSink(Protocol):
    def emit(self, event: EscrowEvent) -> None:
        ...


class LoggingEventSink:
    """Write events to the module logger."""

    def emit(self, event: EscrowEvent) -> None:
        logger.info(f"[{event.event}] {event.model_dump_json(exclude={'event'})}")


class MemoryEventSink:
    """Collect events in a list."""

    def __init__(self) -> None:
        self.events: list[EscrowEvent] = []

    def emit(self, event: EscrowEvent) -> None:
        self.events.append(event)

    def of_type(self, name: str) -> list[EscrowEvent]:
        return [event for event in self.events if event.event == name]


class JsonlEventSink:
    """Append events to a JSONL ledger in {events_dir}/{date}.jsonl."""

    def __init__(self, events_dir: Path):
        self.events_dir = events_dir

    def emit(self, event: EscrowEvent) -> None:
        self.events_dir.mkdir(parents=True, exist_ok=True)

        date_str = event.emitted_at.strftime("%Y-%m-%d")
        ledger_path = self.events_dir / f"{date_str}.jsonl"

        # One JSON object per line
        line = event.model_dump_json() + "\n"

        try:
            with open(ledger_path, "a", encoding="utf-8") as f:
                f.write(line)
            logger.debug(f"Logged {event.event} for {event.challenge_id} to {ledger_path}")
        except Exception as e:
            logger.error(f"Failed to log event {event.event}: {e}")
            raise
