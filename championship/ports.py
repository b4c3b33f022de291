"""Collaborator contracts consumed by the escrow core."""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


class Clock(Protocol):
    def now(self) -> int:
        """Current unix timestamp in seconds."""
        ...


class Custody(Protocol):
    """Custodial transfers in and out of per-challenge vaults."""

    def credit(self, challenge_id: str, source: str, amount: int) -> None:
        """Accept an already-authorized inbound transfer into the vault."""
        ...

    def debit(self, challenge_id: str, destination: str, amount: int) -> None:
        """Move funds out of the vault. Raises InsufficientFundsError."""
        ...

    def vault_balance(self, challenge_id: str) -> int:
        ...


@runtime_checkable
class BalanceOracle(Protocol):
    """Arbitrary-account balance lookup. Only some hosts can provide it."""

    def balance_of(self, account: str) -> int:
        ...


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class FixedClock:
    """Manually driven clock for tests and dry runs."""

    def __init__(self, now: int = 0):
        self._now = now

    def now(self) -> int:
        return self._now

    def set(self, now: int) -> None:
        self._now = now

    def advance(self, seconds: int) -> int:
        self._now += seconds
        return self._now
