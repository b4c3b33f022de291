"""Escrow error taxonomy.

Every rejection aborts the whole operation. Nothing is retried here; retry is
the caller's concern.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_CONFIG = "invalid_config"
    ALREADY_EXISTS = "already_exists"
    WRONG_PHASE = "wrong_phase"
    STATE_CONFLICT = "state_conflict"
    PAYMENT_MISMATCH = "payment_mismatch"
    UNAUTHORIZED = "unauthorized"
    ARITHMETIC = "arithmetic"
    NO_PAYOUT = "no_payout"
    INSUFFICIENT_FUNDS = "insufficient_funds"


class EscrowError(Exception):
    """Base exception for escrow operation failures."""

    kind: ErrorKind = ErrorKind.STATE_CONFLICT
    fatal: bool = False

    def __init__(self, message: str, challenge_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.challenge_id = challenge_id

    def to_dict(self) -> dict[str, str | None]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "challenge_id": self.challenge_id,
        }


class NotFoundError(EscrowError):
    """Challenge, agent, or bet lookup missed."""

    kind = ErrorKind.NOT_FOUND


class InvalidConfigError(EscrowError):
    """Fee below minimum, bad timestamps, or inconsistent engine wiring."""

    kind = ErrorKind.INVALID_CONFIG


class AlreadyExistsError(EscrowError):
    """Duplicate id, agent, enrollment, vote, or claim."""

    kind = ErrorKind.ALREADY_EXISTS


class WrongPhaseError(EscrowError):
    """Operation attempted outside its time window."""

    kind = ErrorKind.WRONG_PHASE


class StateConflictError(EscrowError):
    """Challenge is terminal, or quorum does not allow the transition."""

    kind = ErrorKind.STATE_CONFLICT


class PaymentMismatchError(EscrowError):
    """Attached amount differs from the required value."""

    kind = ErrorKind.PAYMENT_MISMATCH


class UnauthorizedError(EscrowError):
    """Caller lacks the required role."""

    kind = ErrorKind.UNAUTHORIZED


class ArithmeticOverflowError(EscrowError):
    """An add or multiply left the unsigned 64-bit range."""

    kind = ErrorKind.ARITHMETIC
    fatal = True


class NoPayoutError(EscrowError):
    """Claim resolved to zero."""

    kind = ErrorKind.NO_PAYOUT


class InsufficientFundsError(EscrowError):
    """Vault is short of a required transfer. Signals an accounting breach."""

    kind = ErrorKind.INSUFFICIENT_FUNDS
    fatal = True
