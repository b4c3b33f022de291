"""Escrow components. Each one runs inside the caller's store transaction."""

from .base import EscrowContext, EscrowService
from .enrollment import EnrollmentLedger
from .registry import ChallengeRegistry, select_winner
from .settlement import ClaimLedger, SettlementEngine
from .tally import OutcomeTally
from .wagering import WageringMarket
from .withdrawal import WithdrawalPath

__all__ = [
    "ChallengeRegistry",
    "ClaimLedger",
    "EnrollmentLedger",
    "EscrowContext",
    "EscrowService",
    "OutcomeTally",
    "SettlementEngine",
    "WageringMarket",
    "WithdrawalPath",
    "select_winner",
]
