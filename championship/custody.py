"""In-process custody: per-challenge vaults plus recipient wallets."""

import logging
import threading

from championship.arithmetic import checked_add
from championship.errors import InsufficientFundsError, PaymentMismatchError

logger = logging.getLogger(__name__)


class InMemoryCustody:
    """Vault and wallet balances held in dictionaries.

    Debits validate before mutating so a rejected transfer leaves both sides
    untouched. Also serves as a BalanceOracle over the wallet balances.
    """

    def __init__(self, wallets: dict[str, int] | None = None):
        self._vaults: dict[str, int] = {}
        self._wallets: dict[str, int] = dict(wallets or {})
        self._lock = threading.RLock()

    def credit(self, challenge_id: str, source: str, amount: int) -> None:
        if amount <= 0:
            raise PaymentMismatchError(
                f"Inbound transfer must be positive, got {amount}", challenge_id
            )
        with self._lock:
            current = self._vaults.get(challenge_id, 0)
            self._vaults[challenge_id] = checked_add(current, amount)
        logger.debug(f"Vault {challenge_id} credited {amount} from {source}")

    def debit(self, challenge_id: str, destination: str, amount: int) -> None:
        if amount <= 0:
            return
        with self._lock:
            current = self._vaults.get(challenge_id, 0)
            if current < amount:
                logger.error(
                    f"Vault {challenge_id} short: balance={current} required={amount}"
                )
                raise InsufficientFundsError(
                    f"Vault balance {current} below required {amount}", challenge_id
                )
            new_wallet = checked_add(self._wallets.get(destination, 0), amount)
            self._vaults[challenge_id] = current - amount
            self._wallets[destination] = new_wallet
        logger.debug(f"Vault {challenge_id} paid {amount} to {destination}")

    def vault_balance(self, challenge_id: str) -> int:
        return self._vaults.get(challenge_id, 0)

    def balance_of(self, account: str) -> int:
        return self._wallets.get(account, 0)

    def fund(self, account: str, amount: int) -> None:
        """Seed an external wallet balance."""
        if amount <= 0:
            raise PaymentMismatchError(f"Funding must be positive, got {amount}")
        with self._lock:
            self._wallets[account] = checked_add(self._wallets.get(account, 0), amount)
        logger.info(f"Funded {account} with {amount}")
