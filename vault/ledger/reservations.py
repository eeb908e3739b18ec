"""
Reservation Ledger — earmarks part of a user's balance as rental collateral.

Pure bookkeeping: no tokens move and the user's balance is never changed
here. The caller supplies the current total balance on every check, so
the ledger stays independent of how balances are computed.

Deductions elsewhere can lower a balance below an outstanding
reservation without releasing it. Callers are expected to release the
matching reservation themselves; until they do, the available balance
is clamped at zero.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from vault.errors import InsufficientBalanceError, InsufficientReservedError

logger = logging.getLogger("vault.ledger.reservations")


@dataclass
class Reservation:
    user: str
    asset: str
    amount: int


class ReservationLedger:

    def __init__(self):
        self._reserved: Dict[Tuple[str, str], int] = {}

    def reserved_of(self, user: str, asset: str) -> int:
        return self._reserved.get((user, asset), 0)

    def available(self, user: str, asset: str, total_balance: int) -> int:
        return max(0, total_balance - self.reserved_of(user, asset))

    def reserve(self, user: str, asset: str, amount: int, total_balance: int, reason: str = "") -> int:
        available = self.available(user, asset, total_balance)
        if amount > available:
            raise InsufficientBalanceError(
                f"cannot reserve {amount} {asset} for {user}: only {available} available"
            )
        key = (user, asset)
        self._reserved[key] = self._reserved.get(key, 0) + amount
        logger.info(f"RESERVE {user} {amount} {asset} ({reason or 'no reason'}) -> {self._reserved[key]}")
        return self._reserved[key]

    def release(self, user: str, asset: str, amount: int, reason: str = "") -> int:
        key = (user, asset)
        current = self._reserved.get(key, 0)
        if amount > current:
            raise InsufficientReservedError(
                f"cannot release {amount} {asset} for {user}: only {current} reserved"
            )
        remaining = current - amount
        if remaining:
            self._reserved[key] = remaining
        else:
            del self._reserved[key]
        logger.info(f"RELEASE {user} {amount} {asset} ({reason or 'no reason'}) -> {remaining}")
        return remaining

    def reservations(self) -> List[Reservation]:
        return [Reservation(u, a, amt) for (u, a), amt in self._reserved.items()]

    def total_reserved(self, asset: str) -> int:
        return sum(amt for (_, a), amt in self._reserved.items() if a == asset)
