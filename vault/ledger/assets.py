"""
Asset Ledger — the idle underlying balance held directly by the pool.

Nothing here moves real tokens. Credits record funds arriving (deposits,
adapter withdrawals, harvested rewards), debits record funds leaving
(payouts to users, allocations pushed into adapters). Adapters may only
pull funds up to the allowance granted when they were registered.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List

from vault.errors import InsufficientBalanceError, StateError, ValidationError

logger = logging.getLogger("vault.ledger.assets")

UNLIMITED = -1


@dataclass
class Transfer:
    direction: str      # "in" or "out"
    counterparty: str
    amount: int
    timestamp: datetime = field(default_factory=datetime.utcnow)


class AssetLedger:

    HISTORY_SIZE = 1000

    def __init__(self, asset: str, decimals: int = 6):
        if not asset:
            raise ValidationError("asset symbol must be set")
        self.asset = asset
        self.decimals = decimals
        self._idle = 0
        self._allowances: Dict[str, int] = {}
        self._transfers: Deque[Transfer] = deque(maxlen=self.HISTORY_SIZE)
        self._total_in = 0
        self._total_out = 0

    @property
    def balance(self) -> int:
        return self._idle

    def credit(self, amount: int, source: str) -> None:
        if amount < 0:
            raise ValidationError(f"cannot credit negative amount {amount}")
        if amount == 0:
            return
        self._idle += amount
        self._total_in += amount
        self._transfers.append(Transfer("in", source, amount))

    def debit(self, amount: int, to: str) -> None:
        """Pay out idle funds to a user or recipient."""
        if amount < 0:
            raise ValidationError(f"cannot debit negative amount {amount}")
        if amount > self._idle:
            raise InsufficientBalanceError(
                f"idle {self.asset} balance {self._idle} < requested {amount}"
            )
        if amount == 0:
            return
        self._idle -= amount
        self._total_out += amount
        self._transfers.append(Transfer("out", to, amount))

    # --- Allowances (adapters pull against these) ---

    def approve(self, spender: str, amount: int = UNLIMITED) -> None:
        self._allowances[spender] = amount
        logger.debug(f"Allowance for {spender} set to {'unlimited' if amount == UNLIMITED else amount}")

    def revoke(self, spender: str) -> None:
        self._allowances.pop(spender, None)

    def allowance(self, spender: str) -> int:
        return self._allowances.get(spender, 0)

    def pull(self, spender: str, amount: int) -> None:
        """Move idle funds to an approved spender, consuming its allowance."""
        allowed = self.allowance(spender)
        if allowed != UNLIMITED and amount > allowed:
            raise StateError(f"{spender} allowance {allowed} < {amount}")
        self.debit(amount, to=spender)
        if allowed != UNLIMITED:
            self._allowances[spender] = allowed - amount

    def recent_transfers(self, limit: int = 50) -> List[Transfer]:
        return list(self._transfers)[-limit:]

    def get_status(self) -> dict:
        return {
            "asset": self.asset,
            "decimals": self.decimals,
            "idle": self._idle,
            "total_in": self._total_in,
            "total_out": self._total_out,
            "approved_spenders": sorted(self._allowances),
        }
