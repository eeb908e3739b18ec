"""
Share Ledger — vault shares as proportional claims on total assets.

Conversions always floor so rounding never creates value for a holder.
The one exception is ``preview_burn_for_assets``, which rounds the share
count UP: when a fixed asset amount must leave the pool the holder pays
the rounding, not the pool.
"""
import logging
from typing import Dict

from vault.errors import InsufficientSharesError, ValidationError

logger = logging.getLogger("vault.ledger.shares")


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


class ShareLedger:

    def __init__(self):
        self.total_shares = 0
        self.total_deposits = 0
        self._balances: Dict[str, int] = {}

    # --- Conversion ---

    def convert_to_shares(self, assets: int, total_assets: int) -> int:
        if self.total_shares == 0 or total_assets == 0:
            return assets
        return assets * self.total_shares // total_assets

    def convert_to_assets(self, shares: int, total_assets: int) -> int:
        if self.total_shares == 0:
            return shares
        return shares * total_assets // self.total_shares

    def preview_deposit(self, amount: int, total_assets: int) -> int:
        return self.convert_to_shares(amount, total_assets)

    def preview_withdraw(self, shares: int, total_assets: int) -> int:
        return self.convert_to_assets(shares, total_assets)

    def preview_burn_for_assets(self, assets: int, total_assets: int) -> int:
        if self.total_shares == 0 or total_assets == 0:
            return assets
        return _ceil_div(assets * self.total_shares, total_assets)

    # --- Balances ---

    def shares_of(self, user: str) -> int:
        return self._balances.get(user, 0)

    def holders(self) -> Dict[str, int]:
        return dict(self._balances)

    def mint(self, user: str, shares: int, deposited: int) -> None:
        if shares <= 0:
            raise ValidationError(f"cannot mint {shares} shares")
        self._balances[user] = self._balances.get(user, 0) + shares
        self.total_shares += shares
        self.total_deposits += deposited

    def burn(self, user: str, shares: int, withdrawn: int) -> None:
        held = self.shares_of(user)
        if shares <= 0:
            raise ValidationError(f"cannot burn {shares} shares")
        if shares > held:
            raise InsufficientSharesError(f"{user} holds {held} shares, cannot burn {shares}")
        remaining = held - shares
        if remaining:
            self._balances[user] = remaining
        else:
            del self._balances[user]
        self.total_shares -= shares
        # Yield can push withdrawals past what was deposited
        self.total_deposits = max(0, self.total_deposits - withdrawn)

    def check_invariant(self) -> bool:
        return self.total_shares == sum(self._balances.values())
