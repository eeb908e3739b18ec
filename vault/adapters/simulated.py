"""
Simulated (paper) adapters — in-memory yield sources.

Used when ``service.yield_simulation`` is on and throughout the tests.
``SimulatedAdapter`` behaves like a single-depositor share vault;
``SimulatedProtocol`` is a lending market that MultiProtocolAdapter can
route into. Interest accrues only when ``accrue`` is called, so behaviour
is fully deterministic.
"""
import logging

from vault.adapters.base import Adapter
from vault.adapters.multi_protocol import LendingProtocol
from vault.errors import AdapterError

logger = logging.getLogger("vault.adapters.simulated")

SECONDS_PER_YEAR = 365 * 24 * 3600


def _interest(principal: int, apy_bps: int, elapsed_sec: float) -> int:
    return int(principal * apy_bps * elapsed_sec) // (10000 * SECONDS_PER_YEAR)


class SimulatedAdapter(Adapter):

    def __init__(self, name: str, apy_bps: int = 500, reward_bps: int = 0):
        self.name = name
        self.apy_bps = apy_bps
        self.reward_bps = reward_bps  # Paid out via harvest(), on top of apy
        self._assets = 0
        self._shares = 0
        self._pending_rewards = 0
        self._active = True

    async def deposit(self, amount: int) -> int:
        if not self._active:
            raise AdapterError(self.name, "adapter is shut down")
        if amount <= 0:
            raise AdapterError(self.name, f"invalid deposit amount {amount}")
        shares = self._to_shares(amount)
        self._assets += amount
        self._shares += shares
        return shares

    async def withdraw(self, shares: int) -> int:
        if shares <= 0 or shares > self._shares:
            raise AdapterError(self.name, f"cannot redeem {shares} of {self._shares} shares")
        amount = self._to_assets(shares)
        self._shares -= shares
        self._assets -= amount
        return amount

    async def harvest(self) -> int:
        reward = self._pending_rewards
        self._pending_rewards = 0
        return reward

    async def emergency_exit(self) -> int:
        recovered = self._assets
        self._assets = 0
        self._shares = 0
        logger.warning(f"[{self.name}] emergency exit: recovered {recovered}")
        return recovered

    async def total_assets(self) -> int:
        return self._assets

    async def total_shares(self) -> int:
        return self._shares

    async def convert_to_shares(self, assets: int) -> int:
        return self._to_shares(assets)

    async def convert_to_assets(self, shares: int) -> int:
        return self._to_assets(shares)

    async def get_apy(self) -> int:
        return self.apy_bps

    async def get_pending_rewards(self) -> int:
        return self._pending_rewards

    async def is_active(self) -> bool:
        return self._active

    # --- Paper-mode controls ---

    def accrue(self, elapsed_sec: float) -> int:
        """Grow principal by apy and pending rewards by reward_bps."""
        gained = _interest(self._assets, self.apy_bps, elapsed_sec)
        self._assets += gained
        self._pending_rewards += _interest(self._assets, self.reward_bps, elapsed_sec)
        return gained

    def add_yield(self, amount: int) -> None:
        self._assets += amount

    def add_rewards(self, amount: int) -> None:
        self._pending_rewards += amount

    def shutdown(self) -> None:
        self._active = False

    def _to_shares(self, assets: int) -> int:
        if self._shares == 0 or self._assets == 0:
            return assets
        return assets * self._shares // self._assets

    def _to_assets(self, shares: int) -> int:
        if self._shares == 0:
            return shares
        return shares * self._assets // self._shares


class SimulatedProtocol(LendingProtocol):

    def __init__(self, name: str, apy_bps: int = 400, healthy: bool = True):
        self.name = name
        self.apy_bps = apy_bps
        self.healthy = healthy
        self._balance = 0
        self._rewards = 0

    async def supply(self, amount: int) -> None:
        if not self.healthy:
            raise AdapterError(self.name, "protocol paused")
        self._balance += amount

    async def redeem(self, amount: int) -> int:
        if not self.healthy:
            raise AdapterError(self.name, "protocol paused")
        taken = min(amount, self._balance)
        self._balance -= taken
        return taken

    async def balance(self) -> int:
        return self._balance

    async def is_healthy(self) -> bool:
        return self.healthy

    async def get_apy(self) -> int:
        return self.apy_bps

    async def claim_rewards(self) -> int:
        claimed = self._rewards
        self._rewards = 0
        return claimed

    def accrue(self, elapsed_sec: float) -> int:
        gained = _interest(self._balance, self.apy_bps, elapsed_sec)
        self._balance += gained
        return gained

    def add_rewards(self, amount: int) -> None:
        self._rewards += amount
