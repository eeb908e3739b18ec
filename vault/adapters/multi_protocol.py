"""
Multi-Protocol Adapter — one registered adapter backed by several
redundant lending protocols.

New deposits go wherever the HealthAwareSelector points. Withdrawals
redeem from the selected protocol first and then from the others in
registration order, so funds stranded on a protocol that lost its
default status can still be recovered.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from vault.adapters.base import Adapter
from vault.errors import AdapterError
from vault.selection.health import HealthAwareSelector

logger = logging.getLogger("vault.adapters.multi")


class LendingProtocol(ABC):
    """Minimal surface of one external lending integration."""

    name: str = "protocol"

    @abstractmethod
    async def supply(self, amount: int) -> None:
        pass

    @abstractmethod
    async def redeem(self, amount: int) -> int:
        pass

    @abstractmethod
    async def balance(self) -> int:
        pass

    @abstractmethod
    async def is_healthy(self) -> bool:
        pass

    @abstractmethod
    async def get_apy(self) -> int:
        pass

    @abstractmethod
    async def claim_rewards(self) -> int:
        pass


class MultiProtocolAdapter(Adapter):

    def __init__(self, name: str, selector: Optional[HealthAwareSelector] = None):
        self.name = name
        self.selector = selector or HealthAwareSelector()
        self._shares = 0
        self._active = True

    def add_protocol(self, protocol: LendingProtocol, address: str,
                     weight: int = 0, is_default: bool = False) -> None:
        self.selector.register_protocol(protocol.name, address, protocol, weight=weight, is_default=is_default)

    async def deposit(self, amount: int) -> int:
        if not self._active:
            raise AdapterError(self.name, "adapter is shut down")
        if amount <= 0:
            raise AdapterError(self.name, f"invalid deposit amount {amount}")
        assets_before = await self.total_assets()
        protocol_name, protocol = await self.selector.select()
        await protocol.supply(amount)
        if self._shares == 0 or assets_before == 0:
            shares = amount
        else:
            shares = amount * self._shares // assets_before
        self._shares += shares
        logger.debug(f"[{self.name}] supplied {amount} to {protocol_name}, minted {shares} shares")
        return shares

    async def withdraw(self, shares: int) -> int:
        if shares <= 0 or shares > self._shares:
            raise AdapterError(self.name, f"cannot redeem {shares} of {self._shares} shares")
        needed = await self.convert_to_assets(shares)
        selected, _ = await self.selector.select()
        order = [selected] + [n for n in self.selector.names() if n != selected]

        received = 0
        for name in order:
            if received >= needed:
                break
            protocol = self.selector.client(name)
            try:
                held = await protocol.balance()
                if held <= 0:
                    continue
                received += await protocol.redeem(min(needed - received, held))
            except Exception as e:
                logger.warning(f"[{self.name}] redeem from {name} failed: {e}")

        if received < needed:
            # Return what was pulled to the selected protocol so share accounting stays exact
            if received:
                try:
                    await self.selector.client(selected).supply(received)
                except Exception as e:
                    logger.error(f"[{self.name}] could not re-supply {received} to {selected}: {e}")
            raise AdapterError(self.name, f"could only redeem {received} of {needed}")

        self._shares -= shares
        return received

    async def harvest(self) -> int:
        total = 0
        for name in self.selector.names():
            try:
                total += await self.selector.client(name).claim_rewards()
            except Exception as e:
                logger.warning(f"[{self.name}] reward claim on {name} failed: {e}")
        return total

    async def emergency_exit(self) -> int:
        recovered = 0
        for name in self.selector.names():
            protocol = self.selector.client(name)
            try:
                held = await protocol.balance()
                if held > 0:
                    recovered += await protocol.redeem(held)
            except Exception as e:
                logger.error(f"[{self.name}] emergency exit from {name} failed: {e}")
        if await self.total_assets() == 0:
            self._shares = 0
        logger.warning(f"[{self.name}] emergency exit: recovered {recovered}")
        return recovered

    async def total_assets(self) -> int:
        total = 0
        for name in self.selector.names():
            try:
                total += await self.selector.client(name).balance()
            except Exception as e:
                logger.warning(f"[{self.name}] balance query on {name} failed: {e}")
        return total

    async def total_shares(self) -> int:
        return self._shares

    async def convert_to_shares(self, assets: int) -> int:
        total = await self.total_assets()
        if self._shares == 0 or total == 0:
            return assets
        return assets * self._shares // total

    async def convert_to_assets(self, shares: int) -> int:
        if self._shares == 0:
            return shares
        return shares * await self.total_assets() // self._shares

    async def get_apy(self) -> int:
        """Balance-weighted APY; falls back to the selector's weight-averaged APY."""
        balances: Dict[str, int] = {}
        for name in self.selector.names():
            try:
                balances[name] = await self.selector.client(name).balance()
            except Exception:
                balances[name] = 0
        total = sum(balances.values())
        if total == 0:
            return await self.selector.weighted_apy()
        weighted = 0
        for name, bal in balances.items():
            weighted += bal * await self.selector.get_apy(name)
        return weighted // total

    async def get_pending_rewards(self) -> int:
        return 0

    async def is_active(self) -> bool:
        return self._active and bool(self.selector.names())

    def shutdown(self) -> None:
        self._active = False
