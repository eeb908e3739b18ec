"""
Abstract base class for yield adapters.
Every strategy integration MUST implement this interface.

Amounts are integers in the underlying asset's smallest unit; shares
are in the adapter's own share units. Every method may raise: callers
in best-effort loops record the failure as an AdapterCallResult and move
on to the next adapter.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List


class AdapterOperation(Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    HARVEST = "harvest"
    EMERGENCY_EXIT = "emergency_exit"
    VALUATION = "valuation"


@dataclass
class AdapterCallResult:
    adapter_id: str
    operation: AdapterOperation
    ok: bool
    amount: int = 0
    error: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def success(cls, adapter_id: str, operation: AdapterOperation, amount: int) -> "AdapterCallResult":
        return cls(adapter_id=adapter_id, operation=operation, ok=True, amount=amount)

    @classmethod
    def failure(cls, adapter_id: str, operation: AdapterOperation, error) -> "AdapterCallResult":
        return cls(adapter_id=adapter_id, operation=operation, ok=False, error=str(error) or type(error).__name__)


@dataclass
class AllocationReport:
    """Aggregated outcome of one best-effort loop over the adapters."""
    operation: AdapterOperation
    results: List[AdapterCallResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(r.amount for r in self.results if r.ok)

    @property
    def succeeded(self) -> List[str]:
        return [r.adapter_id for r in self.results if r.ok]

    @property
    def failures(self) -> List[AdapterCallResult]:
        return [r for r in self.results if not r.ok]

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.value,
            "total": self.total,
            "results": [
                {"adapter_id": r.adapter_id, "ok": r.ok, "amount": r.amount, "error": r.error}
                for r in self.results
            ],
        }


class Adapter(ABC):
    """Abstract base. SimulatedAdapter and MultiProtocolAdapter implement this."""

    name: str = "adapter"

    # --- Capital movement ---
    @abstractmethod
    async def deposit(self, amount: int) -> int:
        """Invest ``amount`` of the underlying; returns adapter shares minted."""

    @abstractmethod
    async def withdraw(self, shares: int) -> int:
        """Redeem adapter shares; returns the underlying amount returned."""

    @abstractmethod
    async def harvest(self) -> int:
        """Collect accrued rewards without touching principal; returns the amount."""

    @abstractmethod
    async def emergency_exit(self) -> int:
        """Pull everything that can be pulled; returns the amount recovered."""

    # --- Valuation ---
    @abstractmethod
    async def total_assets(self) -> int:
        pass

    @abstractmethod
    async def total_shares(self) -> int:
        pass

    @abstractmethod
    async def convert_to_shares(self, assets: int) -> int:
        pass

    @abstractmethod
    async def convert_to_assets(self, shares: int) -> int:
        pass

    # --- Info ---
    @abstractmethod
    async def get_apy(self) -> int:
        """Current yield in basis points."""

    @abstractmethod
    async def get_pending_rewards(self) -> int:
        pass

    @abstractmethod
    async def is_active(self) -> bool:
        pass
