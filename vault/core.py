"""
Vault Core — the public face of the vault.

Owns every ledger (idle assets, shares, reservations), the adapter
registry and the allocator. All mutation goes through the methods here.

CONCURRENCY:
  Every state-mutating entry point runs under one asyncio.Lock, so calls
  from different tasks are serialized. The lock remembers its owning
  task: an adapter that calls back into the vault from inside one of our
  calls gets a ReentrancyError instead of a deadlock.

ORDER OF CHECKS:
  authorization → lock → paused → validation → state checks → mutation.
  Nothing is mutated before the last check passes. The only exception
  is the shortfall pull on withdraw/deduct, which moves funds from
  adapters to idle before the final liquidity check. If that check
  fails, the pulled funds are pushed back into their adapters.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from vault.access.roles import AccessController, Role, requires_role
from vault.adapters.base import Adapter, AdapterCallResult, AdapterOperation, AllocationReport
from vault.allocation.allocator import Allocator, RebalanceReport
from vault.errors import (
    InsufficientBalanceError, InsufficientLiquidityError, InsufficientSharesError,
    ReentrancyError, ValidationError, VaultPausedError,
)
from vault.ledger.assets import UNLIMITED, AssetLedger
from vault.ledger.reservations import ReservationLedger
from vault.ledger.shares import ShareLedger
from vault.registry.adapters import AdapterRegistry
from vault.settings import VaultSettings
from vault.tracking.journal import OperationJournal
from vault.validation import require_address, require_bps, require_positive

logger = logging.getLogger("vault.core")


@dataclass
class DepositResult:
    user: str
    amount: int
    shares: int
    allocation: Optional[AllocationReport] = None


@dataclass
class WithdrawResult:
    user: str
    shares: int
    amount: int
    shortfall: Optional[AllocationReport] = None


@dataclass
class DeductResult:
    user: str
    recipient: str
    amount: int
    shares: int
    shortfall: Optional[AllocationReport] = None


def non_reentrant(method: Callable) -> Callable:
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        task = asyncio.current_task()
        if self._lock_owner is not None and self._lock_owner is task:
            raise ReentrancyError(f"{method.__name__} called while a vault operation is in progress")
        async with self._lock:
            self._lock_owner = task
            try:
                return await method(self, *args, **kwargs)
            finally:
                self._lock_owner = None
    return wrapper


class VaultCore:

    def __init__(self, access: AccessController, settings: Optional[VaultSettings] = None,
                 journal: Optional[OperationJournal] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.access = access
        self.settings = settings or VaultSettings()
        self.journal = journal
        self.asset = self.settings.asset_symbol

        self.assets = AssetLedger(self.asset, self.settings.decimals)
        self.shares = ShareLedger()
        self.reservations = ReservationLedger()
        self.registry = AdapterRegistry(
            enforce_weight_cap=self.settings.enforce_weight_cap,
            max_total_weight_bps=self.settings.max_total_weight_bps,
        )
        allocator_kwargs = {"clock": clock} if clock else {}
        self.allocator = Allocator(self.assets, self.registry, self.settings, journal=journal, **allocator_kwargs)

        self._lock = asyncio.Lock()
        self._lock_owner: Optional[asyncio.Task] = None
        self._paused = False

        logger.info(
            f"VaultCore initialized: asset={self.asset}, "
            f"investment_ratio={self.settings.investment_ratio_bps}bps, "
            f"min_investment={self.settings.min_investment_amount}, "
            f"weight_cap={'on' if self.settings.enforce_weight_cap else 'off'}"
        )

    # ── Views ──────────────────────────────────────────────────────

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def total_shares(self) -> int:
        return self.shares.total_shares

    @property
    def total_deposits(self) -> int:
        return self.shares.total_deposits

    @property
    def idle_balance(self) -> int:
        return self.assets.balance

    async def total_assets(self) -> int:
        """Idle funds plus what every active adapter reports; silent adapters count as zero."""
        values = await self.allocator.adapter_values()
        return self.assets.balance + sum(values.values())

    async def convert_to_shares(self, assets: int) -> int:
        return self.shares.convert_to_shares(assets, await self.total_assets())

    async def convert_to_assets(self, shares: int) -> int:
        return self.shares.convert_to_assets(shares, await self.total_assets())

    def shares_of(self, user: str) -> int:
        return self.shares.shares_of(user)

    async def balance_of(self, user: str) -> int:
        return await self.convert_to_assets(self.shares.shares_of(user))

    async def weighted_apy(self) -> int:
        return await self.allocator.weighted_apy()

    async def pending_rewards(self) -> int:
        return await self.allocator.pending_rewards()

    # ── Deposits & withdrawals ─────────────────────────────────────

    @non_reentrant
    async def deposit(self, caller: str, amount: int, auto_invest: Optional[bool] = None) -> DepositResult:
        self._require_not_paused()
        require_address(caller, "depositor")
        require_positive(amount)
        if amount < self.settings.min_investment_amount:
            raise ValidationError(
                f"deposit {amount} below minimum investment {self.settings.min_investment_amount}"
            )

        total_assets = await self.total_assets()
        shares = self.shares.preview_deposit(amount, total_assets)
        if shares == 0:
            raise ValidationError(f"deposit {amount} is too small to mint a share")

        self.assets.credit(amount, source=caller)
        self.shares.mint(caller, shares, amount)
        logger.info(f"DEPOSIT {caller}: {amount} {self.asset} -> {shares} shares")

        allocation = None
        if auto_invest is None:
            auto_invest = self.settings.auto_invest
        if auto_invest and self.registry.active_records():
            allocation = await self.allocator.distribute()

        self._journal("deposit", caller, amount, shares,
                      {"invested": allocation.total if allocation else 0})
        return DepositResult(user=caller, amount=amount, shares=shares, allocation=allocation)

    @non_reentrant
    async def withdraw(self, caller: str, shares: int) -> WithdrawResult:
        self._require_not_paused()
        require_address(caller, "withdrawer")
        require_positive(shares, "shares")
        held = self.shares.shares_of(caller)
        if shares > held:
            raise InsufficientSharesError(f"{caller} holds {held} shares, requested {shares}")

        total_assets = await self.total_assets()
        amount = self.shares.preview_withdraw(shares, total_assets)
        total_balance = self.shares.convert_to_assets(held, total_assets)
        available = self.reservations.available(caller, self.asset, total_balance)
        if amount > available:
            raise InsufficientBalanceError(
                f"{caller} can withdraw at most {available} {self.asset}; the rest is reserved"
            )

        shortfall = await self._raise_liquidity(amount)
        self.shares.burn(caller, shares, amount)
        self.assets.debit(amount, to=caller)
        logger.info(f"WITHDRAW {caller}: {shares} shares -> {amount} {self.asset}")
        self._journal("withdraw", caller, amount, shares,
                      {"pulled_from_adapters": shortfall.total if shortfall else 0})
        return WithdrawResult(user=caller, shares=shares, amount=amount, shortfall=shortfall)

    async def _raise_liquidity(self, amount: int) -> Optional[AllocationReport]:
        report = None
        if self.assets.balance < amount:
            report = await self.allocator.withdraw_shortfall(amount - self.assets.balance)
        if self.assets.balance < amount:
            raised = self.assets.balance
            # Nothing is paid out, so put back what the pull moved
            if report and report.total:
                await self.allocator.restore(report)
            raise InsufficientLiquidityError(
                f"only {raised} {self.asset} could be raised from idle and adapters, need {amount}"
            )
        return report

    # ── Reservations (rental collateral) ───────────────────────────

    async def get_total_balance(self, user: str, asset: str) -> int:
        self._require_asset(asset)
        return await self.balance_of(user)

    def get_reserved_balance(self, user: str, asset: str) -> int:
        self._require_asset(asset)
        return self.reservations.reserved_of(user, asset)

    async def get_available_balance(self, user: str, asset: str) -> int:
        total = await self.get_total_balance(user, asset)
        return self.reservations.available(user, asset, total)

    @requires_role(Role.SETTLEMENT)
    @non_reentrant
    async def reserve_funds(self, caller: str, user: str, asset: str, amount: int, reason: str = "") -> int:
        self._require_not_paused()
        require_address(user, "user")
        self._require_asset(asset)
        require_positive(amount)
        total = await self.balance_of(user)
        reserved = self.reservations.reserve(user, asset, amount, total, reason)
        self._journal("reserve", user, amount, details={"reason": reason, "by": caller})
        return reserved

    @requires_role(Role.SETTLEMENT)
    @non_reentrant
    async def release_funds(self, caller: str, user: str, asset: str, amount: int, reason: str = "") -> int:
        self._require_not_paused()
        require_address(user, "user")
        self._require_asset(asset)
        require_positive(amount)
        remaining = self.reservations.release(user, asset, amount, reason)
        self._journal("release", user, amount, details={"reason": reason, "by": caller})
        return remaining

    @requires_role(Role.SETTLEMENT)
    @non_reentrant
    async def deduct_funds(self, caller: str, user: str, asset: str, amount: int, recipient: str) -> DeductResult:
        """Take ``amount`` out of the user's position and pay ``recipient``.

        Reservations are NOT adjusted; release the matching reservation
        separately.
        """
        self._require_not_paused()
        require_address(user, "user")
        require_address(recipient, "recipient")
        self._require_asset(asset)
        require_positive(amount)

        held = self.shares.shares_of(user)
        total_assets = await self.total_assets()
        balance = self.shares.convert_to_assets(held, total_assets)
        if amount > balance:
            raise InsufficientBalanceError(f"{user} balance {balance} {asset} < deduction {amount}")
        shares = min(self.shares.preview_burn_for_assets(amount, total_assets), held)

        shortfall = await self._raise_liquidity(amount)
        self.shares.burn(user, shares, amount)
        self.assets.debit(amount, to=recipient)
        logger.info(f"DEDUCT {user}: {amount} {asset} ({shares} shares) -> {recipient}")
        self._journal("deduct", user, amount, shares, {"recipient": recipient, "by": caller})
        return DeductResult(user=user, recipient=recipient, amount=amount, shares=shares, shortfall=shortfall)

    # ── Adapter management ─────────────────────────────────────────

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def add_adapter(self, caller: str, adapter_id: str, adapter: Adapter, weight_bps: int) -> None:
        self._require_not_paused()
        self.registry.add(adapter_id, adapter, weight_bps)
        self.assets.approve(adapter_id, UNLIMITED)
        self._journal("adapter_added", adapter_id, details={"weight_bps": weight_bps, "by": caller})

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def remove_adapter(self, caller: str, adapter_id: str) -> AdapterCallResult:
        """Best-effort exit, then soft-remove. A failed exit does not block removal."""
        record = self.registry.get(adapter_id)
        result = await self.allocator.emergency_exit(record)
        self.registry.remove(adapter_id)
        self.assets.revoke(adapter_id)
        self._journal("adapter_removed", adapter_id, result.amount,
                      details={"exit_ok": result.ok, "error": result.error, "by": caller})
        return result

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def set_adapter_weight(self, caller: str, adapter_id: str, weight_bps: int) -> None:
        self._require_not_paused()
        self.registry.set_weight(adapter_id, weight_bps)
        self._journal("adapter_weight", adapter_id, details={"weight_bps": weight_bps, "by": caller})

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def set_adapter_active(self, caller: str, adapter_id: str, active: bool) -> None:
        self._require_not_paused()
        self.registry.set_active(adapter_id, active)
        self._journal("adapter_active", adapter_id, details={"active": active, "by": caller})

    # ── Tuning ─────────────────────────────────────────────────────

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def set_investment_ratio(self, caller: str, ratio_bps: int) -> None:
        require_bps(ratio_bps, "investment ratio")
        self.settings.investment_ratio_bps = ratio_bps
        logger.info(f"Investment ratio -> {ratio_bps}bps")

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def set_min_investment_amount(self, caller: str, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError(f"minimum investment must be a non-negative integer, got {amount!r}")
        self.settings.min_investment_amount = amount
        logger.info(f"Minimum investment -> {amount}")

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def set_rebalance_interval(self, caller: str, seconds: int) -> None:
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
            raise ValidationError(f"rebalance interval must be a non-negative integer, got {seconds!r}")
        self.settings.rebalance_interval_sec = seconds
        logger.info(f"Rebalance interval -> {seconds}s")

    # ── Allocation ─────────────────────────────────────────────────

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def invest_idle(self, caller: str) -> AllocationReport:
        self._require_not_paused()
        report = await self.allocator.distribute()
        self._journal("invest", caller, report.total)
        return report

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def rebalance(self, caller: str) -> RebalanceReport:
        self._require_not_paused()
        report = await self.allocator.rebalance()
        self._journal("rebalance", caller, report.deposits.total, details=report.to_dict())
        return report

    @requires_role(Role.MANAGER)
    @non_reentrant
    async def harvest_all(self, caller: str) -> AllocationReport:
        self._require_not_paused()
        report = await self.allocator.harvest_all()
        self._journal("harvest", caller, report.total, details={"failures": len(report.failures)})
        return report

    # ── Emergency controls ─────────────────────────────────────────

    @requires_role(Role.ADMIN)
    @non_reentrant
    async def emergency_exit(self, caller: str, adapter_id: str) -> AdapterCallResult:
        """Pull everything from one adapter and stop investing into it.

        A failed exit leaves the adapter active so the funds it still holds
        keep counting towards total assets.
        """
        record = self.registry.get(adapter_id)
        result = await self.allocator.emergency_exit(record)
        if result.ok:
            record.active = False
        self._journal("emergency_exit", adapter_id, result.amount,
                      details={"ok": result.ok, "error": result.error, "by": caller})
        return result

    @requires_role(Role.ADMIN)
    @non_reentrant
    async def emergency_exit_all(self, caller: str) -> AllocationReport:
        report = AllocationReport(AdapterOperation.EMERGENCY_EXIT)
        for record in self.registry.active_records():
            result = await self.allocator.emergency_exit(record)
            report.results.append(result)
            if result.ok:
                record.active = False
        self._journal("emergency_exit_all", caller, report.total, details={"failures": len(report.failures)})
        return report

    @requires_role(Role.ADMIN)
    async def pause(self, caller: str) -> None:
        self._paused = True
        logger.warning(f"Vault PAUSED by {caller}")
        self._journal("pause", caller)

    @requires_role(Role.ADMIN)
    async def unpause(self, caller: str) -> None:
        self._paused = False
        logger.info(f"Vault unpaused by {caller}")
        self._journal("unpause", caller)

    # ── Status ─────────────────────────────────────────────────────

    async def get_adapters(self) -> List[dict]:
        values = await self.allocator.adapter_values()
        adapters = []
        for record in self.registry.records():
            adapters.append({
                "adapter_id": record.adapter_id,
                "weight_bps": record.weight_bps,
                "active": record.active,
                "invested": record.invested,
                "reported_assets": values.get(record.adapter_id),
                "created_at": record.created_at.isoformat(),
            })
        return adapters

    async def get_user(self, user: str) -> dict:
        total = await self.balance_of(user)
        reserved = self.reservations.reserved_of(user, self.asset)
        return {
            "user": user,
            "shares": self.shares.shares_of(user),
            "balance": total,
            "reserved": reserved,
            "available": self.reservations.available(user, self.asset, total),
        }

    async def get_status(self) -> dict:
        total_assets = await self.total_assets()
        apy_bps = await self.weighted_apy()
        share_price = (
            Decimal(total_assets) / Decimal(self.shares.total_shares)
            if self.shares.total_shares else Decimal('1')
        )
        return {
            "asset": self.asset,
            "paused": self._paused,
            "total_assets": total_assets,
            "idle": self.assets.balance,
            "total_shares": self.shares.total_shares,
            "total_deposits": self.shares.total_deposits,
            "share_price": float(share_price),
            "weighted_apy_bps": apy_bps,
            "weighted_apy_pct": float(Decimal(apy_bps) / 100),
            "total_reserved": self.reservations.total_reserved(self.asset),
            "adapter_count": len(self.registry.records()),
            "active_weight_bps": self.registry.total_active_weight(),
            "total_invested": self.registry.total_invested(),
            "ledger": self.assets.get_status(),
            "allocator": self.allocator.get_status(),
        }

    # ── Internals ──────────────────────────────────────────────────

    def _require_not_paused(self) -> None:
        if self._paused:
            raise VaultPausedError("vault is paused")

    def _require_asset(self, asset: str) -> None:
        if asset != self.asset:
            raise ValidationError(f"unsupported asset {asset!r}; this vault holds {self.asset}")

    def _journal(self, event_type: str, actor: str, amount: int = 0, shares: int = 0,
                 details: Optional[Dict] = None) -> None:
        if self.journal:
            self.journal.record(event_type, actor, amount, shares, details)
