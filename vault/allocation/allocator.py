"""
Allocator / Rebalancer — moves capital between the idle pool and the
registered adapters.

Every loop over adapters here is BEST-EFFORT. One adapter failing never
aborts the loop: its funds stay where they were, the failure is logged
and recorded as a failed AdapterCallResult, and the returned report
shows exactly how much was achieved.

  distribute        idle → adapters by weight
  withdraw_shortfall adapters → idle, proportional to each adapter's value
  rebalance         everything → idle, then distribute
  harvest_all       rewards → idle
  emergency_exit    one adapter → idle, as much as it will give back
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from vault.adapters.base import AdapterCallResult, AdapterOperation, AllocationReport
from vault.errors import AdapterError, RebalanceCooldownError
from vault.ledger.assets import AssetLedger
from vault.registry.adapters import AdapterRecord, AdapterRegistry
from vault.settings import VaultSettings
from vault.validation import MAX_BPS

if TYPE_CHECKING:
    from vault.tracking.journal import OperationJournal

logger = logging.getLogger("vault.allocator")


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def _returned_amount(record: AdapterRecord, value) -> int:
    amount = int(value)
    if amount < 0:
        raise AdapterError(record.adapter_id, f"returned negative amount {amount}")
    return amount


@dataclass
class RebalanceReport:
    withdrawals: AllocationReport
    deposits: AllocationReport
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "withdrawn": self.withdrawals.total,
            "redeployed": self.deposits.total,
            "withdrawals": self.withdrawals.to_dict(),
            "deposits": self.deposits.to_dict(),
        }


class Allocator:

    def __init__(self, assets: AssetLedger, registry: AdapterRegistry, settings: VaultSettings,
                 journal: Optional["OperationJournal"] = None,
                 clock: Callable[[], float] = time.time):
        self.assets = assets
        self.registry = registry
        self.settings = settings
        self.journal = journal
        self._clock = clock
        self.total_rewards_harvested = 0
        self.last_rebalance: Optional[float] = None
        self._rebalance_count = 0
        self._failure_count = 0

    # ── Distribution ───────────────────────────────────────────────

    def investable_amount(self) -> int:
        investable = self.assets.balance * self.settings.investment_ratio_bps // MAX_BPS
        if investable < self.settings.min_investment_amount:
            return 0
        return investable

    async def distribute(self) -> AllocationReport:
        """Push investable idle funds into active adapters by weight."""
        report = AllocationReport(AdapterOperation.DEPOSIT)
        investable = self.investable_amount()
        records = [r for r in self.registry.active_records() if r.weight_bps > 0]
        total_weight = sum(r.weight_bps for r in records)
        if investable == 0 or total_weight == 0:
            return report

        for record in records:
            allocation = investable * record.weight_bps // total_weight
            if allocation == 0:
                continue
            report.results.append(await self._invest(record, allocation))

        logger.info(
            f"Distributed {report.total} of {investable} investable across "
            f"{len(report.succeeded)}/{len(records)} adapters"
        )
        return report

    async def _invest(self, record: AdapterRecord, allocation: int) -> AdapterCallResult:
        pulled = False
        try:
            if not await record.adapter.is_active():
                return self._failed(record, AdapterOperation.DEPOSIT, "adapter reports inactive")
            self.assets.pull(record.adapter_id, allocation)
            pulled = True
            await record.adapter.deposit(allocation)
        except Exception as e:
            if pulled:
                # The adapter never took the funds; put them back
                self.assets.credit(allocation, source=record.adapter_id)
            return self._failed(record, AdapterOperation.DEPOSIT, e)
        record.record_invested(allocation)
        return AdapterCallResult.success(record.adapter_id, AdapterOperation.DEPOSIT, allocation)

    # ── Withdrawal shortfall ───────────────────────────────────────

    async def withdraw_shortfall(self, shortfall: int) -> AllocationReport:
        """Raise ``shortfall`` from the adapters, proportional to what each holds.

        Best-effort: if the adapters cannot (or will not) return enough,
        the report simply totals less than requested. The caller decides
        what an uncovered shortfall means.
        """
        report = AllocationReport(AdapterOperation.WITHDRAW)
        if shortfall <= 0:
            return report

        values: Dict[str, int] = {}
        records: List[AdapterRecord] = []
        for record in self.registry.active_records():
            try:
                value = _returned_amount(record, await record.adapter.total_assets())
            except Exception as e:
                report.results.append(self._failed(record, AdapterOperation.VALUATION, e))
                continue
            if value > 0:
                values[record.adapter_id] = value
                records.append(record)

        total_value = sum(values.values())
        if total_value == 0:
            logger.warning(f"Shortfall of {shortfall} requested but adapters hold nothing")
            return report

        raised: Dict[str, int] = {}
        remaining = shortfall

        # Pass 1: proportional to each adapter's share of invested funds
        for record in records:
            if remaining <= 0:
                break
            target = min(_ceil_div(shortfall * values[record.adapter_id], total_value),
                         values[record.adapter_id], remaining)
            received = await self._divest(record, target, report)
            raised[record.adapter_id] = received
            remaining -= received

        # Pass 2: top up rounding gaps from whoever still holds value
        failed = {r.adapter_id for r in report.failures}
        for record in records:
            if remaining <= 0:
                break
            if record.adapter_id in failed:
                continue
            left = values[record.adapter_id] - raised.get(record.adapter_id, 0)
            if left <= 0:
                continue
            received = await self._divest(record, min(left, remaining), report)
            raised[record.adapter_id] = raised.get(record.adapter_id, 0) + received
            remaining -= received

        if remaining > 0:
            logger.warning(f"Shortfall only partially covered: raised {report.total} of {shortfall}")
        else:
            logger.info(f"Shortfall of {shortfall} covered from {len(report.succeeded)} adapter calls")
        return report

    async def _divest(self, record: AdapterRecord, amount: int, report: AllocationReport) -> int:
        if amount <= 0:
            return 0
        adapter = record.adapter
        try:
            held = int(await adapter.total_shares())
            shares = min(int(await adapter.convert_to_shares(amount)), held)
            if shares < held and await adapter.convert_to_assets(shares) < amount:
                shares += 1
            if shares <= 0:
                return 0
            received = _returned_amount(record, await adapter.withdraw(shares))
        except Exception as e:
            report.results.append(self._failed(record, AdapterOperation.WITHDRAW, e))
            return 0
        self.assets.credit(received, source=record.adapter_id)
        record.record_divested(received)
        report.results.append(AdapterCallResult.success(record.adapter_id, AdapterOperation.WITHDRAW, received))
        return received

    async def restore(self, report: AllocationReport) -> AllocationReport:
        """Push funds pulled by a shortfall withdrawal back where they came from.

        Used when the pull could not cover a payout. Best-effort: anything an
        adapter refuses to take back stays idle.
        """
        restored = AllocationReport(AdapterOperation.DEPOSIT)
        pulled: Dict[str, int] = {}
        for result in report.results:
            if result.ok and result.operation is AdapterOperation.WITHDRAW and result.amount > 0:
                pulled[result.adapter_id] = pulled.get(result.adapter_id, 0) + result.amount

        for adapter_id, amount in pulled.items():
            if not self.registry.exists(adapter_id):
                continue
            restored.results.append(await self._invest(self.registry.get(adapter_id), amount))

        logger.info(f"Restored {restored.total} of {sum(pulled.values())} pulled for an uncovered shortfall")
        return restored

    # ── Rebalance ──────────────────────────────────────────────────

    def rebalance_ready(self) -> bool:
        interval = self.settings.rebalance_interval_sec
        if not interval or self.last_rebalance is None:
            return True
        return self._clock() - self.last_rebalance >= interval

    async def rebalance(self) -> RebalanceReport:
        """Pull every active adapter's entire holding, then redistribute by weight."""
        if not self.rebalance_ready():
            wait = self.settings.rebalance_interval_sec - (self._clock() - self.last_rebalance)
            raise RebalanceCooldownError(f"rebalance on cooldown for another {wait:.0f}s")

        withdrawals = AllocationReport(AdapterOperation.WITHDRAW)
        for record in self.registry.active_records():
            try:
                shares = int(await record.adapter.total_shares())
                received = _returned_amount(record, await record.adapter.withdraw(shares)) if shares > 0 else 0
            except Exception as e:
                withdrawals.results.append(self._failed(record, AdapterOperation.WITHDRAW, e))
                continue
            self.assets.credit(received, source=record.adapter_id)
            record.invested = 0
            withdrawals.results.append(
                AdapterCallResult.success(record.adapter_id, AdapterOperation.WITHDRAW, received)
            )

        deposits = await self.distribute()
        self.last_rebalance = self._clock()
        self._rebalance_count += 1
        logger.info(f"REBALANCE #{self._rebalance_count}: withdrew {withdrawals.total}, redeployed {deposits.total}")
        return RebalanceReport(withdrawals=withdrawals, deposits=deposits)

    # ── Harvest ────────────────────────────────────────────────────

    async def harvest_all(self) -> AllocationReport:
        report = AllocationReport(AdapterOperation.HARVEST)
        for record in self.registry.active_records():
            try:
                reward = _returned_amount(record, await record.adapter.harvest())
            except Exception as e:
                report.results.append(self._failed(record, AdapterOperation.HARVEST, e))
                continue
            self.assets.credit(reward, source=record.adapter_id)
            report.results.append(AdapterCallResult.success(record.adapter_id, AdapterOperation.HARVEST, reward))
        self.total_rewards_harvested += report.total
        if report.total:
            logger.info(f"HARVEST: {report.total} collected (lifetime {self.total_rewards_harvested})")
        return report

    # ── Emergency exit ─────────────────────────────────────────────

    async def emergency_exit(self, record: AdapterRecord) -> AdapterCallResult:
        try:
            recovered = _returned_amount(record, await record.adapter.emergency_exit())
        except Exception as e:
            return self._failed(record, AdapterOperation.EMERGENCY_EXIT, e)
        self.assets.credit(recovered, source=record.adapter_id)
        record.invested = 0
        logger.warning(f"EMERGENCY EXIT {record.adapter_id}: recovered {recovered}")
        return AdapterCallResult.success(record.adapter_id, AdapterOperation.EMERGENCY_EXIT, recovered)

    # ── Valuation ──────────────────────────────────────────────────

    async def adapter_values(self) -> Dict[str, int]:
        """Reported assets per active adapter; adapters that fail to answer are left out."""
        values = {}
        for record in self.registry.active_records():
            try:
                values[record.adapter_id] = _returned_amount(record, await record.adapter.total_assets())
            except Exception as e:
                logger.warning(f"Valuation of {record.adapter_id} failed, skipping: {e}")
        return values

    async def weighted_apy(self) -> int:
        total_value = 0
        weighted = 0
        for record in self.registry.active_records():
            try:
                value = _returned_amount(record, await record.adapter.total_assets())
                apy = int(await record.adapter.get_apy())
            except Exception as e:
                logger.warning(f"APY query on {record.adapter_id} failed, skipping: {e}")
                continue
            total_value += value
            weighted += value * apy
        if total_value == 0:
            return 0
        return weighted // total_value

    async def pending_rewards(self) -> int:
        total = 0
        for record in self.registry.active_records():
            try:
                total += _returned_amount(record, await record.adapter.get_pending_rewards())
            except Exception as e:
                logger.warning(f"Pending-rewards query on {record.adapter_id} failed: {e}")
        return total

    def _failed(self, record: AdapterRecord, operation: AdapterOperation, error) -> AdapterCallResult:
        self._failure_count += 1
        result = AdapterCallResult.failure(record.adapter_id, operation, error)
        logger.warning(f"Adapter {record.adapter_id} {operation.value} failed: {result.error}")
        if self.journal:
            self.journal.record(
                "adapter_failure", record.adapter_id,
                details={"operation": operation.value, "error": result.error},
            )
        return result

    def get_status(self) -> dict:
        return {
            "total_rewards_harvested": self.total_rewards_harvested,
            "last_rebalance": self.last_rebalance,
            "rebalance_count": self._rebalance_count,
            "rebalance_ready": self.rebalance_ready(),
            "adapter_failures": self._failure_count,
            "investable": self.investable_amount(),
        }
