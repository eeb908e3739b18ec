"""
Tests for vault/adapters/ (base, simulated, multi_protocol)

Covers:
  - AdapterCallResult / AllocationReport aggregation
  - SimulatedAdapter share math, yield, harvest, emergency exit, shutdown
  - Interest accrual over time
  - MultiProtocolAdapter routing through the selector, fallback on an
    unhealthy default, multi-protocol withdrawal, partial redemption
  - Best-effort harvest across protocols
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from vault.adapters.base import AdapterCallResult, AdapterOperation, AllocationReport
from vault.adapters.multi_protocol import MultiProtocolAdapter
from vault.adapters.simulated import SECONDS_PER_YEAR, SimulatedAdapter, SimulatedProtocol
from vault.errors import AdapterError


class TestAllocationReport:
    def test_total_counts_only_successes(self):
        report = AllocationReport(AdapterOperation.HARVEST, [
            AdapterCallResult.success("a", AdapterOperation.HARVEST, 40),
            AdapterCallResult.failure("b", AdapterOperation.HARVEST, RuntimeError("revert")),
            AdapterCallResult.success("c", AdapterOperation.HARVEST, 2),
        ])
        assert report.total == 42
        assert report.succeeded == ["a", "c"]
        assert [f.adapter_id for f in report.failures] == ["b"]
        assert report.failures[0].error == "revert"

    def test_failure_without_message_uses_type_name(self):
        result = AdapterCallResult.failure("a", AdapterOperation.DEPOSIT, TimeoutError())
        assert result.error == "TimeoutError"

    def test_to_dict(self):
        report = AllocationReport(AdapterOperation.DEPOSIT, [
            AdapterCallResult.success("a", AdapterOperation.DEPOSIT, 10),
        ])
        d = report.to_dict()
        assert d["operation"] == "deposit"
        assert d["total"] == 10
        assert d["results"][0]["ok"] is True


class TestSimulatedAdapter:
    @pytest.mark.asyncio
    async def test_deposit_bootstrap_then_proportional(self):
        adapter = SimulatedAdapter("sim")
        assert await adapter.deposit(1000) == 1000
        adapter.add_yield(1000)
        assert await adapter.deposit(500) == 250
        assert await adapter.total_assets() == 2500
        assert await adapter.total_shares() == 1250

    @pytest.mark.asyncio
    async def test_withdraw_returns_share_of_assets(self):
        adapter = SimulatedAdapter("sim")
        await adapter.deposit(1000)
        adapter.add_yield(100)
        assert await adapter.withdraw(500) == 550
        assert await adapter.total_assets() == 550

    @pytest.mark.asyncio
    async def test_withdraw_more_than_held(self):
        adapter = SimulatedAdapter("sim")
        await adapter.deposit(100)
        with pytest.raises(AdapterError):
            await adapter.withdraw(101)

    @pytest.mark.asyncio
    async def test_harvest_resets_pending(self):
        adapter = SimulatedAdapter("sim")
        adapter.add_rewards(25)
        assert await adapter.get_pending_rewards() == 25
        assert await adapter.harvest() == 25
        assert await adapter.harvest() == 0

    @pytest.mark.asyncio
    async def test_emergency_exit(self):
        adapter = SimulatedAdapter("sim")
        await adapter.deposit(700)
        assert await adapter.emergency_exit() == 700
        assert await adapter.total_assets() == 0
        assert await adapter.total_shares() == 0

    @pytest.mark.asyncio
    async def test_shutdown_blocks_deposits(self):
        adapter = SimulatedAdapter("sim")
        adapter.shutdown()
        assert await adapter.is_active() is False
        with pytest.raises(AdapterError):
            await adapter.deposit(100)

    @pytest.mark.asyncio
    async def test_accrue_one_year(self):
        adapter = SimulatedAdapter("sim", apy_bps=1000, reward_bps=0)
        await adapter.deposit(1_000_000)
        assert adapter.accrue(SECONDS_PER_YEAR) == 100_000
        assert await adapter.total_assets() == 1_100_000


class TestMultiProtocolAdapter:
    def _adapter(self, primary_healthy=True):
        primary = SimulatedProtocol("primary", apy_bps=500, healthy=primary_healthy)
        backup = SimulatedProtocol("backup", apy_bps=300)
        adapter = MultiProtocolAdapter("multi")
        adapter.add_protocol(primary, "0xprimary", weight=7000, is_default=True)
        adapter.add_protocol(backup, "0xbackup", weight=3000)
        return adapter, primary, backup

    @pytest.mark.asyncio
    async def test_deposit_goes_to_default(self):
        adapter, primary, backup = self._adapter()
        assert await adapter.deposit(1000) == 1000
        assert await primary.balance() == 1000
        assert await backup.balance() == 0

    @pytest.mark.asyncio
    async def test_deposit_falls_back_when_default_unhealthy(self):
        adapter, primary, backup = self._adapter(primary_healthy=False)
        await adapter.deposit(1000)
        assert await primary.balance() == 0
        assert await backup.balance() == 1000

    @pytest.mark.asyncio
    async def test_withdraw_spans_protocols(self):
        adapter, primary, backup = self._adapter()
        await adapter.deposit(1000)
        primary.healthy = False
        await adapter.deposit(500)
        primary.healthy = True
        assert await adapter.total_shares() == 1500

        assert await adapter.withdraw(1500) == 1500
        assert await adapter.total_assets() == 0
        assert await adapter.total_shares() == 0

    @pytest.mark.asyncio
    async def test_partial_redemption_raises_and_keeps_funds(self):
        adapter, primary, backup = self._adapter()
        await adapter.deposit(1000)
        primary.healthy = False
        await adapter.deposit(500)

        # primary refuses to redeem; only backup's 500 comes back, then goes back in
        with pytest.raises(AdapterError):
            await adapter.withdraw(1500)
        assert await adapter.total_shares() == 1500
        assert await adapter.total_assets() == 1500

    @pytest.mark.asyncio
    async def test_harvest_tolerates_failing_protocol(self):
        adapter, primary, backup = self._adapter()
        backup.add_rewards(12)
        broken = MagicMock()
        broken.name = "broken"
        broken.claim_rewards = AsyncMock(side_effect=RuntimeError("revert"))
        broken.balance = AsyncMock(return_value=0)
        adapter.add_protocol(broken, "0xbroken")
        assert await adapter.harvest() == 12

    @pytest.mark.asyncio
    async def test_emergency_exit_collects_everything(self):
        adapter, primary, backup = self._adapter()
        await adapter.deposit(1000)
        primary.healthy = False
        await adapter.deposit(500)
        primary.healthy = True
        assert await adapter.emergency_exit() == 1500
        assert await adapter.total_shares() == 0

    @pytest.mark.asyncio
    async def test_apy_is_balance_weighted(self):
        adapter, primary, backup = self._adapter()
        await adapter.deposit(3000)
        primary.healthy = False
        await adapter.deposit(1000)
        primary.healthy = True
        # (3000*500 + 1000*300) / 4000
        assert await adapter.get_apy() == 450

    @pytest.mark.asyncio
    async def test_apy_falls_back_to_selector_weights_when_empty(self):
        adapter, _, _ = self._adapter()
        # (7000*500 + 3000*300) / 10000
        assert await adapter.get_apy() == 440

    @pytest.mark.asyncio
    async def test_inactive_without_protocols(self):
        assert await MultiProtocolAdapter("empty").is_active() is False
