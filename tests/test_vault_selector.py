"""
Tests for vault/selection/health.py

Covers:
  - Registration: duplicates, zero address, default flag
  - Selection policy: healthy default, fallback in registration order,
    nothing healthy (default / first registered), empty registry
  - Health and APY queries that raise count as unhealthy / 0
  - Weighted APY over healthy protocols
  - Status reporting
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from vault.adapters.simulated import SimulatedProtocol
from vault.errors import NoProtocolError, ValidationError
from vault.selection.health import HealthAwareSelector
from vault.validation import ZERO_ADDRESS


def _selector(*protocols, default=None):
    selector = HealthAwareSelector()
    for i, p in enumerate(protocols):
        selector.register_protocol(p.name, f"0xproto{i}", p, weight=1000 * (i + 1),
                                   is_default=(p.name == default))
    return selector


def _broken_client(name="broken"):
    client = MagicMock()
    client.name = name
    client.is_healthy = AsyncMock(side_effect=RuntimeError("rpc timeout"))
    client.get_apy = AsyncMock(side_effect=RuntimeError("rpc timeout"))
    return client


class TestRegistration:
    def test_duplicate_name_rejected(self):
        selector = _selector(SimulatedProtocol("p1"))
        with pytest.raises(ValidationError):
            selector.register_protocol("p1", "0xother", SimulatedProtocol("p1"))

    def test_zero_address_rejected(self):
        with pytest.raises(ValidationError):
            HealthAwareSelector().register_protocol("p1", ZERO_ADDRESS, SimulatedProtocol("p1"))

    def test_default_flag_moves(self):
        selector = _selector(SimulatedProtocol("p1"), SimulatedProtocol("p2"), default="p1")
        selector.set_default("p2")
        assert selector.default == "p2"
        assert not selector.entry("p1").is_default
        assert selector.entry("p2").is_default

    def test_removing_default_clears_it(self):
        selector = _selector(SimulatedProtocol("p1"), SimulatedProtocol("p2"), default="p1")
        selector.remove_protocol("p1")
        assert selector.default is None
        assert selector.names() == ["p2"]

    def test_remove_unknown(self):
        with pytest.raises(NoProtocolError):
            HealthAwareSelector().remove_protocol("nope")


class TestSelect:
    @pytest.mark.asyncio
    async def test_empty_registry(self):
        with pytest.raises(NoProtocolError):
            await HealthAwareSelector().select()

    @pytest.mark.asyncio
    async def test_healthy_default_wins(self):
        p1, p2 = SimulatedProtocol("p1"), SimulatedProtocol("p2")
        selector = _selector(p1, p2, default="p2")
        name, client = await selector.select()
        assert name == "p2"
        assert client is p2

    @pytest.mark.asyncio
    async def test_falls_back_in_registration_order(self):
        p1 = SimulatedProtocol("p1")
        p2 = SimulatedProtocol("p2", healthy=False)
        p3 = SimulatedProtocol("p3")
        selector = _selector(p1, p2, p3, default="p2")
        name, _ = await selector.select()
        assert name == "p1"
        status = await selector.get_status()
        assert status["fallbacks_used"] == 1

    @pytest.mark.asyncio
    async def test_nothing_healthy_returns_default(self):
        p1 = SimulatedProtocol("p1", healthy=False)
        p2 = SimulatedProtocol("p2", healthy=False)
        selector = _selector(p1, p2, default="p2")
        name, _ = await selector.select()
        assert name == "p2"

    @pytest.mark.asyncio
    async def test_nothing_healthy_no_default_returns_first(self):
        selector = _selector(SimulatedProtocol("p1", healthy=False), SimulatedProtocol("p2", healthy=False))
        name, _ = await selector.select()
        assert name == "p1"

    @pytest.mark.asyncio
    async def test_raising_health_check_counts_as_unhealthy(self):
        selector = HealthAwareSelector()
        selector.register_protocol("broken", "0xbroken", _broken_client(), is_default=True)
        selector.register_protocol("p2", "0xp2", SimulatedProtocol("p2"))
        assert await selector.check_health("broken") is False
        name, _ = await selector.select()
        assert name == "p2"


class TestApy:
    @pytest.mark.asyncio
    async def test_raising_apy_query_is_zero(self):
        selector = HealthAwareSelector()
        selector.register_protocol("broken", "0xbroken", _broken_client())
        assert await selector.get_apy("broken") == 0
        assert await selector.get_apy("unknown") == 0

    @pytest.mark.asyncio
    async def test_weighted_apy_over_healthy_protocols(self):
        selector = HealthAwareSelector()
        selector.register_protocol("p1", "0x1", SimulatedProtocol("p1", apy_bps=500), weight=7000)
        selector.register_protocol("p2", "0x2", SimulatedProtocol("p2", apy_bps=300), weight=3000)
        selector.register_protocol("p3", "0x3", SimulatedProtocol("p3", apy_bps=9000, healthy=False), weight=5000)
        # (7000*500 + 3000*300) / 10000
        assert await selector.weighted_apy() == 440

    @pytest.mark.asyncio
    async def test_weighted_apy_without_weights(self):
        selector = _selector()
        selector.register_protocol("p1", "0x1", SimulatedProtocol("p1"), weight=0)
        assert await selector.weighted_apy() == 0

    @pytest.mark.asyncio
    async def test_status(self):
        selector = _selector(SimulatedProtocol("p1", apy_bps=450), default="p1")
        status = await selector.get_status()
        assert status["default"] == "p1"
        assert status["protocols"][0]["healthy"] is True
        assert status["protocols"][0]["apy_bps"] == 450
