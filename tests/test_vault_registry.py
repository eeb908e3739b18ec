"""
Tests for vault/registry/adapters.py

Covers:
  - Adding adapters, rejecting duplicates, empty/zero ids and bad weights
  - Weight cap on add, set_weight and re-activation
  - Cap disabled
  - Soft removal and re-adding a removed id
  - invested counter floored at zero
"""
import pytest

from vault.adapters.simulated import SimulatedAdapter
from vault.errors import (
    AdapterNotFoundError, DuplicateAdapterError, ValidationError, WeightCapExceededError,
)
from vault.registry.adapters import AdapterRegistry
from vault.validation import ZERO_ADDRESS


def _adapter(name="a"):
    return SimulatedAdapter(name)


class TestAdd:
    def test_add_and_lookup(self):
        reg = AdapterRegistry()
        record = reg.add("adapter-a", _adapter(), 4000)
        assert reg.get("adapter-a") is record
        assert record.active
        assert reg.total_active_weight() == 4000

    def test_duplicate_rejected(self):
        reg = AdapterRegistry()
        reg.add("adapter-a", _adapter(), 4000)
        with pytest.raises(DuplicateAdapterError):
            reg.add("adapter-a", _adapter(), 1000)

    @pytest.mark.parametrize("adapter_id", ["", ZERO_ADDRESS])
    def test_bad_id_rejected(self, adapter_id):
        with pytest.raises(ValidationError):
            AdapterRegistry().add(adapter_id, _adapter(), 1000)

    @pytest.mark.parametrize("weight", [0, -1, 10001])
    def test_bad_weight_rejected(self, weight):
        with pytest.raises(ValidationError):
            AdapterRegistry().add("adapter-a", _adapter(), weight)

    def test_weight_cap_enforced(self):
        reg = AdapterRegistry()
        reg.add("adapter-a", _adapter(), 6000)
        with pytest.raises(WeightCapExceededError):
            reg.add("adapter-b", _adapter(), 4001)
        assert not reg.exists("adapter-b")

    def test_weight_cap_disabled(self):
        reg = AdapterRegistry(enforce_weight_cap=False)
        reg.add("adapter-a", _adapter(), 8000)
        reg.add("adapter-b", _adapter(), 8000)
        assert reg.total_active_weight() == 16000


class TestUpdates:
    def test_set_weight_respects_cap(self):
        reg = AdapterRegistry()
        reg.add("adapter-a", _adapter(), 4000)
        reg.add("adapter-b", _adapter(), 6000)
        with pytest.raises(WeightCapExceededError):
            reg.set_weight("adapter-a", 4001)
        reg.set_weight("adapter-a", 3000)
        assert reg.total_active_weight() == 9000

    def test_reactivation_checks_cap(self):
        reg = AdapterRegistry()
        reg.add("adapter-a", _adapter(), 5000)
        reg.set_active("adapter-a", False)
        reg.add("adapter-b", _adapter(), 6000)
        with pytest.raises(WeightCapExceededError):
            reg.set_active("adapter-a", True)
        assert reg.active_records()[0].adapter_id == "adapter-b"

    def test_unknown_adapter(self):
        with pytest.raises(AdapterNotFoundError):
            AdapterRegistry().set_weight("missing", 100)

    def test_invested_counter_floors_at_zero(self):
        record = AdapterRegistry().add("adapter-a", _adapter(), 1000)
        record.record_invested(100)
        record.record_divested(130)
        assert record.invested == 0


class TestRemoval:
    def test_removal_is_soft(self):
        reg = AdapterRegistry()
        reg.add("adapter-a", _adapter(), 4000)
        record = reg.remove("adapter-a")
        assert not record.active
        assert record.weight_bps == 0
        assert record.removed_at is not None
        assert not reg.exists("adapter-a")
        assert reg.records() == []
        assert reg.records(include_removed=True) == [record]
        with pytest.raises(AdapterNotFoundError):
            reg.get("adapter-a")

    def test_removal_frees_weight(self):
        reg = AdapterRegistry()
        reg.add("adapter-a", _adapter(), 10000)
        reg.remove("adapter-a")
        reg.add("adapter-b", _adapter(), 10000)
        assert reg.total_active_weight() == 10000

    def test_removed_id_can_be_added_again(self):
        reg = AdapterRegistry()
        reg.add("adapter-a", _adapter(), 4000)
        reg.remove("adapter-a")
        record = reg.add("adapter-a", _adapter("a2"), 2000)
        assert reg.get("adapter-a") is record
        assert len(reg.records(include_removed=True)) == 1
