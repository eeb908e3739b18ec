"""
Adapter Registry — ordered collection of the vault's yield adapters.

Each record carries the adapter's target weight in basis points, an
active flag and a locally tracked ``invested`` counter (what the vault
pushed in minus what it pulled back out). Removal is soft: the record
stays for history with ``removed_at`` set.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from vault.adapters.base import Adapter
from vault.errors import (
    AdapterNotFoundError, DuplicateAdapterError, ValidationError, WeightCapExceededError,
)
from vault.validation import MAX_BPS, require_address, require_bps

logger = logging.getLogger("vault.registry")


@dataclass
class AdapterRecord:
    adapter_id: str
    adapter: Adapter
    weight_bps: int
    active: bool = True
    invested: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    removed_at: Optional[datetime] = None

    @property
    def removed(self) -> bool:
        return self.removed_at is not None

    def record_invested(self, amount: int) -> None:
        self.invested += amount

    def record_divested(self, amount: int) -> None:
        # Withdrawals include yield, so the counter can undershoot
        self.invested = max(0, self.invested - amount)


class AdapterRegistry:

    def __init__(self, enforce_weight_cap: bool = True, max_total_weight_bps: int = MAX_BPS):
        self.enforce_weight_cap = enforce_weight_cap
        self.max_total_weight_bps = max_total_weight_bps
        self._records: Dict[str, AdapterRecord] = {}

    def add(self, adapter_id: str, adapter: Adapter, weight_bps: int) -> AdapterRecord:
        require_address(adapter_id, "adapter id")
        require_bps(weight_bps, "adapter weight", allow_zero=False)
        if adapter is None:
            raise ValidationError("adapter instance must be provided")

        existing = self._records.get(adapter_id)
        if existing is not None and not existing.removed:
            raise DuplicateAdapterError(f"adapter {adapter_id} already registered")

        self._check_cap(extra=weight_bps)
        record = AdapterRecord(adapter_id=adapter_id, adapter=adapter, weight_bps=weight_bps)
        # Re-adding a removed id replaces its history record and moves it to the end
        self._records.pop(adapter_id, None)
        self._records[adapter_id] = record
        logger.info(f"Adapter added: {adapter_id} weight={weight_bps}bps")
        return record

    def remove(self, adapter_id: str) -> AdapterRecord:
        record = self.get(adapter_id)
        record.active = False
        record.weight_bps = 0
        record.removed_at = datetime.utcnow()
        logger.info(f"Adapter removed: {adapter_id}")
        return record

    def set_weight(self, adapter_id: str, weight_bps: int) -> AdapterRecord:
        record = self.get(adapter_id)
        require_bps(weight_bps, "adapter weight", allow_zero=False)
        if record.active:
            self._check_cap(extra=weight_bps - record.weight_bps)
        record.weight_bps = weight_bps
        logger.info(f"Adapter {adapter_id} weight -> {weight_bps}bps")
        return record

    def set_active(self, adapter_id: str, active: bool) -> AdapterRecord:
        record = self.get(adapter_id)
        if active and not record.active:
            self._check_cap(extra=record.weight_bps)
        record.active = active
        logger.info(f"Adapter {adapter_id} {'activated' if active else 'deactivated'}")
        return record

    def get(self, adapter_id: str) -> AdapterRecord:
        record = self._records.get(adapter_id)
        if record is None or record.removed:
            raise AdapterNotFoundError(f"adapter {adapter_id} not registered")
        return record

    def exists(self, adapter_id: str) -> bool:
        record = self._records.get(adapter_id)
        return record is not None and not record.removed

    def records(self, include_removed: bool = False) -> List[AdapterRecord]:
        return [r for r in self._records.values() if include_removed or not r.removed]

    def active_records(self) -> List[AdapterRecord]:
        return [r for r in self._records.values() if r.active and not r.removed]

    def total_active_weight(self) -> int:
        return sum(r.weight_bps for r in self.active_records())

    def total_invested(self) -> int:
        return sum(r.invested for r in self.records())

    def _check_cap(self, extra: int) -> None:
        if not self.enforce_weight_cap:
            return
        new_total = self.total_active_weight() + extra
        if new_total > self.max_total_weight_bps:
            raise WeightCapExceededError(
                f"active weight would be {new_total}bps > cap {self.max_total_weight_bps}bps"
            )
