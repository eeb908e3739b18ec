"""
Vault settings — the ``vault:`` section of vault/config/vault.yaml.

Manager-tunable values (investment ratio, minimum investment, rebalance
interval) start here and can be changed at runtime through VaultCore.
"""
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import yaml

from vault.errors import ValidationError
from vault.validation import MAX_BPS

logger = logging.getLogger("vault.settings")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "vault.yaml"


@dataclass
class VaultSettings:
    asset_symbol: str = "USDC"
    decimals: int = 6
    investment_ratio_bps: int = MAX_BPS      # share of idle funds pushed into adapters
    min_investment_amount: int = 0           # deposits and distributions below this are skipped
    rebalance_interval_sec: int = 0          # cooldown between rebalances, 0 = on demand
    enforce_weight_cap: bool = True
    max_total_weight_bps: int = MAX_BPS
    auto_invest: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not self.asset_symbol:
            raise ValidationError("vault.asset_symbol must be set")
        if not 0 <= self.decimals <= 36:
            raise ValidationError(f"vault.decimals out of range: {self.decimals}")
        if not 0 <= self.investment_ratio_bps <= MAX_BPS:
            raise ValidationError(f"vault.investment_ratio_bps out of range: {self.investment_ratio_bps}")
        if self.min_investment_amount < 0:
            raise ValidationError("vault.min_investment_amount must be non-negative")
        if self.rebalance_interval_sec < 0:
            raise ValidationError("vault.rebalance_interval_sec must be non-negative")
        if not 0 < self.max_total_weight_bps <= MAX_BPS:
            raise ValidationError(f"vault.max_total_weight_bps out of range: {self.max_total_weight_bps}")

    @classmethod
    def from_dict(cls, cfg: Optional[dict]) -> "VaultSettings":
        cfg = cfg or {}
        return cls(
            asset_symbol=str(cfg.get('asset_symbol', cls.asset_symbol)),
            decimals=int(cfg.get('decimals', cls.decimals)),
            investment_ratio_bps=int(cfg.get('investment_ratio_bps', cls.investment_ratio_bps)),
            min_investment_amount=int(cfg.get('min_investment_amount', cls.min_investment_amount)),
            rebalance_interval_sec=int(cfg.get('rebalance_interval_sec', cls.rebalance_interval_sec)),
            enforce_weight_cap=bool(cfg.get('enforce_weight_cap', cls.enforce_weight_cap)),
            max_total_weight_bps=int(cfg.get('max_total_weight_bps', cls.max_total_weight_bps)),
            auto_invest=bool(cfg.get('auto_invest', cls.auto_invest)),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: Optional[str] = None) -> dict:
    """Read the full yaml config; missing file means defaults."""
    config_file = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_file.exists():
        logger.warning(f"Config not found at {config_file}, using defaults")
        return {}
    with open(config_file) as f:
        return yaml.safe_load(f) or {}
