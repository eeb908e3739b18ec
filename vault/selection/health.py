"""
Health-Aware Selector — picks one live protocol among several redundant
integrations registered under a single adapter.

Policy:
  1. Default set and healthy        → default
  2. Otherwise, registration order  → first healthy protocol
  3. Nothing healthy                → the default anyway (or the first
                                      registered when no default is set)

Rule 3 is deliberate: the caller's next call against an unhealthy
protocol fails loudly instead of silently doing nothing.

A protocol whose health or APY query raises counts as unhealthy / 0 bps.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from vault.errors import NoProtocolError, ValidationError
from vault.validation import require_address

if TYPE_CHECKING:
    from vault.adapters.multi_protocol import LendingProtocol

logger = logging.getLogger("vault.selector")


@dataclass
class ProtocolEntry:
    name: str
    address: str
    weight: int = 0
    is_default: bool = False


class HealthAwareSelector:

    def __init__(self):
        self._entries: Dict[str, ProtocolEntry] = {}   # insertion order = registration order
        self._clients: Dict[str, "LendingProtocol"] = {}
        self._default: Optional[str] = None
        self._fallbacks_used = 0

    # --- Registration ---

    def register_protocol(self, name: str, address: str, client: "LendingProtocol",
                          weight: int = 0, is_default: bool = False) -> ProtocolEntry:
        require_address(address, "protocol address")
        if not name:
            raise ValidationError("protocol name must be set")
        if name in self._entries:
            raise ValidationError(f"protocol {name} already registered")
        if weight < 0:
            raise ValidationError(f"protocol weight must be non-negative, got {weight}")

        entry = ProtocolEntry(name=name, address=address, weight=weight)
        self._entries[name] = entry
        self._clients[name] = client
        if is_default:
            self.set_default(name)
        logger.info(f"Protocol registered: {name} @ {address} (weight={weight}, default={entry.is_default})")
        return entry

    def remove_protocol(self, name: str) -> None:
        if name not in self._entries:
            raise NoProtocolError(f"protocol {name} not registered")
        del self._entries[name]
        del self._clients[name]
        if self._default == name:
            self._default = None
        logger.info(f"Protocol removed: {name}")

    def set_default(self, name: str) -> None:
        if name not in self._entries:
            raise NoProtocolError(f"protocol {name} not registered")
        if self._default:
            self._entries[self._default].is_default = False
        self._entries[name].is_default = True
        self._default = name

    @property
    def default(self) -> Optional[str]:
        return self._default

    def names(self) -> List[str]:
        return list(self._entries)

    def entry(self, name: str) -> ProtocolEntry:
        return self._entries[name]

    def client(self, name: str) -> "LendingProtocol":
        return self._clients[name]

    # --- Queries (never raise for a misbehaving protocol) ---

    async def check_health(self, name: str) -> bool:
        client = self._clients.get(name)
        if client is None:
            return False
        try:
            return bool(await client.is_healthy())
        except Exception as e:
            logger.warning(f"Health check failed for {name}: {e}")
            return False

    async def get_apy(self, name: str) -> int:
        client = self._clients.get(name)
        if client is None:
            return 0
        try:
            return int(await client.get_apy())
        except Exception as e:
            logger.warning(f"APY query failed for {name}: {e}")
            return 0

    # --- Selection ---

    async def select(self) -> Tuple[str, "LendingProtocol"]:
        if not self._entries:
            raise NoProtocolError("no protocols registered")

        if self._default and await self.check_health(self._default):
            return self._default, self._clients[self._default]

        for name in self._entries:
            if name == self._default:
                continue
            if await self.check_health(name):
                self._fallbacks_used += 1
                logger.info(f"Default protocol {self._default} unavailable, falling back to {name}")
                return name, self._clients[name]

        chosen = self._default or next(iter(self._entries))
        logger.error(f"No healthy protocol, returning {chosen} so the caller fails loudly")
        return chosen, self._clients[chosen]

    async def weighted_apy(self) -> int:
        """Weight-averaged APY across healthy protocols, 0 when no weight is healthy."""
        total_weight = 0
        weighted = 0
        for name, entry in self._entries.items():
            if entry.weight <= 0 or not await self.check_health(name):
                continue
            weighted += entry.weight * await self.get_apy(name)
            total_weight += entry.weight
        if total_weight == 0:
            return 0
        return weighted // total_weight

    async def get_status(self) -> dict:
        protocols = []
        for name, entry in self._entries.items():
            protocols.append({
                "name": name,
                "address": entry.address,
                "weight": entry.weight,
                "default": entry.is_default,
                "healthy": await self.check_health(name),
                "apy_bps": await self.get_apy(name),
            })
        return {
            "default": self._default,
            "fallbacks_used": self._fallbacks_used,
            "protocols": protocols,
        }
