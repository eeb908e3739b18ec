"""
Vault Service — wires the vault together and keeps it running.

Loads config, sets up logging, builds the access controller, journal and
VaultCore, registers the configured adapters, then runs the periodic
loops: harvest, rebalance (when the cooldown allows), paper-mode yield
accrual and status monitoring. Optionally serves the dashboard API.

Usage:
    python -m vault [--config path/to/vault.yaml] [--dashboard]
"""
import asyncio
import logging
import signal as sig
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from vault.access.roles import AccessController, Role
from vault.adapters.base import Adapter
from vault.adapters.multi_protocol import MultiProtocolAdapter
from vault.adapters.simulated import SimulatedAdapter, SimulatedProtocol
from vault.core import VaultCore
from vault.errors import RebalanceCooldownError, ValidationError, VaultPausedError
from vault.settings import VaultSettings, load_config
from vault.tracking.journal import OperationJournal

logger = logging.getLogger("vault.service")

DEFAULT_ADMIN = "0xA11CE00000000000000000000000000000000001"


def build_adapter(spec: dict) -> Adapter:
    """Instantiate an adapter from one entry of the ``adapters:`` config list."""
    kind = spec.get('type', 'simulated')
    name = spec.get('id') or spec.get('name')
    if not name:
        raise ValidationError("adapter spec needs an id")

    if kind == 'simulated':
        return SimulatedAdapter(
            name=name,
            apy_bps=int(spec.get('apy_bps', 500)),
            reward_bps=int(spec.get('reward_bps', 0)),
        )

    if kind == 'multi_protocol':
        adapter = MultiProtocolAdapter(name=name)
        protocols = spec.get('protocols', [])
        if not protocols:
            raise ValidationError(f"multi_protocol adapter {name} lists no protocols")
        for p in protocols:
            adapter.add_protocol(
                SimulatedProtocol(p['name'], apy_bps=int(p.get('apy_bps', 400))),
                address=p['address'],
                weight=int(p.get('weight', 0)),
                is_default=bool(p.get('default', False)),
            )
        return adapter

    raise ValidationError(f"unknown adapter type: {kind}")


class VaultService:

    def __init__(self, config_path: Optional[str] = None, config: Optional[dict] = None):
        self.config = config if config is not None else load_config(config_path)
        self._setup_logging()

        self.settings = VaultSettings.from_dict(self.config.get('vault', {}))

        roles_cfg = self.config.get('roles', {})
        self.admin = roles_cfg.get('admin', DEFAULT_ADMIN)
        self.access = AccessController(self.admin)
        for account in roles_cfg.get('managers', []):
            self.access.grant_role(self.admin, Role.MANAGER, account)
        for account in roles_cfg.get('settlement', []):
            self.access.grant_role(self.admin, Role.SETTLEMENT, account)

        journal_cfg = self.config.get('journal', {})
        self.journal = (
            OperationJournal(journal_cfg.get('db_path', 'data/vault.db'))
            if journal_cfg.get('enabled', True) else None
        )

        self.vault = VaultCore(self.access, self.settings, journal=self.journal)

        service_cfg = self.config.get('service', {})
        self.harvest_interval = int(service_cfg.get('harvest_interval_sec', 3600))
        self.monitor_interval = int(service_cfg.get('monitor_interval_sec', 60))
        self.yield_simulation = bool(service_cfg.get('yield_simulation', True))

        self._adapter_specs: List[dict] = self.config.get('adapters', [])
        self._running = False
        self._start_time: Optional[datetime] = None
        self._tasks: List[asyncio.Task] = []
        self._last_accrual = time.time()

    def _setup_logging(self):
        log_cfg = self.config.get('logging', {})
        log_level = log_cfg.get('level', 'INFO')
        log_file = log_cfg.get('file', 'logs/vault.log')

        vault_logger = logging.getLogger("vault")
        vault_logger.setLevel(getattr(logging, log_level, logging.INFO))

        if not vault_logger.handlers:
            if log_file:
                log_path = Path(log_file)
                log_path.parent.mkdir(parents=True, exist_ok=True)
                fh = logging.FileHandler(log_path)
                fh.setLevel(logging.DEBUG)
                fh.setFormatter(logging.Formatter(
                    '%(asctime)s | %(name)-20s | %(levelname)-5s | %(message)s',
                    datefmt='%Y-%m-%d %H:%M:%S',
                ))
                vault_logger.addHandler(fh)

            ch = logging.StreamHandler()
            ch.setLevel(getattr(logging, log_level, logging.INFO))
            ch.setFormatter(logging.Formatter(
                '%(asctime)s | %(name)-20s | %(levelname)-5s | %(message)s',
                datefmt='%H:%M:%S',
            ))
            vault_logger.addHandler(ch)

    async def register_adapters(self) -> int:
        """Register configured adapters; a bad entry is logged and skipped."""
        registered = 0
        for spec in self._adapter_specs:
            try:
                adapter = build_adapter(spec)
                await self.vault.add_adapter(self.admin, adapter.name, adapter, int(spec.get('weight_bps', 0)))
                registered += 1
            except Exception as e:
                logger.error(f"Could not register adapter {spec.get('id')}: {e}")
        logger.info(f"{registered}/{len(self._adapter_specs)} adapters registered")
        return registered

    async def start(self):
        self._running = True
        self._start_time = datetime.utcnow()

        logger.info("=" * 60)
        logger.info(f"  YIELD VAULT — {self.settings.asset_symbol}")
        logger.info("=" * 60)

        await self.register_adapters()

        self._tasks = [
            asyncio.create_task(self._run_harvest_loop(), name="harvest"),
            asyncio.create_task(self._run_monitoring(), name="monitoring"),
        ]
        if self.settings.rebalance_interval_sec:
            self._tasks.append(asyncio.create_task(self._run_rebalance_loop(), name="rebalance"))
        else:
            logger.info("Rebalance interval is 0, rebalancing only on demand")
        if self.yield_simulation:
            self._tasks.append(asyncio.create_task(self._run_yield_simulation(), name="yield_simulation"))

        logger.info(f"All {len(self._tasks)} subsystems launched")
        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        except asyncio.CancelledError:
            logger.info("Vault service shutting down...")
        finally:
            await self.stop()

    async def stop(self):
        if not self._running:
            return
        self._running = False
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        logger.info("Vault service stopped")
        self._log_status()

    # --- Loops ---

    async def _run_harvest_loop(self):
        while self._running:
            await asyncio.sleep(self.harvest_interval)
            try:
                report = await self.vault.harvest_all(self.admin)
                if report.failures:
                    logger.warning(f"Harvest: {len(report.failures)} adapter(s) failed")
            except VaultPausedError:
                logger.debug("Harvest skipped, vault paused")
            except Exception as e:
                logger.error(f"Harvest loop error: {e}")

    async def _run_rebalance_loop(self):
        while self._running:
            await asyncio.sleep(self.monitor_interval)
            if not self.vault.allocator.rebalance_ready():
                continue
            try:
                await self.vault.rebalance(self.admin)
            except (VaultPausedError, RebalanceCooldownError) as e:
                logger.debug(f"Rebalance skipped: {e}")
            except Exception as e:
                logger.error(f"Rebalance loop error: {e}")

    async def _run_yield_simulation(self):
        """Paper mode: accrue interest on simulated adapters and protocols."""
        while self._running:
            await asyncio.sleep(self.monitor_interval)
            self.accrue_simulated_yield()

    def accrue_simulated_yield(self, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        elapsed = max(0.0, now - self._last_accrual)
        self._last_accrual = now
        gained = 0
        for record in self.vault.registry.active_records():
            adapter = record.adapter
            if isinstance(adapter, SimulatedAdapter):
                gained += adapter.accrue(elapsed)
            elif isinstance(adapter, MultiProtocolAdapter):
                for name in adapter.selector.names():
                    protocol = adapter.selector.client(name)
                    if isinstance(protocol, SimulatedProtocol):
                        gained += protocol.accrue(elapsed)
        return gained

    async def _run_monitoring(self):
        while self._running:
            await asyncio.sleep(self.monitor_interval)
            try:
                status = await self.vault.get_status()
                logger.info(
                    f"STATUS: assets={status['total_assets']} idle={status['idle']} "
                    f"shares={status['total_shares']} apy={status['weighted_apy_pct']:.2f}% "
                    f"paused={status['paused']}"
                )
            except Exception as e:
                logger.debug(f"Monitoring error: {e}")

    def _log_status(self):
        uptime = (datetime.utcnow() - self._start_time).total_seconds() if self._start_time else 0
        logger.info(
            f"Uptime {uptime/3600:.1f}h | shares={self.vault.total_shares} "
            f"deposits={self.vault.total_deposits} idle={self.vault.idle_balance} "
            f"harvested={self.vault.allocator.total_rewards_harvested}"
        )
        if self.journal:
            logger.info(f"Journal: {self.journal.get_summary()}")


async def main():
    """Entry point for the standalone vault service."""
    import argparse
    parser = argparse.ArgumentParser(description="Yield Vault Service")
    parser.add_argument('--config', default=None, help='Config file path')
    parser.add_argument('--dashboard', action='store_true', help='Serve the status API alongside the service')
    args = parser.parse_args()

    service = VaultService(config_path=args.config)

    loop = asyncio.get_running_loop()
    for s in (sig.SIGINT, sig.SIGTERM):
        loop.add_signal_handler(s, lambda: asyncio.create_task(service.stop()))

    if args.dashboard:
        import uvicorn
        from vault.dashboard.server import create_app

        dash_cfg = service.config.get('dashboard', {})
        app = create_app(service.vault, service.journal)
        server = uvicorn.Server(uvicorn.Config(
            app, host=dash_cfg.get('host', '0.0.0.0'), port=int(dash_cfg.get('port', 8090)),
            log_level="info",
        ))
        await asyncio.gather(service.start(), server.serve())
    else:
        await service.start()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
