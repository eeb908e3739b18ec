"""FastAPI status server for the vault — read-only REST endpoints."""

import argparse
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vault.core import VaultCore
from vault.dashboard.routers import vault as vault_routes
from vault.tracking.journal import OperationJournal

logger = logging.getLogger("vault.dashboard")


def create_app(vault: VaultCore, journal: Optional[OperationJournal] = None, lifespan=None) -> FastAPI:
    app = FastAPI(title="Yield Vault Dashboard", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.state.vault = vault
    app.state.journal = journal
    app.state.start_time = datetime.now(timezone.utc)

    app.include_router(vault_routes.router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


def main():
    parser = argparse.ArgumentParser(description="Yield Vault Dashboard Server")
    parser.add_argument("--port", type=int, default=8090)
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--config", type=str, default=None)
    args = parser.parse_args()

    import uvicorn
    from vault.orchestrator import VaultService

    service = VaultService(config_path=args.config)

    @asynccontextmanager
    async def lifespan(app):
        await service.register_adapters()
        yield

    app = create_app(service.vault, service.journal, lifespan=lifespan)

    logger.info(f"Starting dashboard on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
