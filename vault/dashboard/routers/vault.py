"""Vault endpoints — totals, adapters, per-user balances, journal."""

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/api/vault", tags=["vault"])


@router.get("/status")
async def vault_status(request: Request):
    vault = request.app.state.vault
    status = await vault.get_status()
    uptime = (datetime.now(timezone.utc) - request.app.state.start_time).total_seconds()
    status["uptime_seconds"] = round(uptime)
    status["timestamp"] = datetime.now(timezone.utc).isoformat()
    return status


@router.get("/adapters")
async def adapters(request: Request):
    return await request.app.state.vault.get_adapters()


@router.get("/users/{user}")
async def user_balance(request: Request, user: str):
    vault = request.app.state.vault
    info = await vault.get_user(user)
    if info["shares"] == 0 and info["reserved"] == 0:
        raise HTTPException(status_code=404, detail=f"no position for {user}")
    return info


@router.get("/journal")
async def journal(request: Request, limit: int = 50, event_type: str = ""):
    journal = request.app.state.journal
    if journal is None:
        return {"enabled": False, "events": []}
    events = journal.recent(limit=min(limit, 500), event_type=event_type or None)
    return {"enabled": True, "events": events, "summary": journal.get_summary()}
