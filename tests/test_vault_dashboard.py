"""Tests for the vault dashboard endpoints."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from vault.access.roles import AccessController, Role
from vault.adapters.simulated import SimulatedAdapter
from vault.core import VaultCore
from vault.dashboard.server import create_app
from vault.tracking.journal import OperationJournal


async def _seed(vault):
    await vault.add_adapter("0xadmin", "0xsim", SimulatedAdapter("sim", apy_bps=400), 10000)
    await vault.deposit("0xalice", 1000)
    await vault.reserve_funds("0xsettle", "0xalice", "USDC", 100, "rental")


@pytest.fixture
def journal(tmp_path):
    return OperationJournal(str(tmp_path / "vault.db"))


@pytest.fixture
def client(journal):
    access = AccessController("0xadmin")
    access.grant_role("0xadmin", Role.SETTLEMENT, "0xsettle")
    vault = VaultCore(access, journal=journal)
    asyncio.run(_seed(vault))
    return TestClient(create_app(vault, journal))


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_status(client):
    data = client.get("/api/vault/status").json()
    assert data["total_assets"] == 1000
    assert data["total_shares"] == 1000
    assert data["total_reserved"] == 100
    assert data["weighted_apy_bps"] == 400
    assert "uptime_seconds" in data


def test_adapters(client):
    data = client.get("/api/vault/adapters").json()
    assert len(data) == 1
    assert data[0]["adapter_id"] == "0xsim"
    assert data[0]["weight_bps"] == 10000


def test_user(client):
    data = client.get("/api/vault/users/0xalice").json()
    assert data["balance"] == 1000
    assert data["available"] == 900


def test_unknown_user(client):
    assert client.get("/api/vault/users/0xnobody").status_code == 404


def test_journal(client):
    data = client.get("/api/vault/journal", params={"event_type": "deposit"}).json()
    assert data["enabled"] is True
    assert [e["actor"] for e in data["events"]] == ["0xalice"]
    assert data["summary"]["by_type"]["reserve"] == 1


def test_journal_disabled():
    vault = VaultCore(AccessController("0xadmin"))
    client = TestClient(create_app(vault))
    assert client.get("/api/vault/journal").json() == {"enabled": False, "events": []}
