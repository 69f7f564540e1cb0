"""Tests for user, holding and portfolio API endpoints."""

import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_monitor, get_storage
from app.main import app
from app.services.cache import ValuationCache
from app.services.monitor import HoldingMonitor
from app.services.storage import SqlStorage
from app.services.valuation import ValuationFetcher

NOW = datetime(2026, 10, 19, 14, 5)


def _jsonp(code: str, gszzl: str = "1.35") -> str:
    payload = {
        "fundcode": code,
        "name": "华夏成长混合",
        "jzrq": "2026-10-16",
        "dwjz": "1.4800",
        "gsz": "1.5000",
        "gszzl": gszzl,
        "gztime": "2026-10-19 14:05",
    }
    return f"jsonpgz({json.dumps(payload, ensure_ascii=False)});"


@pytest_asyncio.fixture
async def services():
    storage = SqlStorage("sqlite+aiosqlite:///:memory:")
    await storage.init()
    bodies = {"000001": _jsonp("000001"), "000002": _jsonp("000002", gszzl="-1.00")}

    def handler(request: httpx.Request) -> httpx.Response:
        code = request.url.path.rsplit("/", 1)[-1].removesuffix(".js")
        if code not in bodies:
            return httpx.Response(404)
        return httpx.Response(200, text=bodies[code])

    oracle_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    monitor = HoldingMonitor(
        storage, ValuationFetcher(client=oracle_client), ValuationCache(), clock=lambda: NOW
    )
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_monitor] = lambda: monitor

    yield storage, monitor

    app.dependency_overrides.clear()
    await oracle_client.aclose()
    await storage.close()


@pytest_asyncio.fixture
async def client(services):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create_user(client, name="张三") -> str:
    resp = await client.post("/api/users", json={"name": name})
    assert resp.status_code == 200
    return resp.json()["id"]


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_create_and_list_users(client):
    uid = await _create_user(client, "  张三  ")
    resp = await client.get("/api/users")
    assert resp.status_code == 200
    users = resp.json()
    assert len(users) == 1
    assert users[0]["id"] == uid
    assert users[0]["name"] == "张三"


@pytest.mark.asyncio
async def test_create_user_rejects_blank_name(client):
    resp = await client.post("/api/users", json={"name": "   "})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_add_and_list_holdings(client):
    uid = await _create_user(client)
    resp = await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": " 000001 ", "initial_cost": 9000, "current_amount": 10000},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["code"] == "000001"
    assert data["total_profit"] == 1000.0
    assert data["settlement_status"] == "before_cutoff"
    assert data["day_profit"] is None

    resp = await client.get(f"/api/users/{uid}/holdings")
    assert [h["code"] for h in resp.json()] == ["000001"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"code": "", "initial_cost": 1, "current_amount": 1},
        {"code": "000001", "initial_cost": "abc", "current_amount": 1},
        {"code": "000001", "initial_cost": 1},
        {"code": "000001", "initial_cost": 1, "current_amount": 1, "last_settlement_date": "today"},
    ],
)
async def test_add_holding_validation(client, body):
    uid = await _create_user(client)
    resp = await client.post(f"/api/users/{uid}/holdings", json=body)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_holdings_for_unknown_user(client):
    resp = await client.get("/api/users/nobody/holdings")
    assert resp.status_code == 404
    resp = await client.post(
        "/api/users/nobody/holdings",
        json={"code": "000001", "initial_cost": 1, "current_amount": 1},
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_patch_holding(client):
    uid = await _create_user(client)
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000001", "initial_cost": 9000, "current_amount": 10000},
    )
    resp = await client.patch(
        f"/api/users/{uid}/holdings/000001", json={"current_amount": 10500.5}
    )
    assert resp.status_code == 200
    assert resp.json()["current_amount"] == 10500.5
    assert resp.json()["initial_cost"] == 9000.0


@pytest.mark.asyncio
async def test_patch_holding_errors(client):
    uid = await _create_user(client)
    resp = await client.patch(f"/api/users/{uid}/holdings/000001", json={"current_amount": 1})
    assert resp.status_code == 404
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000001", "initial_cost": 9000, "current_amount": 10000},
    )
    resp = await client.patch(f"/api/users/{uid}/holdings/000001", json={})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_delete_holding(client, services):
    storage, _ = services
    uid = await _create_user(client)
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000001", "initial_cost": 9000, "current_amount": 10000},
    )
    await client.post(f"/api/users/{uid}/holdings/000001/refresh")

    resp = await client.delete(f"/api/users/{uid}/holdings/000001")
    assert resp.status_code == 200
    assert await storage.get_holdings(uid) == []
    assert await storage.get_history(uid, "2026-10-19") == {}

    resp = await client.delete(f"/api/users/{uid}/holdings/000001")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_refresh_holding(client, services):
    storage, _ = services
    uid = await _create_user(client)
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000001", "initial_cost": 9000, "current_amount": 10000},
    )
    resp = await client.post(f"/api/users/{uid}/holdings/000001/refresh")
    assert resp.status_code == 200
    data = resp.json()
    assert data["day_profit"] == 135.0
    assert data["est_nav"] == 1.5
    assert data["est_change_pct"] == 1.35
    assert data["fund_name"] == "华夏成长混合"
    # 14:05 is before the cutoff
    assert data["current_amount"] == 10000.0
    assert data["last_settlement_date"] is None
    assert (await storage.get_holding(uid, "000001")).current_amount == Decimal("10000.00")


@pytest.mark.asyncio
async def test_refresh_with_oracle_down(client):
    uid = await _create_user(client)
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "999999", "initial_cost": 1, "current_amount": 1},
    )
    resp = await client.post(f"/api/users/{uid}/holdings/999999/refresh")
    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_portfolio_totals(client):
    uid = await _create_user(client)
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000001", "initial_cost": 100, "current_amount": 120},
    )
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000002", "initial_cost": 200, "current_amount": 180},
    )
    resp = await client.get(f"/api/users/{uid}/portfolio")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_amount"] == 300.0
    assert data["total_initial_amount"] == 300.0
    assert data["total_profit"] == 0.0
    assert data["total_return_rate"] == 0.0
    assert data["total_day_profit"] == 0.0
    assert len(data["holdings"]) == 2


@pytest.mark.asyncio
async def test_portfolio_day_profit_after_poll(client, services):
    _, monitor = services
    uid = await _create_user(client)
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000001", "initial_cost": 9000, "current_amount": 10000},
    )
    await client.post(
        f"/api/users/{uid}/holdings",
        json={"code": "000002", "initial_cost": 5000, "current_amount": 4000},
    )
    await monitor.poll_user(uid)

    data = (await client.get(f"/api/users/{uid}/portfolio")).json()
    # 10000 * 1.35% + 4000 * -1.00% = 135 - 40
    assert data["total_day_profit"] == 95.0
    assert data["total_profit"] == 0.0


@pytest.mark.asyncio
async def test_delete_user_cascades(client, services):
    storage, monitor = services
    uid = await _create_user(client)
    keep = await _create_user(client, "李四")
    for user in (uid, keep):
        await client.post(
            f"/api/users/{user}/holdings",
            json={"code": "000001", "initial_cost": 9000, "current_amount": 10000},
        )
        await client.post(f"/api/users/{user}/holdings/000001/refresh")

    resp = await client.delete(f"/api/users/{uid}")
    assert resp.status_code == 200
    assert await storage.get_user(uid) is None
    assert await storage.get_holdings(uid) == []
    assert await storage.get_history(uid, "2026-10-19") == {}
    assert monitor.cache.for_user(uid) == {}
    assert len(await storage.get_holdings(keep)) == 1

    resp = await client.delete(f"/api/users/{uid}")
    assert resp.status_code == 404
