"""Holding and portfolio API routes."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_monitor, get_storage, get_user_or_404
from app.api.schemas import (
    HoldingCreateRequest,
    HoldingResponse,
    PortfolioResponse,
)
from app.models.domain import Holding, User
from app.services.aggregator import summarize_portfolio
from app.services.monitor import HoldingMonitor, PollResult
from app.services.settlement import settlement_status
from app.services.storage import HoldingPatch, Storage

router = APIRouter(prefix="/api/users/{user_id}", tags=["holdings"])


def _holding_response(
    holding: Holding, latest: PollResult | None, monitor: HoldingMonitor
) -> HoldingResponse:
    now = monitor.now()
    resp = HoldingResponse(
        code=holding.code,
        initial_cost=float(holding.initial_cost),
        current_amount=float(holding.current_amount),
        last_settlement_date=holding.last_settlement_date,
        total_profit=float(holding.total_profit),
        settlement_status=settlement_status(
            holding, now.strftime("%Y-%m-%d"), now.hour, monitor.cutoff_hour
        ),
    )
    if latest is not None:
        est = latest.estimate
        resp.fund_name = est.name
        resp.last_nav = float(est.last_nav)
        resp.est_nav = float(est.est_nav)
        resp.est_change_pct = float(est.est_change_pct)
        resp.est_time = est.est_time
        resp.day_profit = float(latest.day_profit)
    return resp


@router.get("/holdings", response_model=list[HoldingResponse])
async def list_holdings(
    user: User = Depends(get_user_or_404),
    storage: Storage = Depends(get_storage),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    holdings = await storage.get_holdings(user.id)
    latest = monitor.cache.for_user(user.id)
    return [_holding_response(h, latest.get(h.code), monitor) for h in holdings]


@router.post("/holdings", response_model=HoldingResponse)
async def add_holding(
    req: HoldingCreateRequest,
    user: User = Depends(get_user_or_404),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    """Add a holding, or overwrite the one with the same code."""
    holding = await monitor.upsert_holding(
        user.id,
        req.code,
        req.initial_cost,
        req.current_amount,
        req.last_settlement_date,
    )
    return _holding_response(holding, monitor.cache.get(user.id, holding.code), monitor)


@router.patch("/holdings/{code}", response_model=HoldingResponse)
async def update_holding(
    code: str,
    patch: HoldingPatch,
    user: User = Depends(get_user_or_404),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    holding = await monitor.update_holding(user.id, code, patch)
    if holding is None:
        raise HTTPException(status_code=404, detail="Holding not found")
    return _holding_response(holding, monitor.cache.get(user.id, code), monitor)


@router.delete("/holdings/{code}")
async def delete_holding(
    code: str,
    user: User = Depends(get_user_or_404),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    if not await monitor.delete_holding(user.id, code):
        raise HTTPException(status_code=404, detail="Holding not found")
    return {"status": "ok"}


@router.post("/holdings/{code}/refresh", response_model=HoldingResponse)
async def refresh_holding(
    code: str,
    user: User = Depends(get_user_or_404),
    storage: Storage = Depends(get_storage),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    """Run one poll cycle for this holding now (may settle it)."""
    if await storage.get_holding(user.id, code) is None:
        raise HTTPException(status_code=404, detail="Holding not found")
    result = await monitor.poll_holding(user.id, code)
    if result is None:
        raise HTTPException(status_code=502, detail="Valuation source unavailable")
    holding = await storage.get_holding(user.id, code)
    if holding is None:
        raise HTTPException(status_code=404, detail="Holding not found")
    return _holding_response(holding, result, monitor)


@router.get("/portfolio", response_model=PortfolioResponse)
async def get_portfolio(
    user: User = Depends(get_user_or_404),
    storage: Storage = Depends(get_storage),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    holdings = await storage.get_holdings(user.id)
    latest = monitor.cache.for_user(user.id)
    summary = summarize_portfolio(
        holdings, {code: r.day_profit for code, r in latest.items()}
    )
    return PortfolioResponse(
        user_id=user.id,
        holdings=[_holding_response(h, latest.get(h.code), monitor) for h in holdings],
        total_amount=float(summary.total_amount),
        total_initial_amount=float(summary.total_initial_amount),
        total_profit=float(summary.total_profit),
        total_return_rate=float(summary.total_return_rate),
        total_day_profit=float(summary.total_day_profit),
    )
