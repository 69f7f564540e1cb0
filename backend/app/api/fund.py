"""Fund API routes."""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_monitor
from app.api.schemas import EstimateResponse
from app.services.monitor import HoldingMonitor
from app.services.profit import calculate_profit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/fund", tags=["fund"])


@router.get("/estimate", response_model=EstimateResponse)
async def get_estimate(
    code: str = Query(min_length=1),
    amount: Decimal = Query(Decimal("10000")),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    """Live estimate for any fund code and the day profit on ``amount``.

    Nothing is stored; this does not touch any holding.
    """
    code = code.strip()
    if not code:
        raise HTTPException(status_code=400, detail="Missing fund code")
    if not amount.is_finite():
        raise HTTPException(status_code=400, detail="amount must be a finite number")

    estimate = await monitor.fetcher.fetch(code)
    if estimate is None:
        logger.error(f"No estimate available for {code}")
        raise HTTPException(status_code=502, detail="Valuation source unavailable")

    return EstimateResponse(
        fund_code=estimate.code,
        fund_name=estimate.name,
        nav_date=estimate.nav_date,
        last_nav=float(estimate.last_nav),
        est_nav=float(estimate.est_nav),
        est_change_pct=float(estimate.est_change_pct),
        est_time=estimate.est_time,
        holding_amount=float(amount),
        profit=float(calculate_profit(amount, estimate.est_change_pct)),
    )
