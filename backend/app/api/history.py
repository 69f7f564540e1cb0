"""Intraday history API routes."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_monitor, get_storage, get_user_or_404
from app.api.schemas import HistoryPointResponse, HistoryResponse
from app.models.domain import User
from app.services.monitor import HoldingMonitor
from app.services.storage import Storage, validate_iso_date

router = APIRouter(prefix="/api/users/{user_id}/history", tags=["history"])


def _resolve_date(date: str | None, monitor: HoldingMonitor) -> str:
    if date is None:
        return monitor.now().strftime("%Y-%m-%d")
    try:
        return validate_iso_date(date)
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")


@router.get("", response_model=HistoryResponse)
async def get_history(
    date: str | None = None,
    user: User = Depends(get_user_or_404),
    storage: Storage = Depends(get_storage),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    """Intraday points of every holding for one day (default: today)."""
    day = _resolve_date(date, monitor)
    history = await storage.get_history(user.id, day)
    return HistoryResponse(
        date=day,
        data={
            code: [
                HistoryPointResponse(time=p.time, value=p.value, change=p.change)
                for p in points
            ]
            for code, points in history.items()
        },
    )


@router.delete("")
async def clear_history(
    date: str | None = None,
    user: User = Depends(get_user_or_404),
    storage: Storage = Depends(get_storage),
    monitor: HoldingMonitor = Depends(get_monitor),
):
    """Delete one day of history, or all of it when no date is given."""
    day = None if date is None else _resolve_date(date, monitor)
    removed = await storage.clear_history(user.id, day)
    return {"status": "ok", "removed": removed}
