"""FastAPI dependencies resolving the services built in the app lifespan."""

from fastapi import Depends, HTTPException, Request

from app.models.domain import User
from app.services.monitor import HoldingMonitor
from app.services.storage import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_monitor(request: Request) -> HoldingMonitor:
    return request.app.state.monitor


async def get_user_or_404(user_id: str, storage: Storage = Depends(get_storage)) -> User:
    user = await storage.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user
