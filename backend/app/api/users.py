"""User API routes."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_monitor, get_storage
from app.api.schemas import UserCreateRequest, UserResponse
from app.services.monitor import HoldingMonitor
from app.services.storage import Storage

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
async def list_users(storage: Storage = Depends(get_storage)):
    users = await storage.list_users()
    return [UserResponse(id=u.id, name=u.name, created_at=u.created_at) for u in users]


@router.post("", response_model=UserResponse)
async def create_user(req: UserCreateRequest, storage: Storage = Depends(get_storage)):
    u = await storage.create_user(req.name)
    return UserResponse(id=u.id, name=u.name, created_at=u.created_at)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    monitor: HoldingMonitor = Depends(get_monitor),
):
    """Delete a user together with all of its holdings and history."""
    if not await monitor.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return {"status": "ok"}
