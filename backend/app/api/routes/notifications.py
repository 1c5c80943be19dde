from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from ...core.auth import get_current_user_id
from ...dependencies import get_mongo_db
from ...schemas import NotificationOut
from ...services.notifications import list_notifications

router = APIRouter()


@router.get("", response_model=list[NotificationOut])
async def get_my_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> list[NotificationOut]:
    items = await list_notifications(db, user_id, limit=limit)
    return [NotificationOut(**item) for item in items]
