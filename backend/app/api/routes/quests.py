from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from ...core.auth import get_current_user_id
from ...dependencies import get_mongo_db, get_notifier
from ...schemas import (
    AttemptComplete,
    AttemptCompleteOut,
    AttemptOut,
    AttemptStart,
    AttemptStartOut,
    EligibilityOut,
)
from ...services.attempts import cancel_attempt, complete_attempt, list_user_attempts, start_attempt
from ...services.eligibility import can_attempt
from ...services.notifications import Notifier

router = APIRouter()


@router.get("/{quest_id}/eligibility", response_model=EligibilityOut)
async def get_eligibility(
    quest_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> EligibilityOut:
    result = await can_attempt(db, user_id, quest_id)
    return EligibilityOut(**result)


@router.get("/{quest_id}/attempts", response_model=list[AttemptOut])
async def get_my_attempts(
    quest_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> list[AttemptOut]:
    attempts = await list_user_attempts(db, user_id, quest_id)
    return [AttemptOut(**a) for a in attempts]


@router.post("/{quest_id}/attempts", response_model=AttemptStartOut, status_code=status.HTTP_201_CREATED)
async def start_quest_attempt(
    quest_id: str,
    payload: AttemptStart | None = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> AttemptStartOut:
    location = payload.location.model_dump() if payload and payload.location else None
    attempt_id = await start_attempt(db, user_id, quest_id, location)
    return AttemptStartOut(attempt_id=attempt_id)


@router.post("/attempts/{attempt_id}/cancel", response_model=AttemptOut)
async def cancel_quest_attempt(
    attempt_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> AttemptOut:
    attempt = await cancel_attempt(db, attempt_id, user_id)
    return AttemptOut(**attempt)


@router.post("/attempts/{attempt_id}/complete", response_model=AttemptCompleteOut)
async def complete_quest_attempt(
    attempt_id: str,
    payload: AttemptComplete,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    notifier: Notifier = Depends(get_notifier),
) -> AttemptCompleteOut:
    result = await complete_attempt(db, notifier, attempt_id, payload.submission_id, user_id=user_id)
    return AttemptCompleteOut(**result)
