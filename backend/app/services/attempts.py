from __future__ import annotations

import logging
from datetime import datetime

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..core.errors import IneligibleError, InvalidStateTransition, NotAttemptOwnerError
from .eligibility import IN_PROGRESS, can_attempt, get_quest
from .geolocation import distance_to_quest, is_within_quest_radius
from .notifications import Notifier, notify_quest_completion
from .rewards import grant_quest_reward
from .team_challenges import apply_quest_completion
from .timeutils import utc_now

logger = logging.getLogger(__name__)

ATTEMPTS_COL = "quest_attempts"

COMPLETED = "completed"
ABANDONED = "abandoned"
FAILED = "failed"


def _normalize(doc: dict) -> dict:
    doc = {**doc}
    doc["id"] = str(doc.pop("_id"))
    return doc


async def get_attempt(db: AsyncIOMotorDatabase, attempt_id: str) -> dict | None:
    return await db[ATTEMPTS_COL].find_one({"_id": attempt_id})


async def list_user_attempts(db: AsyncIOMotorDatabase, user_id: str, quest_id: str | None = None) -> list[dict]:
    query: dict = {"user_id": user_id}
    if quest_id:
        query["quest_id"] = quest_id
    cursor = db[ATTEMPTS_COL].find(query).sort("started_at", -1)
    items: list[dict] = []
    async for doc in cursor:
        items.append(_normalize(doc))
    return items


async def start_attempt(
    db: AsyncIOMotorDatabase,
    user_id: str,
    quest_id: str,
    location: dict | None = None,
    *,
    now: datetime | None = None,
) -> str:
    """
    자격을 다시 확인한 뒤 in-progress 시도를 생성하고 attempt id 를 돌려줍니다.

    화면에서 can_attempt 를 먼저 호출했더라도 생성 시점에 한 번 더 검사한다.
    두 요청이 거의 동시에 들어오면 둘 다 통과할 수 있다. (시작은 조건부 쓰기로 막지 않음)
    """
    now = now or utc_now()
    eligibility = await can_attempt(db, user_id, quest_id, now=now)
    if not eligibility["allowed"]:
        raise IneligibleError(eligibility["reason"])

    quest = await get_quest(db, quest_id)
    distance = distance_to_quest(location, quest)
    attempt_id = str(ObjectId())
    doc = {
        "_id": attempt_id,
        "quest_id": quest_id,
        "user_id": user_id,
        "started_at": now,
        "status": IN_PROGRESS,
        "start_location": location,
        "start_distance_meters": round(distance, 2) if distance is not None else None,
        "start_within_radius": is_within_quest_radius(location, quest),
    }
    await db[ATTEMPTS_COL].insert_one(doc)
    logger.info("퀘스트 시도 시작: attempt=%s user=%s quest=%s", attempt_id, user_id, quest_id)
    return attempt_id


async def _transition(db: AsyncIOMotorDatabase, attempt_id: str, target: str, fields: dict) -> dict:
    # in-progress 인 경우에만 바뀌는 단일 문서 조건부 쓰기
    updated = await db[ATTEMPTS_COL].find_one_and_update(
        {"_id": attempt_id, "status": IN_PROGRESS},
        {"$set": {"status": target, **fields}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        current = await get_attempt(db, attempt_id)
        if current is None:
            raise InvalidStateTransition("존재하지 않는 퀘스트 시도입니다.")
        raise InvalidStateTransition(f"이미 종료된 시도입니다. (현재 상태: {current['status']})")
    return updated


async def _ensure_owner(db: AsyncIOMotorDatabase, attempt_id: str, user_id: str) -> dict:
    attempt = await get_attempt(db, attempt_id)
    if attempt is None:
        raise InvalidStateTransition("존재하지 않는 퀘스트 시도입니다.")
    if attempt["user_id"] != user_id:
        raise NotAttemptOwnerError()
    return attempt


async def cancel_attempt(
    db: AsyncIOMotorDatabase,
    attempt_id: str,
    user_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """진행 중인 시도를 포기(abandoned) 처리. 보상 없음, 본인만 가능."""
    await _ensure_owner(db, attempt_id, user_id)
    updated = await _transition(db, attempt_id, ABANDONED, {"cancelled_at": now or utc_now()})
    logger.info("퀘스트 시도 취소: attempt=%s user=%s", attempt_id, user_id)
    return _normalize(updated)


async def fail_attempt(
    db: AsyncIOMotorDatabase,
    attempt_id: str,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict:
    """진행 중인 시도를 실패 처리 (예: 사진 검수 반려)"""
    updated = await _transition(
        db, attempt_id, FAILED, {"failed_at": now or utc_now(), "failure_reason": reason}
    )
    logger.info("퀘스트 시도 실패: attempt=%s reason=%s", attempt_id, reason)
    return _normalize(updated)


async def complete_attempt(
    db: AsyncIOMotorDatabase,
    notifier: Notifier,
    attempt_id: str,
    submission_id: str,
    *,
    user_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    시도를 완료 처리하고 보상을 지급합니다.

    상태 전이가 실제로 일어난 호출만 보상/알림/팀 챌린지 반영까지 진행한다.
    같은 attempt 에 대한 재호출은 InvalidStateTransition 으로 끝나며
    XP 가 두 번 지급되지 않는다.

    Returns:
        {"attempt": 완료된 시도, "reward": 보상 내역, "challenge_updates": 반영된 챌린지 id 목록}
    """
    now = now or utc_now()
    if user_id is not None:
        await _ensure_owner(db, attempt_id, user_id)

    attempt = await _transition(
        db, attempt_id, COMPLETED, {"completed_at": now, "submission_id": submission_id}
    )
    owner_id = attempt["user_id"]
    quest = await get_quest(db, attempt["quest_id"])

    reward = await grant_quest_reward(db, owner_id, quest, attempt, now)
    await db[ATTEMPTS_COL].update_one({"_id": attempt_id}, {"$set": {"xp_awarded": reward["total_xp"]}})
    logger.info(
        "퀘스트 완료: attempt=%s user=%s quest=%s xp=%s",
        attempt_id,
        owner_id,
        quest["_id"],
        reward["total_xp"],
    )

    await notify_quest_completion(notifier, owner_id, quest, reward)
    updated_challenges = await apply_quest_completion(db, notifier, owner_id, reward["total_xp"])

    attempt["xp_awarded"] = reward["total_xp"]
    return {
        "attempt": _normalize(attempt),
        "reward": reward,
        "challenge_updates": updated_challenges,
    }
