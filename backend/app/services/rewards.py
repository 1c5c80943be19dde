from __future__ import annotations

import math
from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..core.config import settings
from ..core.errors import NotFoundError
from .timeutils import as_utc

USERS_COL = "users"
ATTEMPTS_COL = "quest_attempts"
COMPLETED_QUESTS_COL = "completed_quests"
SYSTEM_COL = "system"


def calculate_level(xp: int) -> int:
    """
    누적 XP 로 레벨을 계산합니다.

    레벨 1 -> 2 에 base XP(기본 500)가 필요하고, 이후 단계마다
    base * growth^(level-2) 만큼 필요량이 늘어납니다.
    """
    base = settings.level_base_xp
    level = 1
    required = float(base)
    while xp >= required:
        level += 1
        required += base * math.pow(settings.level_growth, level - 2)
    return level


async def get_system_configuration(db: AsyncIOMotorDatabase) -> dict:
    """system/configuration 문서 조회 (없으면 설정값 기본)"""
    defaults = {"xp_multiplier": settings.xp_multiplier}
    doc = await db[SYSTEM_COL].find_one({"_id": "configuration"})
    if not doc:
        return defaults
    return {**defaults, **{k: v for k, v in doc.items() if k != "_id"}}


def compute_reward(
    quest: dict,
    started_at: datetime,
    completed_at: datetime,
    *,
    is_first_time: bool,
    xp_multiplier: float = 1.0,
) -> dict:
    """
    퀘스트 완료 보상 계산 (순수 함수)

    기본 XP + 속도 보너스(제한 시간 내 완료) + 첫 완료 보너스를 더한 뒤
    시스템 배율을 곱하고 내림합니다. 보너스는 서로 독립적으로 합산됩니다.
    """
    rewards = quest.get("rewards") or {}
    bonus = rewards.get("bonus_xp") or {}
    base_xp = int(rewards.get("base_xp") or quest.get("xp_reward") or 0)

    elapsed_minutes = (as_utc(completed_at) - as_utc(started_at)).total_seconds() / 60
    speed_bonus = 0
    if elapsed_minutes <= settings.speed_bonus_window_minutes:
        speed_bonus = int(bonus.get("speed_bonus") or 0)

    first_time_bonus = int(bonus.get("first_time") or 0) if is_first_time else 0

    subtotal = base_xp + speed_bonus + first_time_bonus
    return {
        "base_xp": base_xp,
        "speed_bonus": speed_bonus,
        "first_time_bonus": first_time_bonus,
        "multiplier": xp_multiplier,
        "total_xp": int(math.floor(subtotal * xp_multiplier)),
        "elapsed_minutes": round(elapsed_minutes, 2),
    }


async def is_first_completion(db: AsyncIOMotorDatabase, user_id: str, quest_id: str, attempt_id: str) -> bool:
    previous = await db[ATTEMPTS_COL].count_documents(
        {
            "user_id": user_id,
            "quest_id": quest_id,
            "status": "completed",
            "_id": {"$ne": attempt_id},
        }
    )
    return previous == 0


async def grant_quest_reward(
    db: AsyncIOMotorDatabase,
    user_id: str,
    quest: dict,
    attempt: dict,
    completed_at: datetime,
) -> dict:
    """
    완료된 시도에 대한 XP 를 지급하고 완료 기록을 남깁니다.

    호출자는 시도가 in-progress -> completed 로 바뀐 직후 한 번만 호출해야
    합니다. (중복 지급 방지는 상태 전이 쪽의 조건부 쓰기가 담당)
    """
    config = await get_system_configuration(db)
    first_time = await is_first_completion(db, user_id, quest["_id"], attempt["_id"])
    reward = compute_reward(
        quest,
        attempt["started_at"],
        completed_at,
        is_first_time=first_time,
        xp_multiplier=float(config.get("xp_multiplier", 1.0)),
    )

    user_doc = await db[USERS_COL].find_one_and_update(
        {"_id": user_id},
        {"$inc": {"xp": reward["total_xp"], "total_xp": reward["total_xp"]}},
        return_document=ReturnDocument.AFTER,
    )
    if not user_doc:
        raise NotFoundError("사용자를 찾을 수 없습니다.")

    previous_level = user_doc.get("level", 1)
    new_level = calculate_level(user_doc.get("xp", 0))
    if new_level != previous_level:
        await db[USERS_COL].update_one({"_id": user_id}, {"$set": {"level": new_level}})

    await db[COMPLETED_QUESTS_COL].update_one(
        {"_id": f"{user_id}_{quest['_id']}"},
        {
            "$set": {
                "user_id": user_id,
                "quest_id": quest["_id"],
                "completed_at": completed_at,
                "xp_earned": reward["total_xp"],
            },
            "$inc": {"completions": 1},
        },
        upsert=True,
    )

    reward.update(
        {
            "is_first_time": first_time,
            "xp_total": user_doc.get("xp", 0),
            "new_level": new_level,
            "leveled_up": new_level > previous_level,
        }
    )
    return reward
