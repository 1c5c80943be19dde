from __future__ import annotations

from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..core.errors import NotFoundError
from .timeutils import in_daily_window, parse_hhmm, to_date, to_local, utc_now

USERS_COL = "users"
QUESTS_COL = "quests"
ATTEMPTS_COL = "quest_attempts"

IN_PROGRESS = "in-progress"


def _deny(reason: str) -> dict:
    return {"allowed": False, "reason": reason}


def _allow() -> dict:
    return {"allowed": True, "reason": None}


async def get_quest(db: AsyncIOMotorDatabase, quest_id: str) -> dict:
    quest = await db[QUESTS_COL].find_one({"_id": quest_id})
    if not quest:
        raise NotFoundError("퀘스트를 찾을 수 없습니다.")
    return quest


async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    user = await db[USERS_COL].find_one({"_id": user_id})
    if not user:
        raise NotFoundError("사용자를 찾을 수 없습니다.")
    return user


def check_quest_window(quest: dict, now: datetime) -> str | None:
    if quest.get("status") != "active":
        return "현재 진행 중인 퀘스트가 아닙니다."
    today = to_local(now).date()
    start_date = quest.get("start_date")
    end_date = quest.get("end_date")
    if start_date and today < to_date(start_date):
        return f"{to_date(start_date).isoformat()}부터 참여할 수 있는 퀘스트입니다."
    if end_date and today > to_date(end_date):
        return "기간이 종료된 퀘스트입니다."
    return None


def check_available_hours(quest: dict, now: datetime) -> str | None:
    hours = quest.get("available_hours")
    if not hours:
        return None
    start = parse_hhmm(hours["start"])
    end = parse_hhmm(hours["end"])
    if in_daily_window(to_local(now).time(), start, end):
        return None
    return f"{hours['start']} - {hours['end']} 사이에만 참여할 수 있습니다."


async def can_attempt(
    db: AsyncIOMotorDatabase,
    user_id: str,
    quest_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """
    사용자가 퀘스트 시도를 시작할 수 있는지 판정합니다. (읽기 전용)

    검사 순서 (첫 실패에서 중단):
        1. 퀘스트가 active 이고 기간 안에 있는지
        2. 사용자 레벨이 min_level 이상인지
        3. 같은 퀘스트에 진행 중인 시도가 없는지
        4. max_attempts 가 있으면 누적 시도 횟수(모든 상태)가 한도 미만인지
        5. available_hours 가 있으면 현재 시각이 그 안에 있는지

    Returns:
        {"allowed": bool, "reason": str | None} - 거부 시 reason 은 항상 채워짐
    """
    now = now or utc_now()
    quest = await get_quest(db, quest_id)
    user = await get_user(db, user_id)

    reason = check_quest_window(quest, now)
    if reason:
        return _deny(reason)

    min_level = quest.get("min_level", 1)
    level = user.get("level", 1)
    if level < min_level:
        return _deny(f"레벨 {min_level} 이상 참여 가능합니다. 현재 레벨은 {level}입니다.")

    in_progress = await db[ATTEMPTS_COL].count_documents(
        {"user_id": user_id, "quest_id": quest_id, "status": IN_PROGRESS}
    )
    if in_progress > 0:
        return _deny("이미 진행 중인 시도가 있습니다.")

    max_attempts = quest.get("max_attempts")
    if max_attempts is not None:
        total = await db[ATTEMPTS_COL].count_documents({"user_id": user_id, "quest_id": quest_id})
        if total >= max_attempts:
            return _deny(f"최대 시도 횟수({max_attempts}회)를 모두 사용했습니다.")

    reason = check_available_hours(quest, now)
    if reason:
        return _deny(reason)

    return _allow()
