from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..core.config import settings
from ..core.errors import InvalidContribution, InvalidStateTransition, NotFoundError, PermissionDeniedError
from .aggregation import ACTIVE, COMPLETED, FAILED, PAUSED, should_complete, summarize_participations
from .notifications import Notifier, notify_challenge_completed
from .subscriptions import ChangeCallback, Subscription, subscribe
from .timeutils import utc_now

logger = logging.getLogger(__name__)

TEAMS_COL = "teams"
CHALLENGES_COL = "team_challenges"
PARTICIPATIONS_COL = "team_challenge_participations"

INCREMENTAL_TYPES = ("xp", "quests")
ABSOLUTE_TYPES = ("locations", "time")

# 리더가 직접 바꿀 수 있는 상태 전이 (completed 는 집계만이 만든다)
_STATUS_TRANSITIONS = {
    ACTIVE: {PAUSED, FAILED},
    PAUSED: {ACTIVE, FAILED},
}


def participation_id(challenge_id: str, user_id: str) -> str:
    return f"participation_{challenge_id}_{user_id}"


def _normalize(doc: dict) -> dict:
    doc = {**doc}
    doc["id"] = str(doc.pop("_id"))
    return doc


def _new_participation(challenge_id: str, team_id: str, user_id: str, now: datetime) -> dict:
    return {
        "_id": participation_id(challenge_id, user_id),
        "challenge_id": challenge_id,
        "user_id": user_id,
        "team_id": team_id,
        "contribution": 0,
        "joined_at": now,
        "last_updated": now,
        "is_active": True,
    }


async def get_team(db: AsyncIOMotorDatabase, team_id: str) -> dict:
    team = await db[TEAMS_COL].find_one({"_id": team_id})
    if not team:
        raise NotFoundError("팀을 찾을 수 없습니다.")
    return team


def _ensure_leader(team: dict, requestor_id: str) -> None:
    if team.get("leader_id") != requestor_id:
        raise PermissionDeniedError("팀 리더만 할 수 있는 작업입니다.")


async def get_team_challenge(db: AsyncIOMotorDatabase, challenge_id: str) -> dict | None:
    return await db[CHALLENGES_COL].find_one({"_id": challenge_id})


async def _require_challenge(db: AsyncIOMotorDatabase, challenge_id: str) -> dict:
    challenge = await get_team_challenge(db, challenge_id)
    if not challenge:
        raise NotFoundError("팀 챌린지를 찾을 수 없습니다.")
    return challenge


async def list_team_challenges(db: AsyncIOMotorDatabase, team_id: str) -> list[dict]:
    cursor = db[CHALLENGES_COL].find({"team_id": team_id}).sort("created_at", -1)
    items: list[dict] = []
    async for doc in cursor:
        items.append(_normalize(doc))
    return items


async def get_participation(db: AsyncIOMotorDatabase, challenge_id: str, user_id: str) -> dict | None:
    return await db[PARTICIPATIONS_COL].find_one({"_id": participation_id(challenge_id, user_id)})


async def list_participations(
    db: AsyncIOMotorDatabase, challenge_id: str, *, active_only: bool = True
) -> list[dict]:
    query: dict = {"challenge_id": challenge_id}
    if active_only:
        query["is_active"] = True
    return await db[PARTICIPATIONS_COL].find(query).to_list(length=None)


async def create_team_challenge(
    db: AsyncIOMotorDatabase,
    payload: dict,
    creator_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """
    팀 리더가 팀 챌린지를 생성합니다.

    participants 를 생략하면 팀원 전체가 참여자가 되며, 초기 참여자 모두에
    대해 기여도 0 인 참여 기록을 함께 만든다.
    """
    now = now or utc_now()
    team = await get_team(db, payload["team_id"])
    _ensure_leader(team, creator_id)

    members = list(team.get("members", []))
    participants = list(dict.fromkeys(payload.get("participants") or members))
    outsiders = [user_id for user_id in participants if user_id not in members]
    if outsiders:
        raise PermissionDeniedError(f"팀원이 아닌 사용자가 포함되어 있습니다: {', '.join(outsiders)}")

    challenge_id = str(ObjectId())
    doc = {
        "_id": challenge_id,
        "team_id": team["_id"],
        "title": payload["title"],
        "description": payload.get("description", ""),
        "type": payload["type"],
        "target_value": payload["target_value"],
        "current_value": 0,
        "progress": 0.0,
        "participants": participants,
        "status": ACTIVE,
        "created_by": creator_id,
        "created_at": now,
        "completed_at": None,
        "statistics": {
            "total_participants": len(participants),
            "active_participants": len(participants),
            "average_contribution": 0,
            "completion_rate": 0.0,
            "completed_by": [],
            "top_contributors": [],
        },
    }
    await db[CHALLENGES_COL].insert_one(doc)
    if participants:
        await db[PARTICIPATIONS_COL].insert_many(
            [_new_participation(challenge_id, team["_id"], user_id, now) for user_id in participants]
        )
    logger.info("팀 챌린지 생성: challenge=%s team=%s participants=%d", challenge_id, team["_id"], len(participants))
    return _normalize(doc)


async def recalculate_challenge(
    db: AsyncIOMotorDatabase,
    notifier: Notifier,
    challenge_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """
    참여 기록 전체로부터 챌린지 집계를 다시 계산해 저장합니다.

    진행률이 100 에 도달했고 직전 상태가 active 였다면 완료 처리하고
    완료 이벤트를 정확히 한 번 발행한다. 완료 전이는 status == active 를
    조건으로 하는 단일 문서 쓰기라서, 동시에 여러 재계산이 돌아도 이벤트는
    전이에 성공한 한 곳에서만 나간다.

    같은 챌린지에 대한 재계산끼리 경합하면 나중 쓰기가 이긴다. 이 경우에도
    어긋난 집계는 다음 재계산에서 바로잡힌다.
    """
    now = now or utc_now()
    challenge = await _require_challenge(db, challenge_id)
    participations = await list_participations(db, challenge_id)
    summary = summarize_participations(
        challenge["target_value"], participations, top_limit=settings.top_contributors_limit
    )

    await db[CHALLENGES_COL].update_one(
        {"_id": challenge_id},
        {
            "$set": {
                "current_value": summary["current_value"],
                "progress": summary["progress"],
                "statistics.active_participants": summary["active_participants"],
                "statistics.average_contribution": summary["average_contribution"],
                "statistics.completion_rate": summary["completion_rate"],
                "statistics.top_contributors": summary["top_contributors"],
                "updated_at": now,
            }
        },
    )

    if should_complete(challenge["status"], summary["progress"]):
        completed_by = [p["user_id"] for p in participations]
        result = await db[CHALLENGES_COL].update_one(
            {"_id": challenge_id, "status": ACTIVE},
            {
                "$set": {
                    "status": COMPLETED,
                    "completed_at": now,
                    "statistics.completed_by": completed_by,
                }
            },
        )
        if result.modified_count == 1:
            logger.info("팀 챌린지 완료: challenge=%s team=%s", challenge_id, challenge["team_id"])
            await notify_challenge_completed(
                notifier,
                {
                    "challenge_id": challenge_id,
                    "team_id": challenge["team_id"],
                    "completed_by": completed_by,
                },
            )

    refreshed = await _require_challenge(db, challenge_id)
    return _normalize(refreshed)


async def record_contribution(
    db: AsyncIOMotorDatabase,
    notifier: Notifier,
    challenge_id: str,
    user_id: str,
    delta: float,
    *,
    now: datetime | None = None,
) -> dict:
    """
    참여자 한 명의 기여도를 delta 만큼 올리고 집계를 재계산합니다. (xp, quests 타입)

    참여 문서 하나에 대한 $inc 이므로 다른 멤버의 기록과 충돌하지 않는다.
    delta 는 양수여야 한다.
    """
    now = now or utc_now()
    challenge = await _require_challenge(db, challenge_id)
    if challenge["type"] not in INCREMENTAL_TYPES:
        raise InvalidContribution(f"'{challenge['type']}' 챌린지는 절대값으로만 기록할 수 있습니다.")
    if delta <= 0:
        raise InvalidContribution("기여도 증가량은 0보다 커야 합니다.")

    result = await db[PARTICIPATIONS_COL].update_one(
        {"_id": participation_id(challenge_id, user_id)},
        {"$inc": {"contribution": delta}, "$set": {"last_updated": now}},
    )
    if result.matched_count == 0:
        raise NotFoundError("챌린지 참여 기록을 찾을 수 없습니다.")
    return await recalculate_challenge(db, notifier, challenge_id, now=now)


async def set_contribution(
    db: AsyncIOMotorDatabase,
    notifier: Notifier,
    challenge_id: str,
    user_id: str,
    value: float,
    *,
    now: datetime | None = None,
) -> dict:
    """기여도를 절대값으로 기록 (locations, time 타입)"""
    now = now or utc_now()
    challenge = await _require_challenge(db, challenge_id)
    if challenge["type"] not in ABSOLUTE_TYPES:
        raise InvalidContribution(f"'{challenge['type']}' 챌린지는 증가량으로만 기록할 수 있습니다.")
    if value < 0:
        raise InvalidContribution("기여도는 0 이상이어야 합니다.")

    result = await db[PARTICIPATIONS_COL].update_one(
        {"_id": participation_id(challenge_id, user_id)},
        {"$set": {"contribution": value, "last_updated": now}},
    )
    if result.matched_count == 0:
        raise NotFoundError("챌린지 참여 기록을 찾을 수 없습니다.")
    return await recalculate_challenge(db, notifier, challenge_id, now=now)


async def join_team_challenge(
    db: AsyncIOMotorDatabase,
    notifier: Notifier,
    challenge_id: str,
    user_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    now = now or utc_now()
    challenge = await _require_challenge(db, challenge_id)
    team = await get_team(db, challenge["team_id"])
    if user_id not in team.get("members", []):
        raise PermissionDeniedError("팀원만 참여할 수 있습니다.")
    if challenge["status"] not in (ACTIVE, PAUSED):
        raise InvalidStateTransition("종료된 챌린지에는 참여할 수 없습니다.")

    # 다시 참여하는 경우 기존 기여도는 그대로 살린다
    fresh = _new_participation(challenge_id, challenge["team_id"], user_id, now)
    await db[PARTICIPATIONS_COL].update_one(
        {"_id": fresh["_id"]},
        {
            "$set": {"is_active": True, "last_updated": now},
            "$setOnInsert": {k: v for k, v in fresh.items() if k not in ("_id", "is_active", "last_updated")},
        },
        upsert=True,
    )
    await db[CHALLENGES_COL].update_one({"_id": challenge_id}, {"$addToSet": {"participants": user_id}})
    return await recalculate_challenge(db, notifier, challenge_id, now=now)


async def leave_team_challenge(
    db: AsyncIOMotorDatabase,
    notifier: Notifier,
    challenge_id: str,
    user_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """참여를 비활성화 (기록은 남기고 집계에서만 제외)"""
    now = now or utc_now()
    await _require_challenge(db, challenge_id)
    result = await db[PARTICIPATIONS_COL].update_one(
        {"_id": participation_id(challenge_id, user_id)},
        {"$set": {"is_active": False, "last_updated": now}},
    )
    if result.matched_count == 0:
        raise NotFoundError("챌린지 참여 기록을 찾을 수 없습니다.")
    await db[CHALLENGES_COL].update_one({"_id": challenge_id}, {"$pull": {"participants": user_id}})
    return await recalculate_challenge(db, notifier, challenge_id, now=now)


async def update_challenge_status(
    db: AsyncIOMotorDatabase,
    challenge_id: str,
    requestor_id: str,
    status: str,
) -> dict:
    challenge = await _require_challenge(db, challenge_id)
    team = await get_team(db, challenge["team_id"])
    _ensure_leader(team, requestor_id)

    current = challenge["status"]
    if status not in _STATUS_TRANSITIONS.get(current, set()):
        raise InvalidStateTransition(f"'{current}' 상태에서 '{status}' 상태로 바꿀 수 없습니다.")

    result = await db[CHALLENGES_COL].update_one(
        {"_id": challenge_id, "status": current},
        {"$set": {"status": status, "updated_at": utc_now()}},
    )
    if result.modified_count == 0:
        raise InvalidStateTransition("챌린지 상태가 그 사이 변경되었습니다. 다시 시도해주세요.")
    challenge["status"] = status
    return _normalize(challenge)


async def delete_team_challenge(db: AsyncIOMotorDatabase, challenge_id: str, requestor_id: str) -> int:
    """팀 리더만 삭제 가능. 참여 기록까지 함께 지운다. 삭제된 참여 기록 수를 반환."""
    challenge = await _require_challenge(db, challenge_id)
    team = await get_team(db, challenge["team_id"])
    _ensure_leader(team, requestor_id)

    result = await db[PARTICIPATIONS_COL].delete_many({"challenge_id": challenge_id})
    await db[CHALLENGES_COL].delete_one({"_id": challenge_id})
    logger.info("팀 챌린지 삭제: challenge=%s participations=%d", challenge_id, result.deleted_count)
    return result.deleted_count


async def apply_quest_completion(
    db: AsyncIOMotorDatabase,
    notifier: Notifier,
    user_id: str,
    xp_gained: int,
) -> list[str]:
    """
    퀘스트 완료를 사용자가 참여 중인 진행 중 팀 챌린지에 반영합니다.

    xp 챌린지는 획득 XP 만큼, quests 챌린지는 1 만큼 기여도가 오른다.
    퀘스트 완료 자체는 이미 저장된 뒤라서, 개별 챌린지 반영 실패는 로그만
    남기고 나머지 챌린지 반영은 계속한다.

    Returns:
        반영에 성공한 challenge id 목록
    """
    cursor = db[CHALLENGES_COL].find(
        {"participants": user_id, "status": ACTIVE, "type": {"$in": list(INCREMENTAL_TYPES)}}
    )
    targets: list[tuple[str, int]] = []
    async for challenge in cursor:
        delta = xp_gained if challenge["type"] == "xp" else 1
        if delta:
            targets.append((challenge["_id"], delta))

    results = await asyncio.gather(
        *(record_contribution(db, notifier, challenge_id, user_id, delta) for challenge_id, delta in targets),
        return_exceptions=True,
    )
    applied: list[str] = []
    for (challenge_id, _delta), result in zip(targets, results):
        if isinstance(result, BaseException):
            logger.warning("팀 챌린지 기여도 반영 실패: challenge=%s user=%s error=%s", challenge_id, user_id, result)
            continue
        applied.append(challenge_id)
    return applied


def subscribe_to_challenge(db: AsyncIOMotorDatabase, challenge_id: str, callback: ChangeCallback) -> Subscription:
    return subscribe(db, CHALLENGES_COL, {"documentKey._id": challenge_id}, callback)


def subscribe_to_team_challenges(db: AsyncIOMotorDatabase, team_id: str, callback: ChangeCallback) -> Subscription:
    return subscribe(db, CHALLENGES_COL, {"fullDocument.team_id": team_id}, callback)
