from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from motor.motor_asyncio import AsyncIOMotorDatabase
from redis.asyncio import Redis

from ..core.config import settings

logger = logging.getLogger(__name__)

NOTIFICATIONS_COL = "notifications"

CHALLENGE_COMPLETED = "challenge_completed"
QUEST_COMPLETION = "quest_completion"
LEVEL_UP = "level_up"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class Notifier:
    """
    사용자 알림 전달 창구

    코어 로직은 언제 알릴지만 결정하고, 실제 전달(푸시 등)은 Redis 채널을
    구독하는 별도 워커의 몫이다. 여기서는 사용자별 알림함 문서를 남기고
    이벤트를 채널에 발행한다.

    notify 는 fire-and-forget 이다. 저장/발행 실패는 로그만 남기고 호출자에게
    올리지 않는다.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        redis: Redis | None = None,
        channel: str | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.channel = channel or settings.notification_channel

    async def notify(self, user_ids: Iterable[str], event_kind: str, payload: dict[str, Any]) -> None:
        recipients = list(dict.fromkeys(user_ids))
        if not recipients:
            return

        now = datetime.now(timezone.utc)
        docs = [
            {
                "user_id": user_id,
                "type": event_kind,
                "data": dict(payload),
                "read": False,
                "created_at": now,
            }
            for user_id in recipients
        ]
        try:
            await self.db[NOTIFICATIONS_COL].insert_many(docs)
        except Exception as exc:
            logger.warning("알림 저장 실패 (kind=%s, users=%s): %s", event_kind, recipients, exc)

        if self.redis is None:
            return
        message = json.dumps(
            {"user_ids": recipients, "kind": event_kind, "payload": payload, "created_at": now},
            default=_json_default,
        )
        try:
            await self.redis.publish(self.channel, message)
        except Exception as exc:
            logger.warning("알림 이벤트 발행 실패 (kind=%s): %s", event_kind, exc)


async def notify_challenge_completed(notifier: Notifier, event: dict[str, Any]) -> None:
    """팀 챌린지 완료 이벤트를 완료 시점의 참여자 전원에게 전달"""
    await notifier.notify(event["completed_by"], CHALLENGE_COMPLETED, event)


async def notify_quest_completion(
    notifier: Notifier,
    user_id: str,
    quest: dict,
    reward: dict[str, Any],
) -> None:
    payload = {
        "quest_id": quest["_id"],
        "quest_title": quest.get("title", ""),
        "xp_earned": reward["total_xp"],
    }
    await notifier.notify([user_id], QUEST_COMPLETION, payload)
    if reward.get("leveled_up"):
        await notifier.notify(
            [user_id],
            LEVEL_UP,
            {"new_level": reward["new_level"], "xp_total": reward["xp_total"]},
        )


async def list_notifications(db: AsyncIOMotorDatabase, user_id: str, limit: int = 20) -> list[dict]:
    cursor = db[NOTIFICATIONS_COL].find({"user_id": user_id}).sort("created_at", -1).limit(limit)
    items: list[dict] = []
    async for doc in cursor:
        doc = {**doc}
        doc["id"] = str(doc.pop("_id"))
        items.append(doc)
    return items
