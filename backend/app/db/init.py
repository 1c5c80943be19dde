from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorDatabase


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db["quest_attempts"].create_index([("user_id", 1), ("quest_id", 1), ("status", 1)])
    await db["completed_quests"].create_index([("user_id", 1), ("completed_at", -1)])
    await db["team_challenges"].create_index([("team_id", 1), ("created_at", -1)])
    await db["team_challenges"].create_index("participants")
    await db["team_challenge_participations"].create_index([("challenge_id", 1), ("is_active", 1)])
    await db["submission_votes"].create_index("submission_id")
    await db["submission_votes"].create_index([("contest_id", 1), ("voter_id", 1)])
    await db["notifications"].create_index([("user_id", 1), ("created_at", -1)])
