from collections.abc import AsyncGenerator

from motor.motor_asyncio import AsyncIOMotorDatabase

from .db.mongo import MongoConnectionManager
from .db.redis import RedisConnectionManager
from .services.notifications import Notifier


async def get_mongo_db() -> AsyncGenerator[AsyncIOMotorDatabase, None]:
    db = MongoConnectionManager.get_database()
    yield db


async def get_notifier() -> AsyncGenerator[Notifier, None]:
    """요청 단위 Notifier (Mongo 알림함 + Redis 발행)"""
    # Redis 클라이언트는 싱글톤으로 유지하므로 종료하지 않음
    yield Notifier(MongoConnectionManager.get_database(), RedisConnectionManager.get_client())
