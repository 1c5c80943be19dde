import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..core.config import settings

logger = logging.getLogger(__name__)


class MongoConnectionManager:
    client: AsyncIOMotorClient | None = None

    @classmethod
    def get_client(cls) -> AsyncIOMotorClient:
        if cls.client is None:
            # 시각 비교가 많으므로 datetime 을 항상 aware(UTC) 로 돌려받는다
            cls.client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=True)
        return cls.client

    @classmethod
    def get_database(cls) -> AsyncIOMotorDatabase:
        return cls.get_client()[settings.mongodb_db]

    @classmethod
    async def ping(cls) -> bool:
        try:
            await cls.get_database().command("ping")
        except PyMongoError as exc:
            logger.warning("MongoDB ping 실패: %s", exc)
            return False
        return True

    @classmethod
    async def close(cls) -> None:
        if cls.client:
            cls.client.close()
            cls.client = None
