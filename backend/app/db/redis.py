import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core.config import settings

logger = logging.getLogger(__name__)


class RedisConnectionManager:
    """알림 이벤트 발행용 Redis 클라이언트 (프로세스 단위 싱글톤)"""

    client: Redis | None = None

    @classmethod
    def get_client(cls) -> Redis:
        if cls.client is None:
            cls.client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return cls.client

    @classmethod
    async def ping(cls) -> bool:
        try:
            await cls.get_client().ping()
        except RedisError as exc:
            logger.warning("Redis ping 실패: %s", exc)
            return False
        return True

    @classmethod
    async def close(cls) -> None:
        if cls.client:
            await cls.client.aclose()
            cls.client = None
