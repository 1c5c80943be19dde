from fastapi import APIRouter, Response, status

from ...core.config import settings
from ...db.mongo import MongoConnectionManager
from ...db.redis import RedisConnectionManager

router = APIRouter()


@router.get("/health", summary="애플리케이션 헬스체크")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok", "service": settings.project_name}


@router.get("/health/ready", summary="MongoDB/Redis 연결 상태 확인")
async def readiness(response: Response) -> dict:
    checks = {
        "mongodb": await MongoConnectionManager.ping(),
        "redis": await RedisConnectionManager.ping(),
    }
    # MongoDB 연결이 없을 때만 503
    if not checks["mongodb"]:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "ok" if checks["mongodb"] else "unavailable", "checks": checks}
