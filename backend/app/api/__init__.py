from fastapi import APIRouter

from .routes import contests, health, notifications, quests, team_challenges

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(quests.router, prefix="/quests", tags=["quests"])
api_router.include_router(team_challenges.router, prefix="/team-challenges", tags=["team-challenges"])
api_router.include_router(contests.router, prefix="/contests", tags=["contests"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
