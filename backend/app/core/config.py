from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    project_name: str = "FrameIt Quest Progress"
    api_prefix: str = "/api"

    mongodb_uri: str = Field(default="mongodb://mongo:27017")
    mongodb_db: str = Field(default="frameit")

    redis_url: str = Field(default="redis://redis:6379/0")
    notification_channel: str = Field(default="frameit:notifications")

    jwt_secret_key: str = Field(default="change-me-in-production-0123456789abcdef")
    jwt_algorithm: str = Field(default="HS256")

    cors_origins: str = Field(default="http://localhost:8081,http://localhost:19006,http://localhost")

    # 퀘스트 이용 가능 시간과 콘테스트 날짜 판정에 사용하는 타임존
    app_timezone: str = Field(default="UTC")

    # 데일리 콘테스트 투표 시작 시각 (해당 날짜 자정까지 열림)
    contest_voting_open_hour: int = Field(default=18, ge=0, le=23)

    # 보상 계산
    speed_bonus_window_minutes: int = Field(default=120)
    xp_multiplier: float = Field(default=1.0)
    level_base_xp: int = Field(default=500)
    level_growth: float = Field(default=1.3)

    # 팀 챌린지 통계
    top_contributors_limit: int = Field(default=5)

    # 투표 점수 가중치 (0~5 스케일)
    ballot_quality_weight: float = Field(default=0.6)
    ballot_requirement_weight: float = Field(default=0.4)

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
