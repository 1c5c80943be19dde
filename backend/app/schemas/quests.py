from datetime import datetime

from pydantic import BaseModel, Field


class GeoPoint(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class EligibilityOut(BaseModel):
    allowed: bool
    reason: str | None = None


class AttemptStart(BaseModel):
    location: GeoPoint | None = None  # 시도 시작 위치 (선택)


class AttemptStartOut(BaseModel):
    attempt_id: str


class AttemptComplete(BaseModel):
    submission_id: str


class AttemptOut(BaseModel):
    id: str
    quest_id: str
    user_id: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    submission_id: str | None = None
    start_location: GeoPoint | None = None
    start_distance_meters: float | None = None
    start_within_radius: bool | None = None
    xp_awarded: int | None = None


class RewardOut(BaseModel):
    base_xp: int
    speed_bonus: int = 0
    first_time_bonus: int = 0
    multiplier: float = 1.0
    total_xp: int
    elapsed_minutes: float | None = None
    is_first_time: bool = False
    xp_total: int | None = None  # 지급 후 누적 XP
    new_level: int | None = None
    leveled_up: bool = False


class AttemptCompleteOut(BaseModel):
    attempt: AttemptOut
    reward: RewardOut
    challenge_updates: list[str] = Field(default_factory=list)
