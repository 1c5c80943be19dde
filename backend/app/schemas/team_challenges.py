from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

ChallengeType = Literal["xp", "quests", "locations", "time"]


class TeamChallengeCreate(BaseModel):
    team_id: str
    title: str = Field(min_length=1)
    description: str = ""
    type: ChallengeType
    target_value: float = Field(gt=0)
    participants: list[str] | None = None  # 생략하면 팀원 전체


class ContributorOut(BaseModel):
    user_id: str
    contribution: float


class ChallengeStatistics(BaseModel):
    total_participants: int = 0
    active_participants: int = 0
    average_contribution: float = 0
    completion_rate: float = 0
    completed_by: list[str] = Field(default_factory=list)
    top_contributors: list[ContributorOut] = Field(default_factory=list)


class TeamChallengeOut(BaseModel):
    id: str
    team_id: str
    title: str
    description: str = ""
    type: ChallengeType
    target_value: float
    current_value: float = 0
    progress: float = 0
    participants: list[str] = Field(default_factory=list)
    status: str
    created_by: str
    created_at: datetime
    completed_at: datetime | None = None
    statistics: ChallengeStatistics = Field(default_factory=ChallengeStatistics)


class ContributionUpdate(BaseModel):
    """delta 는 누적형(xp, quests), value 는 절대값형(locations, time) 챌린지에 사용"""

    delta: float | None = Field(default=None, gt=0)
    value: float | None = Field(default=None, ge=0)


class ChallengeStatusUpdate(BaseModel):
    status: Literal["active", "paused", "failed"]


class DeleteResult(BaseModel):
    deleted: bool
    participations_removed: int
