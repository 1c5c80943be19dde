from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ContestOut(BaseModel):
    id: str
    date: str
    status: str
    voting_state: str
    voting_opens_at: datetime
    voting_closes_at: datetime


class VotingStatusOut(BaseModel):
    contest_id: str
    voting_state: str
    is_voting_active: bool


class BallotCreate(BaseModel):
    # 범위/누락 검증은 서비스에서 IncompleteBallot 으로 처리한다
    photo_quality_rating: int
    requirement_votes: dict[str, bool] = Field(default_factory=dict)
    voting_context: Literal["global", "team"] = "global"
    team_id: str | None = None


class BallotOut(BaseModel):
    id: str
    submission_id: str
    voter_id: str
    contest_id: str
    voting_context: str
    team_id: str | None = None
    photo_quality_rating: int
    requirement_votes: dict[str, bool]
    requirement_score: int
    total_requirements: int
    final_score: float
    timestamp: datetime


class SubmissionScore(BaseModel):
    total_votes: int
    average_quality_rating: float
    requirement_scores: dict[str, float]
    requirement_pass_rate: float
    overall_score: float


class BallotResult(BaseModel):
    ballot: BallotOut
    submission_score: SubmissionScore
