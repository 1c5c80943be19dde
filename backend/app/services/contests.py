from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..core.config import settings
from ..core.errors import AlreadyVoted, IncompleteBallot, NotFoundError, SelfVote, VotingClosed
from .eligibility import QUESTS_COL
from .timeutils import to_date, to_local, utc_now

logger = logging.getLogger(__name__)

CONTESTS_COL = "daily_contests"
SUBMISSIONS_COL = "submissions"
VOTES_COL = "submission_votes"

VOTING_CONTEXTS = ("global", "team")


class VotingState(str, Enum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    CLOSED = "closed"


def ballot_id(submission_id: str, voter_id: str) -> str:
    return f"{submission_id}_{voter_id}"


def _normalize(doc: dict) -> dict:
    doc = {**doc}
    doc["id"] = str(doc.pop("_id"))
    return doc


def contest_date(contest: dict) -> date:
    return to_date(contest.get("date") or contest["_id"])


def voting_window(contest: dict) -> tuple[datetime, datetime]:
    """콘테스트 날짜(로컬) 기준 투표 구간 [opens_at, closes_at)"""
    day = contest_date(contest)
    tz = ZoneInfo(settings.app_timezone)
    opens_at = datetime.combine(day, time(settings.contest_voting_open_hour), tzinfo=tz)
    closes_at = datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)
    return opens_at, closes_at


def contest_state(contest: dict, now: datetime | None = None) -> VotingState:
    """
    콘테스트 당일 투표 시작 시각 전이면 NOT_STARTED, 시작 시각부터 그날
    자정 전까지 OPEN, 그 밖의 시간(다른 날짜 포함)은 CLOSED.
    """
    local_now = to_local(now or utc_now())
    if local_now.date() != contest_date(contest):
        return VotingState.CLOSED
    if local_now.hour < settings.contest_voting_open_hour:
        return VotingState.NOT_STARTED
    return VotingState.OPEN


def is_voting_active(contest: dict, now: datetime | None = None) -> bool:
    return contest_state(contest, now) is VotingState.OPEN


async def get_contest(db: AsyncIOMotorDatabase, contest_id: str) -> dict:
    contest = await db[CONTESTS_COL].find_one({"_id": contest_id})
    if not contest:
        raise NotFoundError("콘테스트를 찾을 수 없습니다.")
    return contest


async def get_or_create_contest(db: AsyncIOMotorDatabase, day: date | None = None) -> dict:
    """해당 날짜(기본: 오늘, 로컬)의 데일리 콘테스트를 조회하거나 생성"""
    day = day or to_local(utc_now()).date()
    contest_id = day.isoformat()
    return await db[CONTESTS_COL].find_one_and_update(
        {"_id": contest_id},
        {"$setOnInsert": {"date": contest_id, "status": "active", "created_at": utc_now()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def requirement_keys(photo_requirements: dict | None) -> list[str]:
    """
    퀘스트 사진 요구사항에서 투표 항목 키를 뽑습니다.

    피사체마다 subject_{i}, 그리고 style / time_of_day(any 제외) / resolution.
    요구사항이 하나도 없으면 general 하나로 평가한다.
    """
    reqs = photo_requirements or {}
    keys = [f"subject_{i}" for i, _ in enumerate(reqs.get("subjects") or [])]
    if reqs.get("style"):
        keys.append("style")
    if reqs.get("time_of_day") and reqs["time_of_day"] != "any":
        keys.append("time_of_day")
    if reqs.get("min_resolution"):
        keys.append("resolution")
    return keys or ["general"]


def _validate_ballot(
    keys: list[str],
    photo_quality_rating,
    requirement_votes: dict,
    voting_context: str,
    team_id: str | None,
) -> None:
    if isinstance(photo_quality_rating, bool) or not isinstance(photo_quality_rating, int):
        raise IncompleteBallot("사진 품질 점수는 1~5 사이의 정수여야 합니다.")
    if not 1 <= photo_quality_rating <= 5:
        raise IncompleteBallot("사진 품질 점수는 1~5 사이의 정수여야 합니다.")
    missing = [key for key in keys if not isinstance(requirement_votes.get(key), bool)]
    if missing:
        raise IncompleteBallot(f"투표하지 않은 항목이 있습니다: {', '.join(missing)}")
    if voting_context not in VOTING_CONTEXTS:
        raise IncompleteBallot(f"알 수 없는 투표 구분입니다: {voting_context}")
    if (voting_context == "team") != bool(team_id):
        raise IncompleteBallot("팀 투표에는 team_id 가 필요하고, 전체 투표에는 team_id 를 보낼 수 없습니다.")


def compute_submission_score(ballots: list[dict], keys: list[str]) -> dict:
    """
    제출물에 대한 전체 투표로부터 점수를 계산합니다. (순수 함수)

    overall_score = 품질 가중치 * 평균 품질 점수 + 요구사항 가중치 * 충족률 * 5
    충족률은 과반이 "충족" 으로 투표한 항목의 비율이다.
    """
    total = len(ballots)
    if total == 0:
        return {
            "total_votes": 0,
            "average_quality_rating": 0.0,
            "requirement_scores": {key: 0.0 for key in keys},
            "requirement_pass_rate": 0.0,
            "overall_score": 0.0,
        }

    average = sum(b["photo_quality_rating"] for b in ballots) / total
    requirement_scores: dict[str, float] = {}
    passed = 0
    for key in keys:
        yes = sum(1 for b in ballots if b.get("requirement_votes", {}).get(key) is True)
        requirement_scores[key] = yes / total * 100
        if yes * 2 > total:
            passed += 1
    pass_rate = passed / len(keys) if keys else 0.0
    overall = settings.ballot_quality_weight * average + settings.ballot_requirement_weight * pass_rate * 5
    return {
        "total_votes": total,
        "average_quality_rating": round(average, 2),
        "requirement_scores": requirement_scores,
        "requirement_pass_rate": pass_rate,
        "overall_score": round(overall, 2),
    }


async def submit_ballot(
    db: AsyncIOMotorDatabase,
    contest: dict,
    submission_id: str,
    voter_id: str,
    photo_quality_rating: int,
    requirement_votes: dict[str, bool],
    *,
    voting_context: str = "global",
    team_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    투표 한 건을 검증하고 저장한 뒤 제출물 점수를 다시 계산합니다.

    검증 순서: 중복 투표 -> 본인 제출물 -> 투표 시간 -> 항목 누락.
    투표 시간은 제출물이 속한 콘테스트 기준이라, 다른 콘테스트의 제출물은
    투표 시간 검사에서 VotingClosed 로 거부된다.
    검증에 실패하면 아무것도 저장하지 않는다. 투표 문서 id 가
    (submission, voter) 로 고정되어 있어서 동시에 두 번 들어와도
    하나만 저장되고 나머지는 AlreadyVoted 가 된다.
    """
    now = now or utc_now()
    vote_id = ballot_id(submission_id, voter_id)

    if await db[VOTES_COL].find_one({"_id": vote_id}):
        raise AlreadyVoted()

    submission = await db[SUBMISSIONS_COL].find_one({"_id": submission_id})
    if not submission:
        raise NotFoundError("제출물을 찾을 수 없습니다.")
    if submission.get("user_id") == voter_id:
        raise SelfVote()

    owning_contest_id = submission.get("contest_id")
    if owning_contest_id is not None and owning_contest_id != contest["_id"]:
        raise VotingClosed("이 콘테스트의 제출물이 아닙니다.")

    state = contest_state(contest, now)
    if state is not VotingState.OPEN:
        if state is VotingState.NOT_STARTED:
            raise VotingClosed(f"투표는 {settings.contest_voting_open_hour:02d}:00 부터 시작됩니다.")
        raise VotingClosed("투표가 마감된 콘테스트입니다.")

    quest = await db[QUESTS_COL].find_one({"_id": submission.get("quest_id")})
    keys = requirement_keys((quest or {}).get("photo_requirements"))
    _validate_ballot(keys, photo_quality_rating, requirement_votes, voting_context, team_id)

    met = sum(1 for key in keys if requirement_votes[key])
    ballot = {
        "_id": vote_id,
        "submission_id": submission_id,
        "voter_id": voter_id,
        "contest_id": contest["_id"],
        "voting_context": voting_context,
        "team_id": team_id,
        "photo_quality_rating": photo_quality_rating,
        "requirement_votes": {key: requirement_votes[key] for key in keys},
        "requirement_score": met,
        "total_requirements": len(keys),
        "final_score": settings.ballot_quality_weight * photo_quality_rating
        + settings.ballot_requirement_weight * (met / len(keys)) * 5,
        "timestamp": now,
    }
    try:
        await db[VOTES_COL].insert_one(ballot)
    except DuplicateKeyError as exc:
        raise AlreadyVoted() from exc

    ballots = await db[VOTES_COL].find({"submission_id": submission_id}).to_list(length=None)
    score = compute_submission_score(ballots, keys)
    await db[SUBMISSIONS_COL].update_one({"_id": submission_id}, {"$set": {**score, "updated_at": now}})
    logger.info(
        "투표 접수: contest=%s submission=%s voter=%s votes=%d",
        contest["_id"],
        submission_id,
        voter_id,
        score["total_votes"],
    )
    return {"ballot": _normalize(ballot), "submission_score": score}


async def list_voter_ballots(db: AsyncIOMotorDatabase, contest_id: str, voter_id: str) -> list[dict]:
    cursor = db[VOTES_COL].find({"contest_id": contest_id, "voter_id": voter_id}).sort("timestamp", -1)
    items: list[dict] = []
    async for doc in cursor:
        items.append(_normalize(doc))
    return items
