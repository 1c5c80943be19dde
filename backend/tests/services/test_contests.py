"""
데일리 콘테스트 투표 테스트
- 투표 시간 판정 (콘테스트 날짜, 시작 시각 18시)
- 거부 종류와 검증 순서, 점수 집계
"""
from datetime import date, datetime, timezone

import pytest

from backend.app.core.errors import AlreadyVoted, IncompleteBallot, NotFoundError, SelfVote, VotingClosed
from backend.app.services.contests import (
    VotingState,
    compute_submission_score,
    contest_state,
    get_or_create_contest,
    is_voting_active,
    list_voter_ballots,
    requirement_keys,
    submit_ballot,
)

CONTEST = {"_id": "2024-05-01", "date": "2024-05-01", "status": "active"}
FULL_VOTES = {"subject_0": True, "subject_1": True, "style": True}


def _at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 5, day, hour, minute, tzinfo=timezone.utc)


async def _setup(seed):
    await seed.user("owner")
    await seed.quest("q1")
    await seed.submission("s1", "owner", "q1", contest_id="2024-05-01")
    return await seed.contest("2024-05-01")


@pytest.mark.parametrize(
    ("now", "expected"),
    [
        (_at(1, 12), VotingState.NOT_STARTED),
        (_at(1, 17, 59), VotingState.NOT_STARTED),
        (_at(1, 18), VotingState.OPEN),
        (_at(1, 23, 59), VotingState.OPEN),
        (_at(2, 0, 30), VotingState.CLOSED),
        (datetime(2024, 4, 30, 19, 0, tzinfo=timezone.utc), VotingState.CLOSED),
    ],
)
def test_contest_state(now, expected):
    assert contest_state(CONTEST, now) is expected
    assert is_voting_active(CONTEST, now) is (expected is VotingState.OPEN)


def test_requirement_keys():
    reqs = {"subjects": ["tree", "bench"], "style": "minimal", "time_of_day": "golden_hour", "min_resolution": 1080}

    assert requirement_keys(reqs) == ["subject_0", "subject_1", "style", "time_of_day", "resolution"]
    assert requirement_keys({"subjects": ["tree"], "time_of_day": "any"}) == ["subject_0"]
    assert requirement_keys(None) == ["general"]
    assert requirement_keys({}) == ["general"]


@pytest.mark.asyncio
async def test_voting_window_scenario(fake_db, seed):
    """12:00 투표 시간 전 거부 -> 19:00 접수 -> 20:00 중복 거부"""
    contest = await _setup(seed)

    with pytest.raises(VotingClosed):
        await submit_ballot(fake_db, contest, "s1", "voter", 4, FULL_VOTES, now=_at(1, 12))
    assert await fake_db["submission_votes"].count_documents({}) == 0

    result = await submit_ballot(fake_db, contest, "s1", "voter", 4, FULL_VOTES, now=_at(1, 19))
    assert result["ballot"]["id"] == "s1_voter"
    assert result["submission_score"]["total_votes"] == 1

    with pytest.raises(AlreadyVoted):
        await submit_ballot(fake_db, contest, "s1", "voter", 5, FULL_VOTES, now=_at(1, 20))
    assert await fake_db["submission_votes"].count_documents({}) == 1


@pytest.mark.asyncio
async def test_self_vote_is_checked_before_voting_window(fake_db, seed):
    contest = await _setup(seed)

    with pytest.raises(SelfVote):
        await submit_ballot(fake_db, contest, "s1", "owner", 4, FULL_VOTES, now=_at(1, 12))


@pytest.mark.asyncio
async def test_closed_after_contest_day(fake_db, seed):
    contest = await _setup(seed)

    with pytest.raises(VotingClosed):
        await submit_ballot(fake_db, contest, "s1", "voter", 4, FULL_VOTES, now=_at(2, 9))


@pytest.mark.asyncio
async def test_submission_from_another_contest_is_rejected(fake_db, seed):
    contest = await _setup(seed)
    await seed.submission("old", "someone", "q1", contest_id="2024-04-30")

    with pytest.raises(VotingClosed):
        await submit_ballot(fake_db, contest, "old", "voter", 5, FULL_VOTES, now=_at(1, 19))

    assert await fake_db["submission_votes"].count_documents({}) == 0
    submission = await fake_db["submissions"].find_one({"_id": "old"})
    assert "total_votes" not in submission


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("rating", "votes", "kwargs"),
    [
        (4, {"subject_0": True, "subject_1": False}, {}),
        (4, {**FULL_VOTES, "style": "yes"}, {}),
        (0, FULL_VOTES, {}),
        (6, FULL_VOTES, {}),
        (4, FULL_VOTES, {"voting_context": "team"}),
        (4, FULL_VOTES, {"team_id": "t1"}),
    ],
)
async def test_incomplete_ballot_persists_nothing(fake_db, seed, rating, votes, kwargs):
    contest = await _setup(seed)

    with pytest.raises(IncompleteBallot) as exc_info:
        await submit_ballot(fake_db, contest, "s1", "voter", rating, votes, now=_at(1, 19), **kwargs)

    assert exc_info.value.status_code == 422
    assert await fake_db["submission_votes"].count_documents({}) == 0
    submission = await fake_db["submissions"].find_one({"_id": "s1"})
    assert "total_votes" not in submission


@pytest.mark.asyncio
async def test_missing_submission(fake_db, seed):
    contest = await seed.contest("2024-05-01")

    with pytest.raises(NotFoundError):
        await submit_ballot(fake_db, contest, "nope", "voter", 4, FULL_VOTES, now=_at(1, 19))


@pytest.mark.asyncio
async def test_team_ballot_with_team_id_is_accepted(fake_db, seed):
    contest = await _setup(seed)

    result = await submit_ballot(
        fake_db, contest, "s1", "voter", 3, FULL_VOTES, voting_context="team", team_id="t1", now=_at(1, 19)
    )

    assert result["ballot"]["voting_context"] == "team"
    assert result["ballot"]["team_id"] == "t1"


@pytest.mark.asyncio
async def test_submission_score_aggregates_all_ballots(fake_db, seed):
    contest = await _setup(seed)
    ballots = [
        ("v1", 5, {"subject_0": True, "subject_1": True, "style": True}),
        ("v2", 4, {"subject_0": True, "subject_1": False, "style": True}),
        ("v3", 3, {"subject_0": True, "subject_1": False, "style": False}),
    ]
    for voter, rating, votes in ballots:
        result = await submit_ballot(fake_db, contest, "s1", voter, rating, votes, now=_at(1, 19))

    score = result["submission_score"]
    assert score["total_votes"] == 3
    assert score["average_quality_rating"] == 4
    assert score["requirement_scores"]["subject_0"] == pytest.approx(100)
    assert score["requirement_scores"]["subject_1"] == pytest.approx(100 / 3)
    assert score["requirement_pass_rate"] == pytest.approx(2 / 3)
    assert score["overall_score"] == pytest.approx(3.73)

    stored = await fake_db["submissions"].find_one({"_id": "s1"})
    assert stored["overall_score"] == score["overall_score"]

    first = await fake_db["submission_votes"].find_one({"_id": "s1_v1"})
    assert first["requirement_score"] == 3
    assert first["total_requirements"] == 3
    assert first["final_score"] == pytest.approx(5.0)


def test_tied_requirement_is_not_a_majority():
    ballots = [
        {"photo_quality_rating": 5, "requirement_votes": {"general": True}},
        {"photo_quality_rating": 5, "requirement_votes": {"general": False}},
    ]

    score = compute_submission_score(ballots, ["general"])

    assert score["requirement_pass_rate"] == 0
    assert score["overall_score"] == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_get_or_create_contest_is_idempotent(fake_db):
    first = await get_or_create_contest(fake_db, date(2024, 5, 1))
    second = await get_or_create_contest(fake_db, date(2024, 5, 1))

    assert first["_id"] == second["_id"] == "2024-05-01"
    assert first["created_at"] == second["created_at"]
    assert await fake_db["daily_contests"].count_documents({}) == 1


@pytest.mark.asyncio
async def test_list_voter_ballots(fake_db, seed):
    contest = await _setup(seed)
    await seed.submission("s2", "someone", "q1", contest_id="2024-05-01")
    await submit_ballot(fake_db, contest, "s1", "voter", 4, FULL_VOTES, now=_at(1, 19))
    await submit_ballot(fake_db, contest, "s2", "voter", 2, FULL_VOTES, now=_at(1, 20))

    ballots = await list_voter_ballots(fake_db, "2024-05-01", "voter")

    assert [b["submission_id"] for b in ballots] == ["s2", "s1"]
    assert await list_voter_ballots(fake_db, "2024-05-01", "other") == []
