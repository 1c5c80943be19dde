from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from ...core.auth import get_current_user_id
from ...dependencies import get_mongo_db
from ...schemas import BallotCreate, BallotOut, BallotResult, ContestOut, VotingStatusOut
from ...services.contests import (
    contest_state,
    get_contest,
    get_or_create_contest,
    is_voting_active,
    list_voter_ballots,
    submit_ballot,
    voting_window,
)

router = APIRouter()


@router.get("/today", response_model=ContestOut)
async def get_today_contest(
    _user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> ContestOut:
    contest = await get_or_create_contest(db)
    opens_at, closes_at = voting_window(contest)
    return ContestOut(
        id=contest["_id"],
        date=contest["date"],
        status=contest.get("status", "active"),
        voting_state=contest_state(contest).value,
        voting_opens_at=opens_at,
        voting_closes_at=closes_at,
    )


@router.get("/{contest_id}/voting-status", response_model=VotingStatusOut)
async def get_voting_status(
    contest_id: str,
    _user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> VotingStatusOut:
    contest = await get_contest(db, contest_id)
    return VotingStatusOut(
        contest_id=contest_id,
        voting_state=contest_state(contest).value,
        is_voting_active=is_voting_active(contest),
    )


@router.post("/{contest_id}/submissions/{submission_id}/ballots", response_model=BallotResult)
async def cast_ballot(
    contest_id: str,
    submission_id: str,
    payload: BallotCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> BallotResult:
    contest = await get_contest(db, contest_id)
    result = await submit_ballot(
        db,
        contest,
        submission_id,
        user_id,
        payload.photo_quality_rating,
        payload.requirement_votes,
        voting_context=payload.voting_context,
        team_id=payload.team_id,
    )
    return BallotResult(**result)


@router.get("/{contest_id}/my-ballots", response_model=list[BallotOut])
async def get_my_ballots(
    contest_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> list[BallotOut]:
    ballots = await list_voter_ballots(db, contest_id, user_id)
    return [BallotOut(**b) for b in ballots]
