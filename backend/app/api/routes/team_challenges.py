from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from ...core.auth import get_current_user_id
from ...core.errors import NotFoundError
from ...core.security import TokenError, decode_token
from ...dependencies import get_mongo_db, get_notifier
from ...schemas import (
    ChallengeStatusUpdate,
    ContributionUpdate,
    DeleteResult,
    TeamChallengeCreate,
    TeamChallengeOut,
)
from ...services.notifications import Notifier
from ...services.team_challenges import (
    create_team_challenge,
    delete_team_challenge,
    get_team,
    get_team_challenge,
    join_team_challenge,
    leave_team_challenge,
    list_team_challenges,
    recalculate_challenge,
    record_contribution,
    set_contribution,
    subscribe_to_challenge,
    update_challenge_status,
)

router = APIRouter()


def _to_out(doc: dict) -> TeamChallengeOut:
    data = {k: v for k, v in doc.items() if k != "_id"}
    data.setdefault("id", str(doc.get("_id")))
    return TeamChallengeOut(**data)


@router.post("", response_model=TeamChallengeOut, status_code=status.HTTP_201_CREATED)
async def create_challenge(
    payload: TeamChallengeCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> TeamChallengeOut:
    challenge = await create_team_challenge(db, payload.model_dump(), user_id)
    return _to_out(challenge)


@router.get("", response_model=list[TeamChallengeOut])
async def get_team_challenges(
    team_id: str = Query(...),
    _user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> list[TeamChallengeOut]:
    challenges = await list_team_challenges(db, team_id)
    return [_to_out(c) for c in challenges]


@router.get("/{challenge_id}", response_model=TeamChallengeOut)
async def get_challenge(
    challenge_id: str,
    _user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> TeamChallengeOut:
    challenge = await get_team_challenge(db, challenge_id)
    if not challenge:
        raise NotFoundError("팀 챌린지를 찾을 수 없습니다.")
    return _to_out(challenge)


@router.delete("/{challenge_id}", response_model=DeleteResult)
async def delete_challenge(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> DeleteResult:
    removed = await delete_team_challenge(db, challenge_id, user_id)
    return DeleteResult(deleted=True, participations_removed=removed)


@router.post("/{challenge_id}/join", response_model=TeamChallengeOut)
async def join_challenge(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    notifier: Notifier = Depends(get_notifier),
) -> TeamChallengeOut:
    return _to_out(await join_team_challenge(db, notifier, challenge_id, user_id))


@router.post("/{challenge_id}/leave", response_model=TeamChallengeOut)
async def leave_challenge(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    notifier: Notifier = Depends(get_notifier),
) -> TeamChallengeOut:
    return _to_out(await leave_team_challenge(db, notifier, challenge_id, user_id))


@router.post("/{challenge_id}/contributions", response_model=TeamChallengeOut)
async def add_contribution(
    challenge_id: str,
    payload: ContributionUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    notifier: Notifier = Depends(get_notifier),
) -> TeamChallengeOut:
    if payload.delta is not None:
        challenge = await record_contribution(db, notifier, challenge_id, user_id, payload.delta)
    elif payload.value is not None:
        challenge = await set_contribution(db, notifier, challenge_id, user_id, payload.value)
    else:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="delta 또는 value 중 하나가 필요합니다."
        )
    return _to_out(challenge)


@router.post("/{challenge_id}/recalculate", response_model=TeamChallengeOut)
async def recalculate(
    challenge_id: str,
    _user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
    notifier: Notifier = Depends(get_notifier),
) -> TeamChallengeOut:
    return _to_out(await recalculate_challenge(db, notifier, challenge_id))


@router.patch("/{challenge_id}/status", response_model=TeamChallengeOut)
async def change_status(
    challenge_id: str,
    payload: ChallengeStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
) -> TeamChallengeOut:
    return _to_out(await update_challenge_status(db, challenge_id, user_id, payload.status))


@router.websocket("/{challenge_id}/live")
async def challenge_live_feed(
    websocket: WebSocket,
    challenge_id: str,
    token: str = Query(default=""),
    db: AsyncIOMotorDatabase = Depends(get_mongo_db),
):
    """
    팀 챌린지 진행 상황 실시간 스트림
    사용법: ws://localhost:8000/api/team-challenges/{id}/live?token=<access token>
    """
    try:
        payload = decode_token(token)
    except TokenError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="인증 실패")
        return
    if payload.get("type") != "access":
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Access 토큰이 아닙니다.")
        return

    challenge = await get_team_challenge(db, challenge_id)
    if not challenge:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="팀 챌린지를 찾을 수 없습니다.")
        return

    try:
        team = await get_team(db, challenge["team_id"])
    except NotFoundError:
        team = {}
    if payload["sub"] not in team.get("members", []):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="팀원만 볼 수 있습니다.")
        return

    await websocket.accept()

    async def forward(doc: dict | None) -> None:
        if doc is not None:
            await websocket.send_json(_to_out(doc).model_dump(mode="json"))

    subscription = subscribe_to_challenge(db, challenge_id, forward)
    try:
        await websocket.send_json(_to_out(challenge).model_dump(mode="json"))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await subscription.unsubscribe()
