"""
퀘스트 진행/자격 판정 도메인 에러

모든 에러는 HTTPException 을 상속하므로 라우터에서 별도 변환 없이 그대로
응답으로 나간다. detail 은 {"code": ..., "message": ...} 형태로 고정되어
클라이언트가 종류별 메시지를 보여줄 수 있다.
"""

from fastapi import HTTPException, status


class ProgressError(HTTPException):
    code: str = "progress_error"
    http_status: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "요청을 처리할 수 없습니다."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(
            status_code=self.http_status,
            detail={"code": self.code, "message": self.message},
        )

    def __str__(self) -> str:
        return self.message


class IneligibleError(ProgressError):
    code = "ineligible"
    http_status = status.HTTP_409_CONFLICT
    default_message = "퀘스트를 시작할 수 없습니다."


class InvalidStateTransition(ProgressError):
    code = "invalid_state_transition"
    http_status = status.HTTP_409_CONFLICT
    default_message = "현재 상태에서는 허용되지 않는 작업입니다."


class NotFoundError(ProgressError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "요청한 항목을 찾을 수 없습니다."


class PermissionDeniedError(ProgressError):
    code = "forbidden"
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "권한이 없습니다."


class NotAttemptOwnerError(PermissionDeniedError):
    default_message = "본인의 퀘스트 시도만 변경할 수 있습니다."


class AlreadyVoted(ProgressError):
    code = "already_voted"
    http_status = status.HTTP_409_CONFLICT
    default_message = "이미 투표한 제출물입니다."


class SelfVote(ProgressError):
    code = "self_vote"
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "본인의 제출물에는 투표할 수 없습니다."


class VotingClosed(ProgressError):
    code = "voting_closed"
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "현재 투표 가능한 시간이 아닙니다."


class IncompleteBallot(ProgressError):
    code = "incomplete_ballot"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "모든 항목에 투표해야 합니다."


class InvalidContribution(ProgressError):
    code = "invalid_contribution"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "챌린지 종류에 맞지 않는 기여도 기록입니다."
