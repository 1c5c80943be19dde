"""
팀 챌린지 집계 (순수 함수)

current_value 는 저장된 값에 더해 가는 카운터가 아니라, 참여 기록(ledger)
전체를 매번 다시 합산한 파생 값이다. 여러 멤버가 동시에 기여해도 각자의
참여 문서만 갱신하고 집계는 항상 재계산하므로 업데이트 유실이 생기지 않는다.
"""

from __future__ import annotations

from datetime import datetime, timezone

ACTIVE = "active"
COMPLETED = "completed"
PAUSED = "paused"
FAILED = "failed"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _joined_at(participation: dict) -> datetime:
    joined = participation.get("joined_at")
    if joined is None:
        return _EPOCH
    if joined.tzinfo is None:
        return joined.replace(tzinfo=timezone.utc)
    return joined


def rank_contributors(participations: list[dict], limit: int) -> list[dict]:
    """기여도 내림차순, 동률이면 먼저 참여한 사람 우선"""
    ranked = sorted(participations, key=lambda p: (-p.get("contribution", 0), _joined_at(p)))
    return [{"user_id": p["user_id"], "contribution": p.get("contribution", 0)} for p in ranked[:limit]]


def summarize_participations(target_value: float, participations: list[dict], *, top_limit: int = 5) -> dict:
    active = [p for p in participations if p.get("is_active", True)]
    total = sum(p.get("contribution", 0) for p in active)
    progress = min(100.0, total * 100 / target_value) if target_value > 0 else 0.0
    average = total / len(active) if active else 0
    return {
        "current_value": total,
        "progress": progress,
        "active_participants": len(active),
        "average_contribution": average,
        "completion_rate": progress,
        "top_contributors": rank_contributors(active, top_limit),
    }


def should_complete(previous_status: str, progress: float) -> bool:
    # 값이 아니라 직전 상태로 판정해야 재계산이 반복돼도 완료가 한 번만 일어난다
    return previous_status == ACTIVE and progress >= 100
