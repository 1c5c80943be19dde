from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from ..core.config import settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """naive datetime 은 UTC 로 간주"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime, tz_name: str | None = None) -> datetime:
    return as_utc(value).astimezone(ZoneInfo(tz_name or settings.app_timezone))


def to_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # "2024-05-01" 또는 "2024-05-01T00:00:00Z" 형태 모두 허용
    return date.fromisoformat(value[:10])


def parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")[:2]
    return time(int(hour), int(minute))


def in_daily_window(current: time, start: time, end: time) -> bool:
    """
    start~end (양 끝 포함) 안에 current 가 있는지 확인.
    end 가 start 보다 이르면 자정을 넘기는 구간(예: 22:00~02:00)으로 본다.
    """
    current = current.replace(second=0, microsecond=0)
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end
