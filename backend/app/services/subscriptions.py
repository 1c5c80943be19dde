from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable

from motor.motor_asyncio import AsyncIOMotorDatabase

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[dict | None], Awaitable[None]]


class Subscription:
    """
    변경 피드 구독 핸들

    전역 리스너 목록 없이 구독을 만든 쪽이 핸들을 들고 있다가 직접
    unsubscribe 한다.
    """

    def __init__(self, task: asyncio.Task, description: str) -> None:
        self._task = task
        self.description = description

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def unsubscribe(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("변경 피드 구독이 비정상 종료되었습니다: %s", exc)


def subscribe(
    db: AsyncIOMotorDatabase,
    collection: str,
    match: dict[str, Any],
    callback: ChangeCallback,
) -> Subscription:
    """
    MongoDB change stream 으로 컬렉션 변경을 구독합니다.

    Args:
        match: change 이벤트에 적용할 $match 조건 (예: {"documentKey._id": ...})
        callback: 변경된 전체 문서를 받는 코루틴 함수. 삭제 이벤트면 None.
    """
    pipeline = [{"$match": match}]

    async def _run() -> None:
        async with db[collection].watch(pipeline, full_document="updateLookup") as stream:
            async for change in stream:
                await callback(change.get("fullDocument"))

    task = asyncio.create_task(_run())
    task.add_done_callback(_log_task_failure)
    return Subscription(task, f"{collection}:{match}")
