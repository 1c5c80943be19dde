from __future__ import annotations

import asyncio
import copy
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))

from backend.app.core.security import create_access_token  # noqa: E402
from backend.app.db.mongo import MongoConnectionManager  # noqa: E402
from backend.app.db.redis import RedisConnectionManager  # noqa: E402
from backend.app.services.notifications import Notifier  # noqa: E402

_MISSING = object()


def _get_path(doc: Any, path: str) -> Any:
    current = doc
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _compare(value: Any, op: str, arg: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if op == "$gt":
        return value > arg
    if op == "$gte":
        return value >= arg
    if op == "$lt":
        return value < arg
    return value <= arg


def _match_value(value: Any, cond: Any) -> bool:
    if isinstance(cond, dict) and cond and all(key.startswith("$") for key in cond):
        for op, arg in cond.items():
            if op == "$in":
                if isinstance(value, list):
                    ok = any(item in arg for item in value)
                else:
                    ok = value is not _MISSING and value in arg
            elif op == "$nin":
                ok = not _match_value(value, {"$in": arg})
            elif op == "$ne":
                ok = not _match_value(value, arg)
            elif op == "$exists":
                ok = (value is not _MISSING) == bool(arg)
            elif op in ("$gt", "$gte", "$lt", "$lte"):
                ok = _compare(value, op, arg)
            else:
                raise NotImplementedError(op)
            if not ok:
                return False
        return True
    if cond is None:
        return value is _MISSING or value is None
    if isinstance(value, list) and not isinstance(cond, list):
        return cond in value
    return value is not _MISSING and value == cond


def _matches(doc: dict, query: dict) -> bool:
    return all(_match_value(_get_path(doc, key), cond) for key, cond in query.items())


def _apply_update(doc: dict, update: dict, *, inserting: bool) -> None:
    for op, fields in update.items():
        for path, value in fields.items():
            if op == "$set":
                _set_path(doc, path, copy.deepcopy(value))
            elif op == "$setOnInsert":
                if inserting:
                    _set_path(doc, path, copy.deepcopy(value))
            elif op == "$inc":
                current = _get_path(doc, path)
                _set_path(doc, path, (0 if current is _MISSING else current) + value)
            elif op == "$addToSet":
                current = _get_path(doc, path)
                items = [] if current is _MISSING else list(current)
                if value not in items:
                    items.append(value)
                _set_path(doc, path, items)
            elif op == "$push":
                current = _get_path(doc, path)
                _set_path(doc, path, ([] if current is _MISSING else list(current)) + [value])
            elif op == "$pull":
                current = _get_path(doc, path)
                if current is not _MISSING:
                    _set_path(doc, path, [item for item in current if item != value])
            else:
                raise NotImplementedError(op)


def _sort_key(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


class _Result:
    def __init__(self, **fields: Any) -> None:
        self.__dict__.update(fields)


class FakeCursor:
    def __init__(self, docs: list[dict]) -> None:
        self._docs = docs
        self._limit = 0

    def sort(self, key: Any, direction: int = 1) -> "FakeCursor":
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(_get_path(d, field)), reverse=order < 0)
        return self

    def limit(self, count: int) -> "FakeCursor":
        self._limit = count
        return self

    def _items(self) -> list[dict]:
        return self._docs[: self._limit] if self._limit else list(self._docs)

    async def to_list(self, length: int | None = None) -> list[dict]:
        items = self._items()
        return items[:length] if length else items

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._items():
            yield doc


class FakeChangeStream:
    def __init__(self, collection: "FakeCollection", pipeline: list[dict]) -> None:
        self._collection = collection
        self._match = pipeline[0]["$match"] if pipeline else {}
        self._queue: asyncio.Queue = asyncio.Queue()

    def offer(self, event: dict) -> None:
        if _matches(event, self._match):
            self._queue.put_nowait(event)

    async def __aenter__(self) -> "FakeChangeStream":
        self._collection.streams.append(self)
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        self._collection.streams.remove(self)

    def __aiter__(self) -> "FakeChangeStream":
        return self

    async def __anext__(self) -> dict:
        return await self._queue.get()


class FakeCollection:
    """Motor 컬렉션의 인메모리 대체품 (테스트에서 쓰는 연산만 지원)"""

    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: dict[Any, dict] = {}
        self.indexes: list[Any] = []
        self.streams: list[FakeChangeStream] = []

    def _emit(self, operation: str, doc_id: Any, full_document: dict | None) -> None:
        event = {
            "operationType": operation,
            "documentKey": {"_id": doc_id},
            "fullDocument": copy.deepcopy(full_document),
        }
        for stream in list(self.streams):
            stream.offer(event)

    def _find_raw(self, query: dict) -> list[dict]:
        return [doc for doc in self.docs.values() if _matches(doc, query)]

    async def create_index(self, keys: Any, **_kwargs: Any) -> str:
        self.indexes.append(keys)
        return str(keys)

    async def find_one(self, query: dict | None = None) -> dict | None:
        found = self._find_raw(query or {})
        return copy.deepcopy(found[0]) if found else None

    def find(self, query: dict | None = None) -> FakeCursor:
        return FakeCursor([copy.deepcopy(doc) for doc in self._find_raw(query or {})])

    async def count_documents(self, query: dict) -> int:
        return len(self._find_raw(query))

    async def insert_one(self, doc: dict) -> _Result:
        doc.setdefault("_id", ObjectId())
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} _id: {doc['_id']}")
        self.docs[doc["_id"]] = copy.deepcopy(doc)
        self._emit("insert", doc["_id"], self.docs[doc["_id"]])
        return _Result(inserted_id=doc["_id"])

    async def insert_many(self, docs: list[dict]) -> _Result:
        ids = [(await self.insert_one(doc)).inserted_id for doc in docs]
        return _Result(inserted_ids=ids)

    def _upsert(self, query: dict, update: dict) -> dict:
        doc = {key: copy.deepcopy(value) for key, value in query.items() if not isinstance(value, dict)}
        doc.setdefault("_id", ObjectId())
        _apply_update(doc, update, inserting=True)
        self.docs[doc["_id"]] = doc
        self._emit("insert", doc["_id"], doc)
        return doc

    async def update_one(self, query: dict, update: dict, upsert: bool = False) -> _Result:
        found = self._find_raw(query)
        if not found:
            if upsert:
                doc = self._upsert(query, update)
                return _Result(matched_count=0, modified_count=0, upserted_id=doc["_id"])
            return _Result(matched_count=0, modified_count=0, upserted_id=None)
        doc = found[0]
        before = copy.deepcopy(doc)
        _apply_update(doc, update, inserting=False)
        modified = int(doc != before)
        if modified:
            self._emit("update", doc["_id"], doc)
        return _Result(matched_count=1, modified_count=modified, upserted_id=None)

    async def update_many(self, query: dict, update: dict) -> _Result:
        found = self._find_raw(query)
        modified = 0
        for doc in found:
            before = copy.deepcopy(doc)
            _apply_update(doc, update, inserting=False)
            if doc != before:
                modified += 1
                self._emit("update", doc["_id"], doc)
        return _Result(matched_count=len(found), modified_count=modified)

    async def replace_one(self, query: dict, replacement: dict, upsert: bool = False) -> _Result:
        found = self._find_raw(query)
        if not found and not upsert:
            return _Result(matched_count=0, modified_count=0)
        doc_id = found[0]["_id"] if found else replacement.get("_id", query.get("_id", ObjectId()))
        self.docs[doc_id] = {**copy.deepcopy(replacement), "_id": doc_id}
        self._emit("replace", doc_id, self.docs[doc_id])
        return _Result(matched_count=len(found[:1]), modified_count=len(found[:1]))

    async def find_one_and_update(
        self,
        query: dict,
        update: dict,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> dict | None:
        found = self._find_raw(query)
        if not found:
            if not upsert:
                return None
            doc = self._upsert(query, update)
            return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else None
        doc = found[0]
        before = copy.deepcopy(doc)
        _apply_update(doc, update, inserting=False)
        if doc != before:
            self._emit("update", doc["_id"], doc)
        return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before

    async def delete_one(self, query: dict) -> _Result:
        found = self._find_raw(query)
        if not found:
            return _Result(deleted_count=0)
        doc_id = found[0]["_id"]
        del self.docs[doc_id]
        self._emit("delete", doc_id, None)
        return _Result(deleted_count=1)

    async def delete_many(self, query: dict) -> _Result:
        found = self._find_raw(query)
        for doc in found:
            del self.docs[doc["_id"]]
            self._emit("delete", doc["_id"], None)
        return _Result(deleted_count=len(found))

    def watch(self, pipeline: list[dict] | None = None, **_kwargs: Any) -> FakeChangeStream:
        return FakeChangeStream(self, pipeline or [])


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    async def command(self, name: str) -> dict:
        return {"ok": 1.0}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


class _DummyMongoClient:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db

    def __getitem__(self, _name: str) -> FakeDatabase:
        return self._db

    def close(self) -> None:
        return None


class FakeRedis:
    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class Seeder:
    """테스트용 기본 문서 생성 헬퍼"""

    def __init__(self, db: FakeDatabase) -> None:
        self.db = db

    async def user(self, user_id: str, **fields: Any) -> dict:
        doc = {"_id": user_id, "display_name": user_id, "xp": 0, "total_xp": 0, "level": 1, **fields}
        await self.db["users"].insert_one(doc)
        return doc

    async def quest(self, quest_id: str, **fields: Any) -> dict:
        doc = {
            "_id": quest_id,
            "title": f"{quest_id} 퀘스트",
            "status": "active",
            "start_date": "2024-01-01",
            "end_date": "2099-12-31",
            "min_level": 1,
            "xp_reward": 100,
            "photo_requirements": {"subjects": ["tree", "bench"], "style": "minimal"},
            **fields,
        }
        await self.db["quests"].insert_one(doc)
        return doc

    async def team(self, team_id: str, leader_id: str, members: list[str]) -> dict:
        doc = {"_id": team_id, "name": f"{team_id} 팀", "leader_id": leader_id, "members": members}
        await self.db["teams"].insert_one(doc)
        return doc

    async def submission(self, submission_id: str, user_id: str, quest_id: str, **fields: Any) -> dict:
        doc = {"_id": submission_id, "user_id": user_id, "quest_id": quest_id, **fields}
        await self.db["submissions"].insert_one(doc)
        return doc

    async def contest(self, day: str) -> dict:
        doc = {"_id": day, "date": day, "status": "active", "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc)}
        await self.db["daily_contests"].insert_one(doc)
        return doc


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def notifier(fake_db: FakeDatabase, fake_redis: FakeRedis) -> Notifier:
    return Notifier(fake_db, fake_redis, channel="test:notifications")


@pytest.fixture
def seed(fake_db: FakeDatabase) -> Seeder:
    return Seeder(fake_db)


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest.fixture(autouse=True)
def stub_infrastructure(monkeypatch: pytest.MonkeyPatch, fake_db: FakeDatabase, fake_redis: FakeRedis) -> None:
    """
    DB 연결을 인메모리 stub 으로 대체하는 fixture
    앱(라우터)과 서비스 테스트가 같은 fake_db / fake_redis 를 본다.
    """
    dummy_mongo_client = _DummyMongoClient(fake_db)

    async def _noop_close(cls: type) -> None:
        return None

    monkeypatch.setattr(
        MongoConnectionManager,
        "get_client",
        classmethod(lambda cls: dummy_mongo_client),
    )
    monkeypatch.setattr(
        RedisConnectionManager,
        "get_client",
        classmethod(lambda cls: fake_redis),
    )
    monkeypatch.setattr(MongoConnectionManager, "close", classmethod(lambda cls: _noop_close(cls)))
    monkeypatch.setattr(RedisConnectionManager, "close", classmethod(lambda cls: _noop_close(cls)))
