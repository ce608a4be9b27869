"""
Shared fixtures for the expense tracker tests.

Storage is replaced by an in-memory stand-in for a Motor collection that
understands the small subset of MongoDB queries the services issue. No test
talks to a real database.
"""
import os

# Set environment before the application modules read it
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import copy
from datetime import date, datetime
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, condition in query.items():
        value = doc.get(field)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if value is None:
                    return False
                if op == "$gte" and not value >= operand:
                    return False
                if op == "$lte" and not value <= operand:
                    return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, keys):
        for field, direction in reversed(keys):
            self._docs.sort(key=lambda d: d.get(field), reverse=direction == -1)
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _window(self):
        docs = self._docs[self._skip:]
        return docs[:self._limit] if self._limit else docs

    def __aiter__(self):
        self._iter = iter(self._window())
        return self

    async def __anext__(self):
        try:
            return copy.deepcopy(next(self._iter))
        except StopIteration:
            raise StopAsyncIteration


class FakeAggregateCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs

    async def to_list(self, length=None):
        return self._docs


class FakeCollection:
    """In-memory stand-in for AsyncIOMotorCollection. Counts queries and can be told to fail."""

    def __init__(self, name: str = "expenses"):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.find_calls = 0
        self.count_calls = 0
        self.aggregate_calls = 0
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("storage unavailable")

    def _select(self, query):
        return [d for d in self.docs if _matches(d, query)]

    async def count_documents(self, query):
        self._check()
        self.count_calls += 1
        return len(self._select(query))

    def find(self, query=None):
        self._check()
        self.find_calls += 1
        return FakeCursor(self._select(query or {}))

    async def find_one(self, query):
        self._check()
        found = self._select(query)
        return copy.deepcopy(found[0]) if found else None

    async def insert_one(self, doc):
        self._check()
        stored = dict(doc)
        stored.setdefault("_id", ObjectId())
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def update_one(self, query, update):
        self._check()
        found = self._select(query)
        if found:
            found[0].update(update.get("$set", {}))
        return SimpleNamespace(matched_count=len(found[:1]), modified_count=len(found[:1]))

    async def delete_one(self, query):
        self._check()
        found = self._select(query)
        if found:
            self.docs.remove(found[0])
        return SimpleNamespace(deleted_count=len(found[:1]))

    def aggregate(self, pipeline):
        self._check()
        self.aggregate_calls += 1
        docs = list(self.docs)
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _matches(d, stage["$match"])]
            elif "$group" in stage:
                spec = stage["$group"]
                key_field = spec["_id"].lstrip("$")
                groups: Dict[Any, Dict[str, Any]] = {}
                for d in docs:
                    group = groups.setdefault(d.get(key_field), {"_id": d.get(key_field)})
                    for out, acc in spec.items():
                        if out == "_id":
                            continue
                        operand = acc["$sum"]
                        inc = d.get(operand.lstrip("$"), 0) if isinstance(operand, str) else operand
                        group[out] = group.get(out, 0) + inc
                docs = list(groups.values())
            elif "$sort" in stage:
                for field, direction in reversed(list(stage["$sort"].items())):
                    docs.sort(key=lambda d: d.get(field), reverse=direction == -1)
        return FakeAggregateCursor(docs)

    async def create_index(self, keys, **kwargs):
        return "index"


def make_expense_doc(owner_id: str, amount: float, category: str, day: date, description: str = "item") -> Dict[str, Any]:
    return {
        "_id": ObjectId(),
        "amount": amount,
        "category": category,
        "description": description,
        "date": datetime.combine(day, datetime.min.time()),
        "owner_id": owner_id,
        "created_at": datetime(2024, 1, 1),
        "updated_at": datetime(2024, 1, 1),
    }


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def expenses_collection() -> FakeCollection:
    return FakeCollection("expenses")


@pytest.fixture
def users_collection() -> FakeCollection:
    return FakeCollection("users")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def result_cache(clock):
    from services.result_cache import ResultCache
    return ResultCache(default_ttl=30, clock=clock)


@pytest.fixture
def client(expenses_collection, users_collection, result_cache):
    """TestClient over the real app with storage and cache swapped for fresh fakes."""
    from dependencies import get_expenses_collection, get_result_cache, get_users_collection
    from main import app

    app.dependency_overrides[get_expenses_collection] = lambda: expenses_collection
    app.dependency_overrides[get_users_collection] = lambda: users_collection
    app.dependency_overrides[get_result_cache] = lambda: result_cache
    # Lifespan is not entered, so no database connection is attempted
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    from utils.security import create_access_token

    def _header(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _header
