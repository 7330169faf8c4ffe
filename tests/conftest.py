"""Shared pytest fixtures."""

import asyncio
import copy
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode
from uuid import uuid4

import pytest
import pytest_asyncio
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from navigapp.app import App
from navigapp.config import Config
from navigapp.core.core import Core
from navigapp.core.modules.identity.verifier import build_data_check_string, sign_data_check_string

CLOCK_MODULES = [
    "navigapp.core.modules.handshake.service",
    "navigapp.core.modules.session.service",
    "navigapp.core.modules.user.service",
    "navigapp.core.modules.token.service",
    "navigapp.core.modules.identity.verifier",
    "navigapp.client.auth",
]

BOT_TOKEN = "123456:TEST-BOT-TOKEN"
JWT_SECRET = "test-secret-that-is-long-enough-for-hs256-signing"


# In-memory stand-in for the pymongo async API used by the services


@dataclass
class FakeUpdateResult:
    matched_count: int
    modified_count: int


@dataclass
class FakeInsertResult:
    inserted_id: Any


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        value = doc.get(key)
        if isinstance(condition, dict) and any(op.startswith("$") for op in condition):
            for op, operand in condition.items():
                if op == "$gte" and not (value is not None and value >= operand):
                    return False
                if op == "$lt" and not (value is not None and value < operand):
                    return False
                if op == "$ne" and value == operand:
                    return False
        elif value != condition:
            return False
    return True


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.indexes: list[dict[str, Any]] = []
        self.failures: dict[str, PyMongoError] = {}

    def fail_next(self, operation: str, error: PyMongoError | None = None) -> None:
        """Make the next call of ``operation`` raise a persistence error."""
        self.failures[operation] = error or PyMongoError("simulated failure")

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(0)
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    def _check_unique(self, candidate: dict[str, Any], ignore: dict[str, Any] | None = None) -> None:
        unique_fields = ["_id"] + [index["keys"][0][0] for index in self.indexes if index["unique"]]
        for field in unique_fields:
            if candidate.get(field) is None:
                continue
            for doc in self.docs:
                if doc is not ignore and doc.get(field) == candidate[field]:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {field}")

    def _find(self, query: dict[str, Any]) -> dict[str, Any] | None:
        return next((doc for doc in self.docs if _matches(doc, query)), None)

    def _apply(self, doc: dict[str, Any], update: dict[str, Any], inserting: bool) -> dict[str, Any]:
        updated = copy.deepcopy(doc)
        updated.update(copy.deepcopy(update.get("$set", {})))
        if inserting:
            updated.update(copy.deepcopy(update.get("$setOnInsert", {})))
        return updated

    async def create_index(self, keys: list[tuple[str, int]], unique: bool = False, **kwargs: Any) -> str:
        self.indexes.append({"keys": keys, "unique": unique, **kwargs})
        return "_".join(f"{field}_{direction}" for field, direction in keys)

    async def insert_one(self, document: dict[str, Any]) -> FakeInsertResult:
        await self._enter("insert_one")
        doc = copy.deepcopy(document)
        doc.setdefault("_id", uuid4())
        self._check_unique(doc)
        self.docs.append(doc)
        return FakeInsertResult(inserted_id=doc["_id"])

    async def find_one(self, query: dict[str, Any]) -> dict[str, Any] | None:
        await self._enter("find_one")
        doc = self._find(query)
        return copy.deepcopy(doc) if doc is not None else None

    async def find_one_and_update(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> dict[str, Any] | None:
        await self._enter("find_one_and_update")
        doc = self._find(query)
        if doc is None:
            if not upsert:
                return None
            seed = {key: value for key, value in query.items() if not isinstance(value, dict)}
            inserted = self._apply(seed, update, inserting=True)
            inserted.setdefault("_id", uuid4())
            self._check_unique(inserted)
            self.docs.append(inserted)
            return copy.deepcopy(inserted) if return_document == ReturnDocument.AFTER else None

        updated = self._apply(doc, update, inserting=False)
        self._check_unique(updated, ignore=doc)
        self.docs[self.docs.index(doc)] = updated
        return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else doc)

    async def update_one(self, query: dict[str, Any], update: dict[str, Any]) -> FakeUpdateResult:
        await self._enter("update_one")
        doc = self._find(query)
        if doc is None:
            return FakeUpdateResult(matched_count=0, modified_count=0)
        updated = self._apply(doc, update, inserting=False)
        self._check_unique(updated, ignore=doc)
        self.docs[self.docs.index(doc)] = updated
        return FakeUpdateResult(matched_count=1, modified_count=int(updated != doc))


class FakeDatabase:
    def __init__(self, name: str) -> None:
        self.name = name
        self.collections: dict[str, FakeCollection] = {}

    def get_collection(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(name))


class FakeMongoClient:
    def __init__(self) -> None:
        self.databases: dict[str, FakeDatabase] = {}
        self.closed = False

    def get_database(self, name: str) -> FakeDatabase:
        return self.databases.setdefault(name, FakeDatabase(name))

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Replacement for ``navigapp.utils.now`` that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch):
    """Simulated UTC clock shared by every module that reads the current time."""
    fake = FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=UTC))
    for module in CLOCK_MODULES:
        monkeypatch.setattr(f"{module}.now", fake)
    return fake


@pytest.fixture
def config():
    """Local-environment config that ignores any .env file."""
    return Config(
        _env_file=None,
        database_url="mongodb://localhost:27017/navigapp_test",
        host="127.0.0.1",
        port=3100,
        debug=True,
        telegram_bot_token=BOT_TOKEN,
        webapp_url="https://navigapp.example",
        jwt_secret=JWT_SECRET,
    )


@pytest.fixture
def mongo_client():
    return FakeMongoClient()


@pytest.fixture
def database(mongo_client):
    return mongo_client.get_database("navigapp_test")


@pytest.fixture
def core(config, mongo_client):
    return Core(config, mongo_client=mongo_client)


@pytest_asyncio.fixture
async def started_core(core):
    """Core with indexes created, as after application startup."""
    await core.on_start()
    return core


@pytest.fixture
def app(config, core):
    return App(config, core=core)


@pytest.fixture
def make_init_data():
    """Build Telegram-style signed init data for a user at a given auth time."""

    def build(user: dict[str, Any], auth_date: datetime, bot_token: str = BOT_TOKEN, **extra: str) -> str:
        fields = {"auth_date": str(int(auth_date.timestamp())), "user": json.dumps(user), **extra}
        fields["hash"] = sign_data_check_string(build_data_check_string(fields.items()), bot_token)
        return urlencode(fields)

    return build
