"""Shared fakes and fixtures"""
import copy
import itertools
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Set, Tuple
from zoneinfo import ZoneInfo

import pytest

from choreflow.config import Settings
from choreflow.database import DocumentStore, DocumentStoreError
from choreflow.engine import NotificationEngine
from choreflow.services.directory import FamilyDirectory
from choreflow.services.notification import NotificationDispatchQueue
from choreflow.services.push import PushProvider
from choreflow.utils.clock import Clock

UTC = ZoneInfo("UTC")

# A Tuesday
START = datetime(2025, 3, 4, 10, 0, tzinfo=UTC)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store; ``fail`` makes chosen operations raise DocumentStoreError"""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._failures: Set[Tuple[str, str]] = set()
        self._ids = itertools.count(1)

    def fail(self, operation: str = "*", collection: str = "*"):
        self._failures.add((operation, collection))

    def recover(self):
        self._failures.clear()

    def seed(self, collection: str, doc_id: str, record: Dict[str, Any]):
        self.collections[collection][doc_id] = {**copy.deepcopy(record), "id": doc_id}

    def all(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self.collections[collection].values()]

    def _check(self, operation: str, collection: str):
        for op, coll in ((operation, collection), (operation, "*"), ("*", collection), ("*", "*")):
            if (op, coll) in self._failures:
                raise DocumentStoreError(f"{operation} on {collection} failed")

    async def get(self, collection, doc_id):
        self._check("get", collection)
        doc = self.collections[collection].get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(self, collection, filters=None):
        self._check("query", collection)
        return [
            copy.deepcopy(doc)
            for doc in self.collections[collection].values()
            if all(doc.get(key) == value for key, value in (filters or {}).items())
        ]

    async def add(self, collection, record):
        self._check("add", collection)
        doc_id = f"{collection}-{next(self._ids)}"
        self.collections[collection][doc_id] = {**copy.deepcopy(record), "id": doc_id}
        return doc_id

    async def update(self, collection, doc_id, patch):
        self._check("update", collection)
        if doc_id not in self.collections[collection]:
            raise DocumentStoreError(f"{collection}/{doc_id} not found")
        self.collections[collection][doc_id].update(copy.deepcopy(patch))

    async def set(self, collection, doc_id, record):
        self._check("set", collection)
        self.collections[collection][doc_id] = {**copy.deepcopy(record), "id": doc_id}

    async def delete(self, collection, doc_id):
        self._check("delete", collection)
        self.collections[collection].pop(doc_id, None)


class FrozenClock(Clock):
    def __init__(self, start: datetime = START):
        self._now = start

    @property
    def tz(self):
        return UTC

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime):
        self._now = moment

    def advance(self, **kwargs):
        self._now += timedelta(**kwargs)


class RecordingPushProvider(PushProvider):
    """Records every send; ``fail`` makes sends return False"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.attempts = 0
        self.fail = False

    async def send(self, device_token, title, body, data=None):
        self.attempts += 1
        if self.fail:
            return False
        self.sent.append({"token": device_token, "title": title, "body": body, "data": data or {}})
        return True


def seed_family(store: InMemoryDocumentStore):
    store.seed("families", "fam-1", {"name": "Rivera", "member_ids": ["parent-1", "child-1"]})
    store.seed("users", "parent-1", {
        "family_id": "fam-1",
        "display_name": "Pat",
        "role": "parent",
        "push_token": "ExponentPushToken[parent]",
    })
    store.seed("users", "child-1", {
        "family_id": "fam-1",
        "display_name": "Sam",
        "role": "child",
        "push_token": "ExponentPushToken[child]",
        "points": 50,
    })


def make_task(**overrides) -> Dict[str, Any]:
    task = {
        "id": "task-1",
        "family_id": "fam-1",
        "title": "Empty Dishwasher",
        "assigned_to": "child-1",
        "status": "pending",
        "priority": "medium",
        "due_date": (START + timedelta(hours=5)).isoformat(),
        "escalation_level": 0,
    }
    task.update(overrides)
    return task


@pytest.fixture
def config():
    return Settings(TIMEZONE="UTC", WEBHOOK_SECRET="")


@pytest.fixture
def store():
    store = InMemoryDocumentStore()
    seed_family(store)
    return store


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def push():
    return RecordingPushProvider()


@pytest.fixture
def directory(store):
    return FamilyDirectory(store)


@pytest.fixture
def queue(store, push, directory, clock, config):
    return NotificationDispatchQueue(store, push, directory, clock, config=config)


@pytest.fixture
def engine(store, push, clock, config):
    return NotificationEngine(store, push, clock=clock, config=config)
