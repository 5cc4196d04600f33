import copy
import re
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
from auth import create_access_token
from database import utcnow

_MISSING = object()


# -----------------------------
# In-memory stand-in for a motor database
# -----------------------------
def get_path(doc: Any, path: str) -> Any:
    current = doc
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit():
            idx = int(part)
            current = current[idx] if idx < len(current) else _MISSING
        else:
            return _MISSING
        if current is _MISSING:
            return _MISSING
    return current


def set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    current: Any = doc
    for part in parts[:-1]:
        current = current[int(part)] if isinstance(current, list) else current.setdefault(part, {})
    last = parts[-1]
    if isinstance(current, list):
        current[int(last)] = value
    else:
        current[last] = value


def unset_path(doc: dict, path: str) -> None:
    parts = path.split(".")
    parent = get_path(doc, ".".join(parts[:-1])) if len(parts) > 1 else doc
    if isinstance(parent, dict):
        parent.pop(parts[-1], None)


def _compare(value: Any, op: str, arg: Any) -> bool:
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$ne":
        return not _equals(value, arg)
    if op == "$in":
        return any(_equals(value, a) for a in arg)
    if op == "$nin":
        return not any(_equals(value, a) for a in arg)
    if op == "$regex":
        return False  # handled with $options below
    if value is _MISSING or value is None:
        return False
    if op == "$gte":
        return value >= arg
    if op == "$gt":
        return value > arg
    if op == "$lte":
        return value <= arg
    if op == "$lt":
        return value < arg
    raise NotImplementedError(op)


def _equals(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is _MISSING or value is None
    if value is _MISSING:
        return False
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _regex(value: Any, pattern: str, options: str) -> bool:
    flags = re.IGNORECASE if "i" in options else 0
    values = value if isinstance(value, list) else [value]
    return any(isinstance(v, str) and re.search(pattern, v, flags) for v in values)


def matches(doc: dict, query: dict) -> bool:
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
            continue
        value = get_path(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if "$regex" in cond and not _regex(value, cond["$regex"], cond.get("$options", "")):
                return False
            for op, arg in cond.items():
                if op in ("$regex", "$options"):
                    continue
                if not _compare(value, op, arg):
                    return False
        elif not _equals(value, cond):
            return False
    return True


def project(doc: dict, projection: Any) -> dict:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    if any(projection.values()):
        keep = {k for k, v in projection.items() if v} | {"_id"}
        return {k: v for k, v in doc.items() if k in keep}
    return {k: v for k, v in doc.items() if k not in projection}


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, keys, direction=None):
        if isinstance(keys, str):
            keys = [(keys, direction or 1)]
        for key, d in reversed(list(keys)):
            def sort_key(doc, key=key):
                v = get_path(doc, key)
                return (0, 0) if v is _MISSING or v is None else (1, v)
            self._docs.sort(key=sort_key, reverse=d < 0)
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _window(self) -> list[dict]:
        docs = self._docs[self._skip:]
        return docs[: self._limit] if self._limit else docs

    def __aiter__(self):
        self._iter = iter(self._window())
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration

    async def to_list(self, length=None):
        docs = self._window()
        return docs[:length] if length else docs


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.fail_inserts = False

    # sync helpers for test setup
    def add(self, **fields) -> ObjectId:
        now = utcnow()
        doc = {"_id": ObjectId(), "created_at": now, "updated_at": now, **fields}
        self.docs.append(doc)
        return doc["_id"]

    def get(self, _id: Any) -> dict:
        return next(d for d in self.docs if d["_id"] == ObjectId(str(_id)))

    # motor-like surface
    async def find_one(self, filter=None, projection=None, session=None, **kwargs):
        for d in self.docs:
            if matches(d, filter or {}):
                return project(d, projection)
        return None

    def find(self, filter=None, projection=None, session=None, **kwargs):
        return FakeCursor([project(d, projection) for d in self.docs if matches(d, filter or {})])

    async def count_documents(self, filter, session=None, **kwargs):
        return sum(1 for d in self.docs if matches(d, filter))

    async def insert_one(self, doc, session=None, **kwargs):
        if self.fail_inserts:
            raise RuntimeError(f"insert into {self.name} failed")
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    def _apply(self, doc: dict, update: dict) -> bool:
        before = copy.deepcopy(doc)
        for path, value in update.get("$set", {}).items():
            set_path(doc, path, copy.deepcopy(value))
        for path, value in update.get("$inc", {}).items():
            current = get_path(doc, path)
            set_path(doc, path, (0 if current is _MISSING else current) + value)
        for path in update.get("$unset", {}):
            unset_path(doc, path)
        return doc != before

    async def update_one(self, filter, update, session=None, **kwargs):
        for d in self.docs:
            if matches(d, filter):
                changed = self._apply(d, update)
                return SimpleNamespace(matched_count=1, modified_count=int(changed))
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_many(self, filter, update, session=None, **kwargs):
        matched = modified = 0
        for d in self.docs:
            if matches(d, filter):
                matched += 1
                modified += int(self._apply(d, update))
        return SimpleNamespace(matched_count=matched, modified_count=modified)

    async def delete_one(self, filter, session=None, **kwargs):
        for i, d in enumerate(self.docs):
            if matches(d, filter):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, filter, session=None, **kwargs):
        keep = [d for d in self.docs if not matches(d, filter)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)


class FakeDatabase:
    name = "storefront_test"

    def __init__(self):
        self._collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    async def list_collection_names(self):
        return sorted(self._collections)


# -----------------------------
# Fixtures
# -----------------------------
@pytest.fixture
def db():
    fake = FakeDatabase()
    database.use_database(fake)
    yield fake
    database.use_database(None)


@pytest.fixture
def app(db):
    from main import app
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _client_for(app, db, role: str) -> TestClient:
    user_id = db["user"].add(name=f"{role} user", email=f"{role}@example.com", role=role, password="hashed")
    return TestClient(app, cookies={"accessToken": create_access_token(str(user_id))})


@pytest.fixture
def admin_client(app, db):
    with _client_for(app, db, "admin") as c:
        yield c


@pytest.fixture
def user_client(app, db):
    with _client_for(app, db, "user") as c:
        yield c


@pytest.fixture
def guest_info():
    return {
        "name": "Amina Ben Ali",
        "email": "amina@example.com",
        "phone": "+216 20 000 000",
        "address": {"street": "12 rue de Marseille", "city": "Tunis", "postalCode": "1000", "country": "TN"},
    }
