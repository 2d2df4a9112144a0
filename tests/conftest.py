import copy
import itertools
import os
import sys
from datetime import datetime, timezone

import pytest
from google.cloud.firestore_v1.transforms import ArrayRemove, ArrayUnion, Increment

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app import create_app  # noqa: E402
from store import SERVER_TIMESTAMP  # noqa: E402


_MISSING = object()


def _get_path(doc: dict, path: str):
    cur = doc
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


class MemoryStore:
    """In-process stand-in for DocumentStore with Firestore's write semantics."""

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = {}
        self.broken: set[str] = set()
        self._ids = itertools.count(1)

    # -- helpers -----------------------------------------------------------

    def _check(self, collection):
        if collection in self.broken:
            raise RuntimeError(f"{collection} is unavailable")

    def _resolve(self, value, current):
        if value is SERVER_TIMESTAMP:
            return datetime.now(timezone.utc)
        if isinstance(value, Increment):
            base = current if isinstance(current, (int, float)) else 0
            return base + value.value
        if isinstance(value, ArrayUnion):
            base = list(current) if isinstance(current, list) else []
            return base + [v for v in value.values if v not in base]
        if isinstance(value, ArrayRemove):
            base = list(current) if isinstance(current, list) else []
            return [v for v in base if v not in value.values]
        if isinstance(value, dict):
            return {k: self._resolve(v, _MISSING) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve(v, _MISSING) for v in value]
        return copy.deepcopy(value)

    def _set_path(self, doc: dict, path: str, value):
        parts = path.split(".")
        cur = doc
        for part in parts[:-1]:
            if not isinstance(cur.get(part), dict):
                cur[part] = {}
            cur = cur[part]
        cur[parts[-1]] = self._resolve(value, cur.get(parts[-1], _MISSING))

    def _merge(self, target: dict, data: dict):
        for k, v in data.items():
            if isinstance(v, dict) and isinstance(target.get(k), dict):
                self._merge(target[k], v)
            else:
                target[k] = self._resolve(v, target.get(k, _MISSING))

    def _out(self, doc_id: str, doc: dict) -> dict:
        data = copy.deepcopy(doc)
        data["id"] = doc_id
        return data

    # -- DocumentStore interface -------------------------------------------

    def get(self, collection, doc_id):
        doc = self.collections.get(collection, {}).get(doc_id)
        return None if doc is None else self._out(doc_id, doc)

    def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        self._check(collection)
        rows = []
        for doc_id, doc in self.collections.get(collection, {}).items():
            if all(self._matches(doc, f) for f in filters or []):
                rows.append(self._out(doc_id, doc))
        if order_by:
            rows = [r for r in rows if _get_path(r, order_by) is not _MISSING]
            rows.sort(key=lambda r: _get_path(r, order_by), reverse=descending)
        return rows[:limit] if limit else rows

    @staticmethod
    def _matches(doc, flt):
        field, op, value = flt
        actual = _get_path(doc, field)
        if actual is _MISSING:
            return False
        if op == "==":
            return actual == value
        if op == "!=":
            return actual != value
        if op == "in":
            return actual in value
        if op == "array_contains":
            return isinstance(actual, list) and value in actual
        if actual is None:
            return False
        return {
            ">=": lambda: actual >= value,
            "<=": lambda: actual <= value,
            ">": lambda: actual > value,
            "<": lambda: actual < value,
        }[op]()

    def add(self, collection, data):
        self._check(collection)
        doc_id = f"{collection}-{next(self._ids)}"
        self.collections.setdefault(collection, {})[doc_id] = self._resolve(dict(data), _MISSING)
        return doc_id

    def set(self, collection, doc_id, data, merge=False):
        self._check(collection)
        docs = self.collections.setdefault(collection, {})
        if merge and doc_id in docs:
            self._merge(docs[doc_id], data)
        else:
            docs[doc_id] = self._resolve(dict(data), _MISSING)

    def update(self, collection, doc_id, data):
        self._check(collection)
        doc = self.collections.get(collection, {}).get(doc_id)
        if doc is None:
            raise KeyError(f"{collection}/{doc_id} not found")
        for path, value in data.items():
            self._set_path(doc, path, value)

    def delete(self, collection, doc_id):
        self._check(collection)
        self.collections.get(collection, {}).pop(doc_id, None)

    def transact(self, collection, doc_id, fn):
        self._check(collection)
        updates = fn(self.get(collection, doc_id))
        if updates:
            self.update(collection, doc_id, updates)
        return updates

    def run_transaction(self, fn):
        """All-or-nothing: a failing write rolls back the writes before it."""
        snapshot = copy.deepcopy(self.collections)
        try:
            return fn(self)
        except Exception:
            self.collections = snapshot
            raise

    # -- test conveniences -------------------------------------------------

    def all(self, collection) -> list[dict]:
        return [self._out(k, v) for k, v in self.collections.get(collection, {}).items()]


class FakeTextService:
    """Replays scripted answers; an Exception in the script is raised instead."""

    def __init__(self):
        self.responses = []
        self.prompts = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def generate(self, prompt, json_output=False, temperature=None):
        self.prompts.append(prompt)
        if not self.responses:
            raise RuntimeError("text service unavailable")
        answer = self.responses.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


GOOGLE_TOKENS = {
    "google-token-ada": {"uid": "google-ada", "email": "Ada@Example.com", "name": "Ada"},
}


def stub_id_token_verifier(token):
    if token not in GOOGLE_TOKENS:
        raise ValueError("invalid id token")
    return dict(GOOGLE_TOKENS[token])


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ai():
    return FakeTextService()


@pytest.fixture
def app(store, ai):
    app = create_app(
        config={"TESTING": True, "SECRET_KEY": "test-secret"},
        store=store,
        text_service=ai,
        id_token_verifier=stub_id_token_verifier,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register a user through the API; returns (uid, headers)."""
    def _register(email="student@example.com", name="Student", password="secret123"):
        resp = client.post("/api/auth/register", json={
            "email": email, "password": password, "displayName": name,
        })
        assert resp.status_code == 201, resp.get_json()
        data = resp.get_json()["data"]
        return data["user"]["id"], {"Authorization": f"Bearer {data['token']}"}
    return _register


@pytest.fixture
def auth(register):
    return register()
