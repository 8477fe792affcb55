from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

import pytest

from Lexicarium.errors import StoreUnavailable
from Lexicarium.store import OWNER_FILTER, StoredDocument, get_path, owner_of


class MemoryStore:
    """Dict-backed DocumentStore with no event-loop affinity."""

    def __init__(self) -> None:
        self.docs: dict[tuple[str, str], dict[str, Any]] = {}
        self.puts: list[tuple[str, str]] = []

    def _doc(self, collection: str, doc_id: str, body: dict[str, Any]) -> StoredDocument:
        return StoredDocument(collection, doc_id, owner_of(body), copy.deepcopy(body))

    async def exists(self, collection: str, doc_id: str) -> StoredDocument | None:
        body = self.docs.get((collection, doc_id))
        return None if body is None else self._doc(collection, doc_id, body)

    async def query(self, collection: str, filter: Mapping[str, Any]) -> list[StoredDocument]:
        conditions = dict(filter)
        owner = conditions.pop(OWNER_FILTER, None)
        out = []
        for (coll, doc_id), body in sorted(self.docs.items()):
            if coll != collection:
                continue
            if owner is not None and owner_of(body) != owner:
                continue
            if all(get_path(body, p) == v for p, v in conditions.items()):
                out.append(self._doc(coll, doc_id, body))
        return out

    async def put(self, collection: str, doc_id: str, record: Mapping[str, Any]) -> None:
        self.puts.append((collection, doc_id))
        self.docs[(collection, doc_id)] = copy.deepcopy(dict(record))


class FlakyStore:
    """Wraps a store and fails chosen operations with StoreUnavailable."""

    def __init__(self, inner, *, fail_query: bool = False, fail_put_ids: tuple[str, ...] = ()):
        self.inner = inner
        self.fail_query = fail_query
        self.fail_put_ids = set(fail_put_ids)

    async def exists(self, collection, doc_id):
        return await self.inner.exists(collection, doc_id)

    async def query(self, collection, filter):
        if self.fail_query:
            raise StoreUnavailable("query refused")
        return await self.inner.query(collection, filter)

    async def put(self, collection, doc_id, record):
        if doc_id in self.fail_put_ids:
            raise StoreUnavailable(f"put {doc_id} refused")
        await self.inner.put(collection, doc_id, record)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def flaky_store():
    return FlakyStore


def word(doc_id: str | None, english: str, owner: str | None = None, **extra: Any) -> dict:
    rec: dict[str, Any] = {"english": english, "translation": f"it-{english}", **extra}
    if doc_id is not None:
        rec["id"] = doc_id
    if owner is not None:
        rec["userId"] = owner
        rec["firestoreMetadata"] = {"userId": owner, "deleted": False}
    return rec


def session(doc_id: str, owner: str | None = None, **extra: Any) -> dict:
    rec: dict[str, Any] = {"id": doc_id, "sessionId": doc_id, "score": 80, **extra}
    if owner is not None:
        rec["userId"] = owner
    return rec


@pytest.fixture
def make_word():
    return word


@pytest.fixture
def make_session():
    return session
