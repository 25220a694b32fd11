"""Shared test fixtures for board sync tests"""

import os
from typing import AsyncGenerator, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

# Set test environment before importing the app
os.environ["BOARDSYNC_DATABASE_PATH"] = ""
os.environ["BOARDSYNC_LOG_LEVEL"] = "DEBUG"

from boardsync.config import Settings
from boardsync.errors import StoreError
from boardsync.services.store import Mutation, TinyDocumentStore


# =============================================================================
# Recording Store
# =============================================================================

class RecordingStore(TinyDocumentStore):
    """In-memory store that records every write and fails on request.

    `fail_on("batch", nth=2)` makes the second batch call raise StoreError
    before anything is applied, just like a rejected commit.
    """

    def __init__(self, max_batch_writes: int = 500):
        super().__init__(None, max_batch_writes)
        self.writes: List[Tuple[str, str]] = []
        self.before_write: Optional[Callable[[str], None]] = None
        self._failures: Dict[str, int] = {}
        self._calls: Dict[str, int] = {}

    @property
    def write_count(self) -> int:
        return len(self.writes)

    @property
    def deleted(self) -> List[str]:
        return [path for op, path in self.writes if op == "delete"]

    def reset(self):
        self.writes = []
        self._calls = {}

    def fail_on(self, op: str, nth: int = 1):
        self._failures[op] = nth
        self._calls[op] = 0

    def _check(self, op: str):
        if self.before_write:
            self.before_write(op)
        self._calls[op] = self._calls.get(op, 0) + 1
        if self._failures.get(op) == self._calls[op]:
            raise StoreError(f"Injected {op} failure")

    async def create(self, collection_path: str, fields: dict, doc_id: str = None) -> str:
        self._check("create")
        doc_id = await super().create(collection_path, fields, doc_id)
        self.writes.append(("create", f"{collection_path}/{doc_id}"))
        return doc_id

    async def update(self, path: str, fields: dict) -> None:
        self._check("update")
        await super().update(path, fields)
        self.writes.append(("update", path))

    async def delete(self, path: str) -> None:
        self._check("delete")
        await super().delete(path)
        self.writes.append(("delete", path))

    async def batch(self, mutations: List[Mutation]) -> List[str]:
        if mutations:
            self._check("batch")
        ids = await super().batch(mutations)
        created = iter(ids)
        for mutation in mutations:
            if mutation.op == "create":
                self.writes.append(("create", f"{mutation.path}/{next(created)}"))
            else:
                self.writes.append((mutation.op, mutation.path))
        return ids


# =============================================================================
# Store and settings fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_path=None, max_batch_writes=500)


@pytest.fixture
def store() -> RecordingStore:
    """Fresh in-memory store per test"""
    s = RecordingStore()
    s.initialize()
    yield s
    s.close()


# =============================================================================
# Application and Client Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def app(store):
    """FastAPI application wired to the test store"""
    from boardsync.main import app as fastapi_app
    from boardsync.routes.common import get_store

    fastapi_app.dependency_overrides[get_store] = lambda: store
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_client(app) -> AsyncGenerator:
    """Create async HTTP client for testing"""
    from httpx import AsyncClient, ASGITransport

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
