"""Pytest fixtures for unit tests.

Every test gets its own application wired to fresh in-memory backends, so
no external service is needed.
"""

import itertools
from typing import AsyncGenerator, Callable, Dict, Generator

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from voting_api.broadcaster import ConnectionManager
from voting_api.config import Settings
from voting_api.main import create_app
from voting_api.registry import InMemoryVoterRegistry
from voting_api.store import InMemoryCandidateStore


class RecordingManager(ConnectionManager):
    """ConnectionManager that remembers every snapshot it broadcast."""

    def __init__(self):
        super().__init__()
        self.broadcasts = []

    def broadcast(self, candidates, version=None):
        candidates = list(candidates)
        self.broadcasts.append([candidate.to_dict() for candidate in candidates])
        return super().broadcast(candidates, version)


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an isolated in-memory app with session auth."""
    return Settings(
        STORAGE_BACKEND="memory",
        AUTH_MODE="session",
        SESSION_BACKEND="memory",
        RATE_LIMIT_ENABLED=False,
        SEED_CANDIDATES=0,
    )


@pytest.fixture
def candidate_store() -> InMemoryCandidateStore:
    return InMemoryCandidateStore()


@pytest.fixture
def voter_registry(candidate_store: InMemoryCandidateStore) -> InMemoryVoterRegistry:
    return InMemoryVoterRegistry(candidate_store)


@pytest.fixture
def manager() -> RecordingManager:
    return RecordingManager()


@pytest.fixture
def app(test_settings, candidate_store, voter_registry, manager) -> FastAPI:
    return create_app(
        test_settings,
        candidates=candidate_store,
        voters=voter_registry,
        manager=manager,
    )


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Synchronous client; entering it runs the app lifespan.

    Used for WebSocket tests: requests and sockets share one event loop.
    """
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client for concurrent request tests."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def cnp_factory() -> Callable[[], str]:
    """Returns a function producing distinct valid CNPs."""
    counter = itertools.count(1)

    def _next() -> str:
        return f"{1900000000000 + next(counter):013d}"

    return _next


@pytest.fixture
def register(client: TestClient) -> Callable[[str], Dict[str, str]]:
    """Returns a function that registers a voter and gives back auth headers."""
    def _register(cnp: str) -> Dict[str, str]:
        response = client.post("/api/register", json={"cnp": cnp})
        assert response.status_code == 201, response.text
        return {"X-Session-ID": response.json()["sessionId"]}

    return _register


@pytest.fixture
def auth_headers(register, cnp_factory) -> Dict[str, str]:
    """Headers of a freshly registered voter."""
    return register(cnp_factory())


@pytest.fixture
def sample_candidate() -> Dict[str, str]:
    """Valid candidate creation payload."""
    return {
        "name": "Ion Popescu",
        "party": "Independent",
        "description": "Former mayor running on a transparency platform.",
        "imageUrl": "https://randomuser.me/api/portraits/men/12.jpg"
    }
