"""Pytest fixtures for integration tests.

This module provides shared fixtures for integration testing the voting API
against the docker-compose stack (API, PostgreSQL, Redis). Fixtures handle
setup/teardown of the stack, database connections and test data management.
"""

import itertools
import os
import subprocess
import time
from typing import AsyncGenerator, Awaitable, Callable, Dict, Generator

import httpx
import psycopg2
import pytest
import redis
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT


@pytest.fixture(scope="session")
def base_url() -> str:
    """Base URL for the voting API."""
    return os.getenv("API_BASE_URL", "http://localhost:3001")


@pytest.fixture(scope="session")
def ws_url(base_url: str) -> str:
    """WebSocket URL for the real-time channel."""
    return base_url.replace("http://", "ws://").replace("https://", "wss://") + "/ws"


@pytest.fixture(scope="session")
def docker_compose(base_url: str):
    """Start docker-compose stack for testing, tear down after tests complete.

    Only used when INTEGRATION_START_STACK=1; otherwise the stack is expected
    to be running already.
    """
    if os.getenv("INTEGRATION_START_STACK") != "1":
        yield
        return

    compose_file = os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
        "docker-compose.yml"
    )
    if not os.path.exists(compose_file):
        pytest.skip(f"docker-compose.yml not found at {compose_file}")

    print("\n🚀 Starting docker-compose stack...")
    subprocess.run(
        ["docker-compose", "-f", compose_file, "up", "-d", "--build"],
        check=True,
        capture_output=True
    )

    print("⏳ Waiting for services to be healthy...")
    max_attempts = 30
    for i in range(max_attempts):
        try:
            response = httpx.get(f"{base_url}/api/health", timeout=2.0)
            if response.status_code == 200:
                print(f"✅ Services ready after {i+1} attempts")
                break
        except (httpx.ConnectError, httpx.ReadTimeout):
            pass
        if i == max_attempts - 1:
            pytest.fail("Services did not become healthy in time")
        time.sleep(2)

    yield

    print("\n🛑 Stopping docker-compose stack...")
    subprocess.run(
        ["docker-compose", "-f", compose_file, "down", "-v"],
        check=False,
        capture_output=True
    )


@pytest.fixture(scope="session")
def api_available(docker_compose, base_url: str) -> None:
    """Skip the integration suite when the API is not reachable."""
    try:
        httpx.get(f"{base_url}/api/health", timeout=2.0)
    except httpx.HTTPError:
        pytest.skip(f"Voting API not reachable at {base_url}")


@pytest.fixture
async def api_client(api_available, base_url: str) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for making API requests.

    Returns an async httpx client configured for the voting API.
    """
    async with httpx.AsyncClient(base_url=base_url, timeout=10.0) as client:
        yield client


@pytest.fixture(scope="session")
def redis_client() -> Generator[redis.Redis, None, None]:
    """Redis client for direct session store operations."""
    client = redis.Redis(
        host=os.getenv("REDIS_HOST", "localhost"),
        port=int(os.getenv("REDIS_PORT", "6379")),
        db=int(os.getenv("REDIS_DB", "0")),
        decode_responses=True
    )

    try:
        client.ping()
    except redis.ConnectionError:
        pytest.skip("Redis not available")

    yield client

    client.close()


@pytest.fixture(scope="session")
def postgres_connection():
    """PostgreSQL connection for direct database operations.

    Yields a psycopg2 connection for test assertions and setup.
    """
    try:
        conn = psycopg2.connect(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=int(os.getenv("POSTGRES_PORT", "5432")),
            dbname=os.getenv("POSTGRES_DB", "voting_db"),
            user=os.getenv("POSTGRES_USER", "voting_user"),
            password=os.getenv("POSTGRES_PASSWORD", "voting_pass")
        )
    except psycopg2.OperationalError:
        pytest.skip("PostgreSQL not available")
    conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)

    yield conn

    conn.close()


@pytest.fixture
def postgres_client(postgres_connection):
    """PostgreSQL cursor for executing queries.

    Yields a cursor from the session-scoped connection.
    """
    cursor = postgres_connection.cursor()
    yield cursor
    cursor.close()


@pytest.fixture
def clear_databases(redis_client: redis.Redis, postgres_client):
    """Clear all test data from Redis and PostgreSQL.

    Run before each test to ensure clean state.
    """
    sessions = redis_client.keys("session:*")
    if sessions:
        redis_client.delete(*sessions)

    postgres_client.execute("TRUNCATE TABLE voters, candidates")

    yield


@pytest.fixture
def cnp_factory() -> Callable[[], str]:
    """Returns a function producing distinct valid CNPs."""
    counter = itertools.count(1)

    def _next() -> str:
        return f"{5000000000000 + next(counter):013d}"

    return _next


@pytest.fixture
def sample_candidate() -> Dict[str, str]:
    """Valid candidate creation payload."""
    return {
        "name": "Elena Ionescu",
        "party": "Green Party",
        "description": "Runs on public transport and clean air.",
        "imageUrl": "https://randomuser.me/api/portraits/women/21.jpg"
    }


@pytest.fixture
def register_voter(api_client: httpx.AsyncClient) -> Callable[[str], Awaitable[Dict[str, str]]]:
    """Returns a coroutine function that registers a voter and gives back auth headers."""
    async def _register(cnp: str) -> Dict[str, str]:
        response = await api_client.post("/api/register", json={"cnp": cnp})
        assert response.status_code == 201, response.text
        data = response.json()
        if data["tokenType"] == "bearer":
            return {"Authorization": f"Bearer {data['sessionId']}"}
        return {"X-Session-ID": data["sessionId"]}

    return _register


@pytest.fixture
def create_candidate(api_client: httpx.AsyncClient, sample_candidate: Dict[str, str]):
    """Returns a coroutine function that creates a candidate and returns it."""
    async def _create(headers: Dict[str, str], **overrides) -> Dict:
        response = await api_client.post(
            "/api/candidates",
            json={**sample_candidate, **overrides},
            headers=headers
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create
