"""Integration tests for API endpoints.

Tests authentication, candidate CRUD, health checks, error mapping and
concurrent request handling against the running stack.

Requires: docker-compose stack running
"""

import asyncio
import time

import httpx
import pytest


@pytest.mark.docker
@pytest.mark.asyncio
class TestAuthEndpoints:
    """Tests for register/login/logout/check-session."""

    async def test_register_and_login(
        self,
        api_client: httpx.AsyncClient,
        clear_databases
    ):
        """Register returns 201 and a credential; login opens another one."""
        response = await api_client.post("/api/register", json={"cnp": "1234567890123"})

        assert response.status_code == 201
        data = response.json()
        assert data["sessionId"]
        assert data["hasVoted"] is False

        response = await api_client.post("/api/login", json={"cnp": "1234567890123"})
        assert response.status_code == 200
        assert response.json()["message"] == "Login successful"

    async def test_register_duplicate(
        self,
        api_client: httpx.AsyncClient,
        clear_databases
    ):
        await api_client.post("/api/register", json={"cnp": "1234567890123"})
        response = await api_client.post("/api/register", json={"cnp": "1234567890123"})

        assert response.status_code == 409
        assert response.json()["error"] == "Conflict"

    async def test_register_invalid_cnp(
        self,
        api_client: httpx.AsyncClient,
        postgres_client,
        clear_databases
    ):
        """Invalid identifiers are rejected and nothing is stored."""
        response = await api_client.post("/api/register", json={"cnp": "12345"})

        assert response.status_code == 400
        postgres_client.execute("SELECT COUNT(*) FROM voters")
        assert postgres_client.fetchone()[0] == 0

    async def test_login_unknown_voter(
        self,
        api_client: httpx.AsyncClient,
        clear_databases
    ):
        response = await api_client.post("/api/login", json={"cnp": "9999999999999"})
        assert response.status_code == 401

    async def test_session_stored_in_redis(
        self,
        api_client: httpx.AsyncClient,
        redis_client,
        clear_databases
    ):
        """Session mode keeps the session server-side with an expiry."""
        response = await api_client.post("/api/register", json={"cnp": "1234567890123"})
        data = response.json()
        if data["tokenType"] != "session":
            pytest.skip("Stack runs in token mode")

        key = f"session:{data['sessionId']}"
        assert redis_client.get(key) == "1234567890123"
        assert redis_client.ttl(key) > 0

    async def test_logout_invalidates_credential(
        self,
        api_client: httpx.AsyncClient,
        register_voter,
        clear_databases
    ):
        headers = await register_voter("1234567890123")

        response = await api_client.post("/api/logout", headers=headers)
        assert response.status_code == 200

        status = await api_client.get("/api/check-session", headers=headers)
        assert status.json() == {"isAuthenticated": False}

        response = await api_client.get("/api/candidates", headers=headers)
        assert response.status_code == 401


@pytest.mark.docker
@pytest.mark.asyncio
class TestCandidateEndpoints:
    """Tests for /api/candidates."""

    async def test_requires_credential(
        self,
        api_client: httpx.AsyncClient
    ):
        response = await api_client.get("/api/candidates")

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    async def test_crud_roundtrip(
        self,
        api_client: httpx.AsyncClient,
        register_voter,
        create_candidate,
        postgres_client,
        clear_databases
    ):
        """Create, update, list and delete a candidate, checking the table."""
        headers = await register_voter("1234567890123")
        created = await create_candidate(headers)
        assert created["voteCount"] == 0

        response = await api_client.put(
            f"/api/candidates/{created['id']}",
            json={"party": "PNL"},
            headers=headers
        )
        assert response.status_code == 200
        assert response.json()["party"] == "PNL"

        postgres_client.execute("SELECT party, vote_count FROM candidates WHERE id = %s", (created["id"],))
        assert postgres_client.fetchone() == ("PNL", 0)

        listed = await api_client.get("/api/candidates", headers=headers)
        assert [c["id"] for c in listed.json()] == [created["id"]]

        response = await api_client.delete(f"/api/candidates/{created['id']}", headers=headers)
        assert response.status_code == 204

        postgres_client.execute("SELECT COUNT(*) FROM candidates")
        assert postgres_client.fetchone()[0] == 0

    async def test_list_preserves_creation_order(
        self,
        api_client: httpx.AsyncClient,
        register_voter,
        create_candidate,
        clear_databases
    ):
        headers = await register_voter("1234567890123")
        names = ["Ana", "Bogdan", "Carmen", "Dan"]
        for name in names:
            await create_candidate(headers, name=name)

        listed = await api_client.get("/api/candidates", headers=headers)
        assert [c["name"] for c in listed.json()] == names

    async def test_missing_candidate(
        self,
        api_client: httpx.AsyncClient,
        register_voter,
        clear_databases
    ):
        headers = await register_voter("1234567890123")

        response = await api_client.put("/api/candidates/missing", json={"name": "X"}, headers=headers)
        assert response.status_code == 404

        response = await api_client.delete("/api/candidates/missing", headers=headers)
        assert response.status_code == 404

    async def test_generate(
        self,
        api_client: httpx.AsyncClient,
        register_voter,
        clear_databases
    ):
        headers = await register_voter("1234567890123")

        response = await api_client.post("/api/candidates/generate", headers=headers)

        assert response.status_code == 201
        assert response.json()["imageUrl"].startswith("https://randomuser.me/api/portraits/")

    async def test_invalid_payload(
        self,
        api_client: httpx.AsyncClient,
        register_voter,
        clear_databases
    ):
        headers = await register_voter("1234567890123")

        response = await api_client.post("/api/candidates", json={"name": "Only a name"}, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"


@pytest.mark.docker
@pytest.mark.asyncio
class TestHealthEndpoint:
    """Tests for GET /api/health endpoint."""

    async def test_health_check_response_format(
        self,
        api_client: httpx.AsyncClient
    ):
        response = await api_client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"]["storage"] == "connected"
        assert data["services"]["sessions"] == "connected"

    async def test_health_check_performance(
        self,
        api_client: httpx.AsyncClient
    ):
        """Test health check responds quickly (< 1 second)."""
        start_time = time.time()
        response = await api_client.get("/api/health")
        duration = time.time() - start_time

        assert response.status_code == 200
        assert duration < 1.0, f"Health check took {duration}s, expected < 1s"

    async def test_metrics_exposed(
        self,
        api_client: httpx.AsyncClient
    ):
        response = await api_client.get("/metrics")

        assert response.status_code == 200
        assert "votes_cast_total" in response.text


@pytest.mark.docker
@pytest.mark.asyncio
@pytest.mark.slow
class TestConcurrentRequests:
    """Tests for handling concurrent API requests."""

    async def test_concurrent_registrations_same_cnp(
        self,
        api_client: httpx.AsyncClient,
        postgres_client,
        clear_databases
    ):
        """Exactly one of many simultaneous registrations succeeds."""
        tasks = [api_client.post("/api/register", json={"cnp": "1234567890123"}) for _ in range(20)]
        responses = await asyncio.gather(*tasks)

        codes = [r.status_code for r in responses]
        assert codes.count(201) == 1
        assert codes.count(409) == 19

        postgres_client.execute("SELECT COUNT(*) FROM voters")
        assert postgres_client.fetchone()[0] == 1

    async def test_concurrent_candidate_creation(
        self,
        api_client: httpx.AsyncClient,
        register_voter,
        create_candidate,
        clear_databases
    ):
        headers = await register_voter("1234567890123")

        created = await asyncio.gather(*[
            create_candidate(headers, name=f"Candidate {i}") for i in range(25)
        ])

        assert len({c["id"] for c in created}) == 25
        listed = await api_client.get("/api/candidates", headers=headers)
        assert len(listed.json()) == 25
