"""Candidate storage backends.

Two interchangeable stores are provided:
- InMemoryCandidateStore: process-local, guarded by an asyncio.Lock
- PostgresCandidateStore: the `candidates` table via asyncpg
"""
import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List

from .database import Database
from .entities import Candidate, filter_changes
from .errors import NotFound

logger = logging.getLogger(__name__)


class CandidateStore:
    """Interface shared by the candidate backends."""

    async def list_candidates(self) -> List[Candidate]:
        raise NotImplementedError

    async def get_candidate(self, candidate_id: str) -> Candidate:
        raise NotImplementedError

    async def create_candidate(self, name: str, party: str, description: str,
                               image_url: str) -> Candidate:
        raise NotImplementedError

    async def update_candidate(self, candidate_id: str, changes: Dict[str, Any]) -> Candidate:
        raise NotImplementedError

    async def delete_candidate(self, candidate_id: str) -> None:
        raise NotImplementedError

    async def increment_votes(self, candidate_id: str) -> Candidate:
        raise NotImplementedError

    async def check_health(self) -> bool:
        return True


class InMemoryCandidateStore(CandidateStore):
    """Candidate store kept in process memory.

    Dicts preserve insertion order, which is the listing order. The lock is
    shared with InMemoryVoterRegistry so a vote is applied as one step.
    """

    def __init__(self):
        self._candidates: Dict[str, Candidate] = {}
        self.lock = asyncio.Lock()

    def _require(self, candidate_id: str) -> Candidate:
        candidate = self._candidates.get(candidate_id)
        if candidate is None:
            raise NotFound("Candidate not found", {"candidate_id": candidate_id})
        return candidate

    async def list_candidates(self) -> List[Candidate]:
        # Copies, so callers never hold references into the store
        return [replace(c) for c in self._candidates.values()]

    async def get_candidate(self, candidate_id: str) -> Candidate:
        return replace(self._require(candidate_id))

    async def create_candidate(self, name: str, party: str, description: str,
                               image_url: str) -> Candidate:
        candidate = Candidate.new(name, party, description, image_url)
        async with self.lock:
            self._candidates[candidate.id] = candidate
        logger.debug(f"Candidate created: id={candidate.id}")
        return replace(candidate)

    async def update_candidate(self, candidate_id: str, changes: Dict[str, Any]) -> Candidate:
        async with self.lock:
            candidate = self._require(candidate_id)
            for key, value in filter_changes(changes).items():
                setattr(candidate, key, value)
            return replace(candidate)

    async def delete_candidate(self, candidate_id: str) -> None:
        async with self.lock:
            self._require(candidate_id)
            del self._candidates[candidate_id]
        logger.debug(f"Candidate deleted: id={candidate_id}")

    async def increment_votes(self, candidate_id: str) -> Candidate:
        async with self.lock:
            return self.increment_votes_locked(candidate_id)

    def increment_votes_locked(self, candidate_id: str) -> Candidate:
        """Increment a vote count. The caller must hold self.lock."""
        candidate = self._require(candidate_id)
        candidate.vote_count += 1
        return replace(candidate)


CANDIDATE_COLUMNS = "id, name, party, description, image_url, vote_count"


def _row_to_candidate(row) -> Candidate:
    return Candidate(
        id=row["id"],
        name=row["name"],
        party=row["party"],
        description=row["description"],
        image_url=row["image_url"],
        vote_count=row["vote_count"]
    )


class PostgresCandidateStore(CandidateStore):
    """Candidate store backed by the `candidates` table."""

    def __init__(self, database: Database):
        self.database = database

    async def list_candidates(self) -> List[Candidate]:
        try:
            async with self.database.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT {CANDIDATE_COLUMNS} FROM candidates ORDER BY seq"
                )
                return [_row_to_candidate(row) for row in rows]
        except Exception as e:
            logger.error(f"Error listing candidates: {e}")
            raise

    async def get_candidate(self, candidate_id: str) -> Candidate:
        async with self.database.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {CANDIDATE_COLUMNS} FROM candidates WHERE id = $1",
                candidate_id
            )
        if row is None:
            raise NotFound("Candidate not found", {"candidate_id": candidate_id})
        return _row_to_candidate(row)

    async def create_candidate(self, name: str, party: str, description: str,
                               image_url: str) -> Candidate:
        candidate = Candidate.new(name, party, description, image_url)
        async with self.database.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                    INSERT INTO candidates (id, name, party, description, image_url, vote_count)
                    VALUES ($1, $2, $3, $4, $5, 0)
                    RETURNING {CANDIDATE_COLUMNS}
                """,
                candidate.id, candidate.name, candidate.party,
                candidate.description, candidate.image_url
            )
        return _row_to_candidate(row)

    async def update_candidate(self, candidate_id: str, changes: Dict[str, Any]) -> Candidate:
        changes = filter_changes(changes)
        if not changes:
            return await self.get_candidate(candidate_id)

        # Column names come from EDITABLE_FIELDS only
        assignments = ", ".join(
            f"{column} = ${index}" for index, column in enumerate(changes, start=2)
        )
        async with self.database.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE candidates SET {assignments} WHERE id = $1 RETURNING {CANDIDATE_COLUMNS}",
                candidate_id, *changes.values()
            )
        if row is None:
            raise NotFound("Candidate not found", {"candidate_id": candidate_id})
        return _row_to_candidate(row)

    async def delete_candidate(self, candidate_id: str) -> None:
        async with self.database.pool.acquire() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM candidates WHERE id = $1 RETURNING id",
                candidate_id
            )
        if deleted is None:
            raise NotFound("Candidate not found", {"candidate_id": candidate_id})

    async def increment_votes(self, candidate_id: str) -> Candidate:
        async with self.database.pool.acquire() as conn:
            return await add_vote(conn, candidate_id)

    async def check_health(self) -> bool:
        return await self.database.check_health()


async def add_vote(conn, candidate_id: str) -> Candidate:
    """Atomically add one vote on an open connection (or transaction)."""
    row = await conn.fetchrow(
        f"""
            UPDATE candidates
            SET vote_count = vote_count + 1
            WHERE id = $1
            RETURNING {CANDIDATE_COLUMNS}
        """,
        candidate_id
    )
    if row is None:
        raise NotFound("Candidate not found", {"candidate_id": candidate_id})
    return _row_to_candidate(row)
