"""Voter registry: registration, login lookup and one-vote-per-voter.

record_vote is the only operation that touches both voters and candidates.
It either applies all three changes (flag, chosen candidate, count) or none.
"""
import logging
from dataclasses import replace
from typing import Dict, Optional

import asyncpg

from .database import Database
from .entities import Candidate, Voter, validate_cnp_format
from .errors import AlreadyVoted, Conflict, Unauthorized, ValidationError
from .store import InMemoryCandidateStore, add_vote

logger = logging.getLogger(__name__)


def _check_format(cnp: str) -> None:
    if not validate_cnp_format(cnp):
        raise ValidationError("Invalid CNP format", {"cnp": "must be exactly 13 digits"})


class VoterRegistry:
    """Interface shared by the registry backends."""

    async def register(self, cnp: str) -> Voter:
        raise NotImplementedError

    async def get_voter(self, cnp: str) -> Optional[Voter]:
        raise NotImplementedError

    async def authenticate(self, cnp: str) -> Voter:
        voter = await self.get_voter(cnp)
        if voter is None:
            raise Unauthorized("Invalid credentials")
        return voter

    async def record_vote(self, cnp: str, candidate_id: str) -> Candidate:
        """Record a vote and return the candidate with its new count.

        Raises:
            Unauthorized: the voter does not exist
            AlreadyVoted: the voter has already voted
            NotFound: the candidate does not exist
        """
        raise NotImplementedError


class InMemoryVoterRegistry(VoterRegistry):
    """Registry kept in process memory, sharing the candidate store's lock."""

    def __init__(self, candidates: InMemoryCandidateStore):
        self.candidates = candidates
        self._voters: Dict[str, Voter] = {}

    async def register(self, cnp: str) -> Voter:
        _check_format(cnp)
        async with self.candidates.lock:
            if cnp in self._voters:
                raise Conflict("User already exists")
            voter = Voter(cnp=cnp)
            self._voters[cnp] = voter
        logger.info(f"Voter registered: {cnp[:3]}**********")
        return replace(voter)

    async def get_voter(self, cnp: str) -> Optional[Voter]:
        voter = self._voters.get(cnp)
        return replace(voter) if voter else None

    async def record_vote(self, cnp: str, candidate_id: str) -> Candidate:
        async with self.candidates.lock:
            voter = self._voters.get(cnp)
            if voter is None:
                raise Unauthorized("Unknown voter")
            if voter.has_voted:
                raise AlreadyVoted("User has already voted")

            # Raises NotFound before the voter is touched
            candidate = self.candidates.increment_votes_locked(candidate_id)
            voter.has_voted = True
            voter.voted_candidate_id = candidate_id
            return candidate


class PostgresVoterRegistry(VoterRegistry):
    """Registry backed by the `voters` table."""

    def __init__(self, database: Database):
        self.database = database

    async def register(self, cnp: str) -> Voter:
        _check_format(cnp)
        try:
            async with self.database.pool.acquire() as conn:
                await conn.execute("INSERT INTO voters (cnp) VALUES ($1)", cnp)
        except asyncpg.UniqueViolationError:
            raise Conflict("User already exists")
        logger.info(f"Voter registered: {cnp[:3]}**********")
        return Voter(cnp=cnp)

    async def get_voter(self, cnp: str) -> Optional[Voter]:
        async with self.database.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT cnp, has_voted, voted_candidate_id FROM voters WHERE cnp = $1",
                cnp
            )
        if row is None:
            return None
        return Voter(
            cnp=row["cnp"],
            has_voted=row["has_voted"],
            voted_candidate_id=row["voted_candidate_id"]
        )

    async def record_vote(self, cnp: str, candidate_id: str) -> Candidate:
        async with self.database.pool.acquire() as conn:
            async with conn.transaction():
                # Row lock serializes concurrent votes by the same voter
                row = await conn.fetchrow(
                    "SELECT has_voted FROM voters WHERE cnp = $1 FOR UPDATE",
                    cnp
                )
                if row is None:
                    raise Unauthorized("Unknown voter")
                if row["has_voted"]:
                    raise AlreadyVoted("User has already voted")

                candidate = await add_vote(conn, candidate_id)

                await conn.execute(
                    """
                        UPDATE voters
                        SET has_voted = TRUE, voted_candidate_id = $2
                        WHERE cnp = $1
                    """,
                    cnp, candidate_id
                )
                return candidate
