"""
Real-time voting API.

This package contains:
- Candidate store and voter registry (in-memory and PostgreSQL backends)
- Session and token authentication
- WebSocket fan-out of candidate snapshots
- The FastAPI application (voting_api.main)
"""

from .entities import (
    Candidate,
    Voter,
    Snapshot,
    validate_cnp_format,
)
from .errors import (
    VotingError,
    ValidationError,
    Unauthorized,
    NotFound,
    Conflict,
    AlreadyVoted,
    InternalError,
)
from .store import CandidateStore, InMemoryCandidateStore, PostgresCandidateStore
from .registry import VoterRegistry, InMemoryVoterRegistry, PostgresVoterRegistry
from .broadcaster import ConnectionManager

__all__ = [
    'Candidate',
    'Voter',
    'Snapshot',
    'validate_cnp_format',
    'VotingError',
    'ValidationError',
    'Unauthorized',
    'NotFound',
    'Conflict',
    'AlreadyVoted',
    'InternalError',
    'CandidateStore',
    'InMemoryCandidateStore',
    'PostgresCandidateStore',
    'VoterRegistry',
    'InMemoryVoterRegistry',
    'PostgresVoterRegistry',
    'ConnectionManager',
]

__version__ = '1.0.0'
