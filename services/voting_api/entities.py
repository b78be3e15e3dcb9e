"""
Domain records shared by the stores, the API and the real-time channel.

This module contains:
- Candidate: a candidate record with its running vote count
- Voter: a registered voter and the vote they cast
- Identifier validation and snapshot message helpers
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Iterable, List


CNP_PATTERN = re.compile(r"[0-9]{13}")

# Fields a candidate update may change; id and vote count are never editable.
EDITABLE_FIELDS = ("name", "party", "description", "image_url")

SNAPSHOT_MESSAGE_TYPE = "candidates"


@dataclass
class Candidate:
    """
    A candidate on the ballot.

    Attributes:
        id: Opaque unique identifier (UUID4 string)
        name: Display name
        party: Party or affiliation label
        description: Free-text description
        image_url: Portrait URL
        vote_count: Number of votes received, never negative
    """
    id: str
    name: str
    party: str
    description: str
    image_url: str
    vote_count: int = 0

    @classmethod
    def new(cls, name: str, party: str, description: str, image_url: str) -> 'Candidate':
        """Create a candidate with a fresh id and zero votes."""
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            party=party,
            description=description,
            image_url=image_url,
            vote_count=0
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase JSON shape used on the wire."""
        return {
            "id": self.id,
            "name": self.name,
            "party": self.party,
            "description": self.description,
            "imageUrl": self.image_url,
            "voteCount": self.vote_count,
        }


@dataclass
class Voter:
    """
    A registered voter.

    Once has_voted is True it never reverts, and voted_candidate_id is fixed.
    """
    cnp: str
    has_voted: bool = False
    voted_candidate_id: Optional[str] = None


@dataclass
class Snapshot:
    """Full candidate list pushed to real-time clients."""
    data: List[Dict[str, Any]] = field(default_factory=list)
    type: str = SNAPSHOT_MESSAGE_TYPE

    @classmethod
    def of(cls, candidates: Iterable[Candidate]) -> 'Snapshot':
        return cls(data=[candidate.to_dict() for candidate in candidates])

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data}


def validate_cnp_format(cnp: str) -> bool:
    """
    Validate a national identifier (CNP).

    Args:
        cnp: Identifier to validate

    Returns:
        bool: True if it is exactly 13 ASCII digits
    """
    return isinstance(cnp, str) and CNP_PATTERN.fullmatch(cnp) is not None


def filter_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only editable, non-null candidate fields."""
    return {
        key: value for key, value in changes.items()
        if key in EDITABLE_FIELDS and value is not None
    }
