"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, validator


class CandidateCreate(BaseModel):
    """Candidate creation request model."""

    name: str = Field(..., min_length=1, description="Display name")
    party: str = Field(..., min_length=1, description="Party or affiliation")
    description: str = Field(..., description="Free-text description")
    image_url: str = Field(..., alias="imageUrl", min_length=1, description="Portrait URL")

    @validator("name", "party")
    def validate_not_blank(cls, v):
        """Reject whitespace-only labels."""
        if not v.strip():
            raise ValueError("Field cannot be blank")
        return v.strip()

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "name": "Ion Popescu",
                "party": "Independent",
                "description": "Former mayor running on a transparency platform.",
                "imageUrl": "https://randomuser.me/api/portraits/men/12.jpg"
            }
        }


class CandidateUpdate(BaseModel):
    """Candidate update request model. Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1)
    party: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl", min_length=1)

    @validator("name", "party", "description", "image_url")
    def validate_not_null(cls, v):
        """Fields may be omitted but not sent as null."""
        if v is None:
            raise ValueError("Field cannot be null")
        return v

    @validator("name", "party")
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Field cannot be blank")
        return v.strip()

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"party": "PNL"}
        }


class CandidateResponse(BaseModel):
    """Candidate record as returned by the API and pushed over WebSocket."""

    id: str
    name: str
    party: str
    description: str
    image_url: str = Field(..., alias="imageUrl")
    vote_count: int = Field(..., alias="voteCount", ge=0)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "id": "6f1f8c1e-0d3b-4c55-9d6a-3a3f2b7a9e10",
                "name": "Ion Popescu",
                "party": "Independent",
                "description": "Former mayor running on a transparency platform.",
                "imageUrl": "https://randomuser.me/api/portraits/men/12.jpg",
                "voteCount": 0
            }
        }


class VoterCredentials(BaseModel):
    """Register/login request model."""

    cnp: str = Field(..., description="National identifier (13 digits)")

    class Config:
        json_schema_extra = {
            "example": {"cnp": "1234567890123"}
        }


class AuthResponse(BaseModel):
    """Register/login response model."""

    message: str
    session_id: str = Field(..., alias="sessionId", description="Credential for X-Session-ID or Bearer")
    token_type: Literal["session", "bearer"] = Field(..., alias="tokenType")
    has_voted: bool = Field(default=False, alias="hasVoted")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "message": "Login successful",
                "sessionId": "0d9c3c7e5f3b4a1c8e2f6a7b9c0d1e2f",
                "tokenType": "session",
                "hasVoted": False
            }
        }


class SessionStatus(BaseModel):
    """Session check response model."""

    is_authenticated: bool = Field(..., alias="isAuthenticated")
    has_voted: Optional[bool] = Field(default=None, alias="hasVoted")

    class Config:
        populate_by_name = True


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "services": {
                    "storage": "connected",
                    "sessions": "connected"
                },
                "timestamp": "2024-01-15T10:30:00"
            }
        }


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "AlreadyVoted",
                "message": "User has already voted",
                "details": {}
            }
        }
