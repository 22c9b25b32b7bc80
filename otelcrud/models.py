"""
Request and entity models for the users resource.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PositiveInt


class User(BaseModel):
    """A stored user.

    Attributes:
        id: Unique identity, immutable after creation
        name: Display name
        email: Email address (unique)
        age: Age in years
        created_at: UTC creation timestamp, server-assigned
        updated_at: UTC modification timestamp, server-assigned
    """

    id: str
    name: str
    email: str
    age: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible representation."""
        return self.model_dump(mode="json")


class UserCreate(BaseModel):
    """Request body for POST /users/."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    # Must stay addressable as a single /users/{id} path segment
    id: str = Field(..., min_length=1, max_length=50, pattern=r"^[^/]+$", examples=["johndoe"])
    name: str = Field(..., min_length=1, max_length=100, examples=["John Doe"])
    email: EmailStr = Field(..., examples=["john.doe@example.com"])
    age: PositiveInt = Field(..., examples=[30])


class UserUpdate(BaseModel):
    """Request body for PUT /users/{id}.

    The payload does not carry an identity. An ``id`` is only tolerated when
    it equals the identity in the path; the handler rejects any other value.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100, examples=["John Doe Updated"])
    email: EmailStr = Field(..., examples=["john.doe.updated@example.com"])
    age: PositiveInt = Field(..., examples=[31])
