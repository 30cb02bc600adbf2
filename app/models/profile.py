"""User profile SQLModel definitions.

One row per signed-in user, keyed by the auth provider's user id.
"""
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from app.models.message import utc_now


class UserProfile(SQLModel, table=True):
    """Profile row created the first time a user signs in."""
    __tablename__ = "profiles"

    id: str = Field(primary_key=True, max_length=64)
    email: str = Field(max_length=320)
    created_at: datetime = Field(default_factory=utc_now, nullable=False, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False, sa_type=DateTime)


class UserProfileRead(SQLModel):
    id: str
    email: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: UserProfile) -> "UserProfileRead":
        return cls(id=row.id, email=row.email, created_at=row.created_at, updated_at=row.updated_at)
