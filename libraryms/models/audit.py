#libraryms/models/audit.py

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON
from typing import Optional, Dict, Any
from uuid import UUID, uuid4
from datetime import datetime

class ActivityLog(SQLModel, table=True):
    __tablename__ = "activity_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    actor_id: Optional[UUID] = Field(default=None, foreign_key="profiles.id")
    actor_role: Optional[str] = None

    # Snapshot, survives member renames
    actor_name: Optional[str] = None

    # e.g. "BOOK_BORROWED", "BOOK_RETURNED", "MEMBER_BLACKLISTED"
    action: str = Field(index=True)
    subject: Optional[str] = None

    # Stores {"book_id": "...", "member_id": "..."}
    details: Dict[str, Any] = Field(default={}, sa_column=Column(JSON))

    # naive UTC, like every other timestamp column
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False, index=True)
    )


class RevokedToken(SQLModel, table=True):
    __tablename__ = "revoked_tokens"

    jti: str = Field(primary_key=True)
    profile_id: Optional[UUID] = Field(default=None, foreign_key="profiles.id")
    revoked_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False)
    )
    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
