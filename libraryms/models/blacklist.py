# libraryms/models/blacklist.py

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import Boolean, DateTime, ForeignKey, Text, Uuid
from datetime import datetime
import uuid


class BlacklistEntry(SQLModel, table=True):
    __tablename__ = "member_blacklist"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid, primary_key=True)
    )

    member_id: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("profiles.id"), nullable=False, index=True)
    )

    reason: str = Field(sa_column=Column(Text, nullable=False))

    blacklisted_by: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("profiles.id"), nullable=False)
    )

    blacklisted_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False)
    )

    # entries are never deleted, only switched off
    is_active: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True, index=True)
    )
