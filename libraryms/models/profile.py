# libraryms/models/profile.py

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import Boolean, DateTime, String, Uuid
from datetime import datetime
import uuid
from typing import Optional

from libraryms.models.enums import UserRole, enum_type


class Profile(SQLModel, table=True):
    """A library account. Every member is a profile; librarians are too."""

    __tablename__ = "profiles"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid, primary_key=True)
    )

    email: str = Field(
        sa_column=Column(String, nullable=False, unique=True, index=True)
    )
    full_name: str = Field(sa_column=Column(String, nullable=False))

    # authoritative role, fixed at account creation
    role: UserRole = Field(
        sa_column=Column(enum_type(UserRole, "user_role"), nullable=False)
    )

    # members created at the desk have no password and cannot sign in
    password_hash: Optional[str] = Field(
        default=None,
        sa_column=Column(String, nullable=True)
    )

    phone: Optional[str] = Field(default=None, sa_column=Column(String, nullable=True))
    address: Optional[str] = Field(default=None, sa_column=Column(String, nullable=True))

    is_active: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True)
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False)
    )
