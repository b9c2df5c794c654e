# libraryms/models/book.py

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import CheckConstraint, DateTime, Integer, String, Text, Uuid
from datetime import datetime
import uuid
from typing import Optional

from libraryms.models.enums import BookStatus, enum_type


class Book(SQLModel, table=True):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= copies",
            name="ck_books_available_copies",
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid, primary_key=True)
    )

    title: str = Field(sa_column=Column(String, nullable=False, index=True))
    author: str = Field(sa_column=Column(String, nullable=False))
    isbn: str = Field(sa_column=Column(String, nullable=False, index=True))
    category: str = Field(default="General", sa_column=Column(String, nullable=False))

    # "available" while any copy is on the shelf, "borrowed" once the last one is out
    status: BookStatus = Field(
        default=BookStatus.Available,
        sa_column=Column(enum_type(BookStatus, "book_status"), nullable=False)
    )

    copies: int = Field(default=1, sa_column=Column(Integer, nullable=False))

    # written only by the circulation service after creation
    available_copies: int = Field(default=1, sa_column=Column(Integer, nullable=False))

    location: Optional[str] = Field(default=None, sa_column=Column(String, nullable=True))
    published_year: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False)
    )
