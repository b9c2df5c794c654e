from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from libraryms.models.enums import BookStatus


# ============================================================
# CREATE (available_copies always starts at copies)
# ============================================================
class BookCreate(BaseModel):
    title: str
    author: str
    isbn: str
    category: str = "General"
    copies: int = Field(default=1, ge=1)
    location: Optional[str] = None
    published_year: Optional[int] = None
    description: Optional[str] = None
    status: BookStatus = BookStatus.Available


# ============================================================
# UPDATE (available_copies is owned by circulation)
# ============================================================
class BookUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    copies: Optional[int] = Field(default=None, ge=1)
    location: Optional[str] = None
    published_year: Optional[int] = None
    description: Optional[str] = None
    status: Optional[BookStatus] = None


class BookRead(BaseModel):
    id: UUID
    title: str
    author: str
    isbn: str
    category: str
    status: BookStatus
    copies: int
    available_copies: int
    location: Optional[str] = None
    published_year: Optional[int] = None
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
