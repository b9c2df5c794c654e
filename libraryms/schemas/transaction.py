from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from libraryms.models.enums import TransactionStatus, TransactionType


class BorrowRequest(BaseModel):
    member_id: UUID
    book_id: UUID
    due_date: Optional[datetime] = None   # defaults to DEFAULT_LOAN_DAYS from now
    price: Optional[float] = Field(default=None, ge=0)


class TransactionRead(BaseModel):
    id: UUID
    member_id: UUID
    member_name: Optional[str] = None
    book_id: Optional[UUID] = None
    book_title: str
    transaction_type: TransactionType
    status: TransactionStatus
    transaction_date: datetime
    due_date: Optional[datetime] = None
    returned_date: Optional[datetime] = None
    price: Optional[float] = None

    class Config:
        from_attributes = True


class OverdueSweepResult(BaseModel):
    transitioned: int
    ran_at: datetime
