# libraryms/models/transaction.py

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import DateTime, Float, ForeignKey, String, Uuid
from datetime import datetime
import uuid
from typing import Optional

from libraryms.models.enums import TransactionStatus, TransactionType, enum_type


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid, primary_key=True)
    )

    member_id: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("profiles.id"), nullable=False, index=True)
    )

    # nulled if the book is later removed from the catalogue; the title snapshot stays
    book_id: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("books.id", ondelete="SET NULL"), nullable=True, index=True)
    )
    book_title: str = Field(sa_column=Column(String, nullable=False))

    transaction_type: TransactionType = Field(
        default=TransactionType.Borrow,
        sa_column=Column(enum_type(TransactionType, "transaction_type"), nullable=False)
    )

    # cached; recomputed by the overdue sweep, see services.transaction_service
    status: TransactionStatus = Field(
        default=TransactionStatus.Active,
        sa_column=Column(enum_type(TransactionStatus, "transaction_status"), nullable=False, index=True)
    )

    transaction_date: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False)
    )
    due_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    returned_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))

    price: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))

    processed_by: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("profiles.id"), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime, nullable=False)
    )
