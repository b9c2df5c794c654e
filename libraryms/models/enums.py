from enum import Enum

from sqlalchemy import Enum as PGEnum


class UserRole(str, Enum):
    Librarian = "librarian"
    Faculty = "faculty"
    Student = "student"
    Public = "public"


class BookStatus(str, Enum):
    Available = "available"
    Borrowed = "borrowed"
    Reserved = "reserved"
    Maintenance = "maintenance"


class TransactionType(str, Enum):
    Borrow = "borrow"
    Return = "return"


class TransactionStatus(str, Enum):
    Active = "active"
    Completed = "completed"
    Overdue = "overdue"


def enum_type(enum_cls, name: str) -> PGEnum:
    # Persist the lowercase values ("borrow"), not the member names ("Borrow")
    return PGEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )
