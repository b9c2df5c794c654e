# libraryms/services/book_service.py

from datetime import datetime
from typing import List, Optional
import uuid

from loguru import logger
from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from libraryms.core.database import backend_call
from libraryms.core.errors import NotFound, ValidationError
from libraryms.core.permissions import Permission, require_permission
from libraryms.models.actor import Actor
from libraryms.models.book import Book
from libraryms.models.enums import BookStatus, TransactionStatus
from libraryms.models.transaction import Transaction
from libraryms.schemas.book import BookCreate, BookUpdate


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound("Book not found")


# ============================================================================
# STATUS FOLLOWS THE COUNTER
# ============================================================================
async def sync_book_status(session: AsyncSession, book_id: uuid.UUID) -> None:
    """
    Keep ``status`` in line with ``available_copies``: "borrowed" once the
    last copy is out, back to "available" as soon as one returns.
    Reserved / maintenance are manual states and are left alone.
    Runs inside the caller's DB transaction; the caller commits.
    """
    await session.execute(
        update(Book)
        .where(Book.id == book_id)
        .where(Book.status == BookStatus.Available)
        .where(Book.available_copies <= 0)
        .values(status=BookStatus.Borrowed)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(Book)
        .where(Book.id == book_id)
        .where(Book.status == BookStatus.Borrowed)
        .where(Book.available_copies > 0)
        .values(status=BookStatus.Available)
        .execution_options(synchronize_session=False)
    )


# ============================================================================
# QUERIES
# ============================================================================
async def list_books(
    session: AsyncSession,
    search: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[BookStatus] = None,
) -> List[Book]:
    query = select(Book)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            Book.title.ilike(pattern),
            Book.author.ilike(pattern),
            Book.isbn.ilike(pattern),
        ))

    if category and category.lower() != "all":
        query = query.where(Book.category == category)

    if status:
        query = query.where(Book.status == status)

    async with backend_call(session, "load books"):
        result = await session.execute(query.order_by(Book.title))
        return result.scalars().all()


async def get_book(session: AsyncSession, book_id) -> Book:
    async with backend_call(session, "load book"):
        result = await session.execute(
            select(Book)
            .where(Book.id == _as_uuid(book_id))
            .execution_options(populate_existing=True)
        )
        book = result.scalar_one_or_none()
    if not book:
        raise NotFound("Book not found")
    return book


async def inventory_counts(session: AsyncSession) -> dict:
    async with backend_call(session, "count inventory"):
        result = await session.execute(
            select(
                func.count(Book.id),
                func.coalesce(func.sum(Book.copies), 0),
                func.coalesce(func.sum(Book.available_copies), 0),
            )
        )
        titles, copies, available = result.one()

    return {
        "total_books": titles,
        "total_copies": int(copies),
        "available_books": int(available),
        "borrowed_books": int(copies) - int(available),
    }


# ============================================================================
# COMMANDS
# ============================================================================
def _require_text(value: Optional[str], label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value


async def create_book(session: AsyncSession, actor: Actor, data: BookCreate) -> Book:
    require_permission(actor, Permission.AddBook, "add books")

    if data.status == BookStatus.Borrowed:
        raise ValidationError("A new book cannot start out as borrowed")

    book = Book(
        title=_require_text(data.title, "Title"),
        author=_require_text(data.author, "Author"),
        isbn=_require_text(data.isbn, "ISBN"),
        category=(data.category or "General").strip() or "General",
        copies=data.copies,
        available_copies=data.copies,
        status=data.status,
        location=data.location,
        published_year=data.published_year,
        description=data.description,
    )
    session.add(book)

    async with backend_call(session, "add book"):
        await session.commit()
        await session.refresh(book)

    logger.info("Book '{}' added by {} ({} copies)", book.title, actor.email, book.copies)
    return book


async def update_book(session: AsyncSession, actor: Actor, book_id, data: BookUpdate) -> Book:
    require_permission(actor, Permission.EditBook, "edit books")

    book = await get_book(session, book_id)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("status") == BookStatus.Borrowed:
        raise ValidationError("'borrowed' is set by circulation, not by hand")

    for field in ("title", "author", "isbn"):
        if field in changes:
            setattr(book, field, _require_text(changes[field], field.capitalize()))

    for field in ("category", "location", "published_year", "description", "status"):
        if field in changes and changes[field] is not None:
            setattr(book, field, changes[field])

    book.updated_at = datetime.utcnow()
    session.add(book)

    async with backend_call(session, "update book"):
        await session.flush()

        new_copies = changes.get("copies")
        if new_copies is not None and new_copies != book.copies:
            delta = new_copies - book.copies
            # shift the shelf count with the total; refuse if copies are out on loan
            result = await session.execute(
                update(Book)
                .where(Book.id == book.id)
                .where(Book.available_copies + delta >= 0)
                .values(copies=new_copies, available_copies=Book.available_copies + delta)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ValidationError(
                    "Cannot reduce copies below the number currently on loan"
                )

        await sync_book_status(session, book.id)
        await session.commit()

    return await get_book(session, book.id)


async def delete_book(session: AsyncSession, actor: Actor, book_id) -> None:
    require_permission(actor, Permission.DeleteBook, "delete books")

    book = await get_book(session, book_id)

    async with backend_call(session, "delete book"):
        result = await session.execute(
            select(func.count(Transaction.id))
            .where(Transaction.book_id == book.id)
            .where(Transaction.status != TransactionStatus.Completed)
        )
        if result.scalar_one():
            raise ValidationError("Book has copies on loan; process the returns first")

        # history keeps the title snapshot
        await session.execute(
            update(Transaction)
            .where(Transaction.book_id == book.id)
            .values(book_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.delete(book)
        await session.commit()

    logger.info("Book '{}' deleted by {}", book.title, actor.email)
