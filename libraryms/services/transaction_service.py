# libraryms/services/transaction_service.py

"""
Borrow / return lifecycle.

A borrow or a return touches two records (the loan and the book counter)
and the store gives no multi-record transaction, so each operation issues
two separately committed writes:

    borrow:  1. reserve a copy  (conditional decrement, available_copies > 0)
             2. insert the loan
    return:  1. close the loan  (conditional, status != completed)
             2. put the copy back (capped at copies)

If write 2 fails, write 1 is compensated and PartialFailure is raised.
Borrow and return are also serialized per book inside one service, so the
check-then-act on the counter never interleaves locally; the conditional
update keeps it safe across processes.

Loan status is a cache of (type, returned_date, due_date) against the clock.
``derive_status`` is the rule, ``recompute_overdue`` refreshes the cache.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import uuid

from loguru import logger
from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from libraryms.core.config import settings
from libraryms.core.database import backend_call
from libraryms.core.errors import (
    AlreadyReturned,
    BookUnavailable,
    MemberBlacklisted,
    NotFound,
    PartialFailure,
    ValidationError,
)
from libraryms.core.permissions import LIBRARIAN_TIER, require_permission
from libraryms.models.actor import Actor
from libraryms.models.book import Book
from libraryms.models.enums import BookStatus, TransactionStatus, TransactionType
from libraryms.models.profile import Profile
from libraryms.models.transaction import Transaction
from libraryms.schemas.transaction import TransactionRead
from libraryms.services.blacklist_service import is_blacklisted
from libraryms.services.book_service import get_book, sync_book_status
from libraryms.services.member_service import get_member
from libraryms.services.notification_service import Notifier, Severity, notifier as default_notifier


def utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def derive_status(txn: Transaction, now: Optional[datetime] = None) -> TransactionStatus:
    now = utc_naive(now) or datetime.utcnow()
    if txn.returned_date is not None or txn.transaction_type == TransactionType.Return:
        return TransactionStatus.Completed
    if txn.due_date is not None and now > txn.due_date:
        return TransactionStatus.Overdue
    return TransactionStatus.Active


@dataclass
class TransactionFilter:
    transaction_type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    search: Optional[str] = None
    member_id: Optional[uuid.UUID] = None
    limit: Optional[int] = None


def to_transaction_read(txn: Transaction, member_name: Optional[str] = None) -> TransactionRead:
    read = TransactionRead.model_validate(txn)
    read.member_name = member_name
    return read


class TransactionService:

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or default_notifier
        # one lock per book id, dropped once nobody holds it
        self._book_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def _book_lock(self, book_id: Optional[uuid.UUID]):
        if book_id is None:
            yield
            return
        lock = self._book_locks.get(book_id)
        if lock is None:
            lock = asyncio.Lock()
            self._book_locks[book_id] = lock
        async with lock:
            yield

    # ------------------------------------------------------------------
    # inventory writes
    # ------------------------------------------------------------------
    async def _reserve_copy(self, session: AsyncSession, book_id: uuid.UUID) -> bool:
        """Atomic conditional decrement. False when no copy was left."""
        result = await session.execute(
            update(Book)
            .where(Book.id == book_id)
            .where(Book.available_copies > 0)
            .where(Book.status == BookStatus.Available)
            .values(
                available_copies=Book.available_copies - 1,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            return False
        await sync_book_status(session, book_id)
        await session.commit()
        return True

    async def _release_copy(self, session: AsyncSession, book_id: uuid.UUID) -> bool:
        """Increment capped at ``copies``. False when the counter was already full."""
        result = await session.execute(
            update(Book)
            .where(Book.id == book_id)
            .where(Book.available_copies < Book.copies)
            .values(
                available_copies=Book.available_copies + 1,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        await sync_book_status(session, book_id)
        await session.commit()
        return released

    # ------------------------------------------------------------------
    # borrow
    # ------------------------------------------------------------------
    async def borrow(
        self,
        session: AsyncSession,
        actor: Actor,
        member_id,
        book_id,
        due_date: Optional[datetime] = None,
        price: Optional[float] = None,
    ) -> Transaction:
        require_permission(actor, LIBRARIAN_TIER, "record loans")

        now = datetime.utcnow()
        due_date = utc_naive(due_date) or now + timedelta(days=settings.DEFAULT_LOAN_DAYS)
        if due_date <= now:
            raise ValidationError("Due date must be in the future")
        if price is not None and price < 0:
            raise ValidationError("Price cannot be negative")

        member = await get_member(session, member_id)
        # plain values only from here on: a rollback expires every loaded row
        member_id, member_email = member.id, member.email

        if await is_blacklisted(session, member_id):
            logger.warning("Borrow refused: member {} is blacklisted", member_email)
            self._notify("This member is blacklisted and cannot borrow books.", Severity.Error, actor)
            raise MemberBlacklisted()

        book = await get_book(session, book_id)
        book_id = book.id

        async with self._book_lock(book_id):
            book = await get_book(session, book_id)
            book_title = book.title
            if book.status != BookStatus.Available or book.available_copies <= 0:
                self._notify(f"'{book_title}' has no copies available.", Severity.Error, actor)
                raise BookUnavailable(f"'{book_title}' has no copies available")

            # write 1: claim the copy
            async with backend_call(session, "reserve book copy"):
                reserved = await self._reserve_copy(session, book_id)
            if not reserved:
                # another worker took the last copy after our check
                self._notify(f"'{book_title}' has no copies available.", Severity.Error, actor)
                raise BookUnavailable(f"'{book_title}' has no copies available")

            # write 2: the loan record
            txn = Transaction(
                member_id=member_id,
                book_id=book_id,
                book_title=book_title,
                transaction_type=TransactionType.Borrow,
                status=TransactionStatus.Active,
                transaction_date=now,
                due_date=due_date,
                price=price,
                processed_by=actor.id,
            )
            try:
                session.add(txn)
                await session.commit()
                await session.refresh(txn)
            except SQLAlchemyError as exc:
                await session.rollback()
                compensated = await self._compensate(
                    session, "release copy", self._release_copy, book_id
                )
                logger.error(
                    "PARTIAL BORROW: copy of book {} reserved for member {} but loan not recorded "
                    "(compensated={}): {}",
                    book_id, member_id, compensated, exc,
                )
                self._notify("Borrow could not be completed; inventory needs review.", Severity.Error, actor)
                raise PartialFailure(
                    "The book copy was reserved but the loan could not be recorded",
                    compensated=compensated,
                ) from exc

        logger.info(
            "📚 '{}' lent to {} until {} (by {})",
            book_title, member_email, due_date.date(), actor.email,
        )
        self._notify("Book borrowed successfully.", Severity.Success, actor)
        return txn

    # ------------------------------------------------------------------
    # return
    # ------------------------------------------------------------------
    async def return_transaction(self, session: AsyncSession, actor: Actor, transaction_id) -> Transaction:
        require_permission(actor, LIBRARIAN_TIER, "process returns")

        txn = await self.get_transaction(session, transaction_id)
        if txn.status == TransactionStatus.Completed:
            raise AlreadyReturned()

        txn_id, book_id = txn.id, txn.book_id
        previous = {
            "status": txn.status,
            "transaction_type": txn.transaction_type,
            "returned_date": txn.returned_date,
        }

        async with self._book_lock(book_id):
            # write 1: close the loan, unless someone else already did
            async with backend_call(session, "close loan"):
                result = await session.execute(
                    update(Transaction)
                    .where(Transaction.id == txn_id)
                    .where(Transaction.status != TransactionStatus.Completed)
                    .values(
                        status=TransactionStatus.Completed,
                        transaction_type=TransactionType.Return,
                        returned_date=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await session.rollback()
                    raise AlreadyReturned()
                await session.commit()

            # write 2: the copy goes back on the shelf
            if book_id is not None:
                try:
                    released = await self._release_copy(session, book_id)
                    if not released:
                        logger.warning("Return of {}: book {} counter already full", txn_id, book_id)
                except SQLAlchemyError as exc:
                    await session.rollback()
                    compensated = await self._compensate(
                        session, "reopen loan", self._reopen, txn_id, previous
                    )
                    logger.error(
                        "PARTIAL RETURN: loan {} closed but book {} counter not restored "
                        "(compensated={}): {}",
                        txn_id, book_id, compensated, exc,
                    )
                    self._notify("Return could not be completed; inventory needs review.", Severity.Error, actor)
                    raise PartialFailure(
                        "The loan was closed but the book could not be put back in stock",
                        compensated=compensated,
                    ) from exc

        txn = await self.get_transaction(session, txn_id)
        logger.info("📗 '{}' returned (loan {}, by {})", txn.book_title, txn.id, actor.email)
        self._notify("The book has been successfully returned.", Severity.Success, actor)
        return txn

    async def _reopen(self, session: AsyncSession, transaction_id: uuid.UUID, previous: dict) -> None:
        await session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id)
            .values(**previous)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

    async def _compensate(self, session: AsyncSession, what: str, undo, *args) -> bool:
        try:
            await undo(session, *args)
            return True
        except SQLAlchemyError:
            logger.exception("Compensation '{}' failed; record flagged for reconciliation: {}", what, args)
            await session.rollback()
            return False

    # ------------------------------------------------------------------
    # overdue sweep
    # ------------------------------------------------------------------
    async def recompute_overdue(self, session: AsyncSession, now: Optional[datetime] = None) -> int:
        """Flip active loans whose due date has passed. Idempotent for a given ``now``."""
        now = utc_naive(now) or datetime.utcnow()
        async with backend_call(session, "recompute overdue loans"):
            result = await session.execute(
                update(Transaction)
                .where(Transaction.status == TransactionStatus.Active)
                .where(Transaction.transaction_type == TransactionType.Borrow)
                .where(Transaction.returned_date.is_(None))
                .where(Transaction.due_date.is_not(None))
                .where(Transaction.due_date < now)
                .values(status=TransactionStatus.Overdue)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        transitioned = result.rowcount or 0
        if transitioned:
            logger.info("⏰ {} loan(s) became overdue", transitioned)
        return transitioned

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    async def get_transaction(self, session: AsyncSession, transaction_id) -> Transaction:
        try:
            transaction_id = (
                transaction_id if isinstance(transaction_id, uuid.UUID)
                else uuid.UUID(str(transaction_id))
            )
        except ValueError:
            raise NotFound("Transaction not found")

        async with backend_call(session, "load transaction"):
            result = await session.execute(
                select(Transaction)
                .where(Transaction.id == transaction_id)
                .execution_options(populate_existing=True)
            )
            txn = result.scalar_one_or_none()
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    async def list_transactions(
        self,
        session: AsyncSession,
        filters: Optional[TransactionFilter] = None,
        now: Optional[datetime] = None,
    ) -> List[TransactionRead]:
        filters = filters or TransactionFilter()

        # status is time-derived; refresh the cache before showing it
        await self.recompute_overdue(session, now)

        query = (
            select(Transaction, Profile.full_name)
            .join(Profile, Profile.id == Transaction.member_id, isouter=True)
            .order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if filters.transaction_type:
            query = query.where(Transaction.transaction_type == filters.transaction_type)
        if filters.status:
            query = query.where(Transaction.status == filters.status)
        if filters.member_id:
            query = query.where(Transaction.member_id == filters.member_id)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.where(or_(Transaction.book_title.ilike(pattern), Profile.full_name.ilike(pattern)))
        if filters.limit:
            query = query.limit(filters.limit)

        async with backend_call(session, "load transactions"):
            result = await session.execute(query)
            rows = result.all()

        return [to_transaction_read(txn, member_name) for txn, member_name in rows]

    async def member_history(self, session: AsyncSession, member_id) -> List[TransactionRead]:
        member = await get_member(session, member_id, include_inactive=True)
        return await self.list_transactions(session, TransactionFilter(member_id=member.id))

    async def count_overdue(self, session: AsyncSession) -> int:
        await self.recompute_overdue(session)
        async with backend_call(session, "count overdue loans"):
            result = await session.execute(
                select(func.count(Transaction.id))
                .where(Transaction.status == TransactionStatus.Overdue)
            )
            return result.scalar_one()

    # ------------------------------------------------------------------
    def _notify(self, message: str, severity: Severity, actor: Optional[Actor]) -> None:
        # fire-and-forget
        try:
            self.notifier.notify(message, severity, actor_id=actor.id if actor else None)
        except Exception:
            logger.exception("Notifier failed")


transaction_service = TransactionService()


def get_transaction_service() -> TransactionService:
    return transaction_service
