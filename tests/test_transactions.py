import asyncio
import uuid
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, update
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from conftest import make_actor, make_book, make_profile
from libraryms.core.database import AsyncSessionLocal
from libraryms.core.errors import (
    AlreadyReturned,
    BookUnavailable,
    Forbidden,
    MemberBlacklisted,
    NotFound,
    PartialFailure,
    ValidationError,
)
from libraryms.models.book import Book
from libraryms.models.enums import BookStatus, TransactionStatus, TransactionType, UserRole
from libraryms.models.transaction import Transaction
from libraryms.services import blacklist_service
from libraryms.services.book_service import get_book
from libraryms.services.transaction_service import TransactionFilter, TransactionService, derive_status


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, message, severity="info", *, actor_id=None, title=None):
        self.messages.append((message, getattr(severity, "value", severity)))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(notifier):
    return TransactionService(notifier=notifier)


async def count_transactions(session) -> int:
    result = await session.execute(select(func.count(Transaction.id)))
    return result.scalar_one()


def failing_commits(session, *failing_calls):
    """Make the n-th commit(s) on ``session`` fail like a dropped connection."""
    real_commit = session.commit
    calls = {"n": 0}

    async def commit():
        calls["n"] += 1
        if calls["n"] in failing_calls:
            raise OperationalError("COMMIT", {}, Exception("connection lost"))
        return await real_commit()

    return patch.object(session, "commit", side_effect=commit)


# ------------------------------------------------------------------
# derive_status
# ------------------------------------------------------------------
def test_derive_status_rules():
    now = datetime(2024, 5, 10, 12, 0)
    loan = Transaction(
        member_id=uuid.uuid4(),
        book_title="Dune",
        transaction_type=TransactionType.Borrow,
        transaction_date=now - timedelta(days=3),
        due_date=now + timedelta(days=1),
    )
    assert derive_status(loan, now) == TransactionStatus.Active
    # due date itself is still on time
    assert derive_status(loan, loan.due_date) == TransactionStatus.Active
    assert derive_status(loan, now + timedelta(days=2)) == TransactionStatus.Overdue

    loan.returned_date = now
    loan.transaction_type = TransactionType.Return
    assert derive_status(loan, now + timedelta(days=30)) == TransactionStatus.Completed


# ------------------------------------------------------------------
# borrow
# ------------------------------------------------------------------
@pytest.mark.asyncio
async def test_borrow_last_copy_marks_book_borrowed(db_session, service, notifier):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=2, available=1)

    txn = await service.borrow(
        db_session, librarian, member.id, book.id,
        due_date=datetime.utcnow() + timedelta(days=14), price=0,
    )

    assert txn.status == TransactionStatus.Active
    assert txn.transaction_type == TransactionType.Borrow
    assert txn.book_title == book.title
    assert txn.price == 0
    assert txn.processed_by == librarian.id

    book = await get_book(db_session, book.id)
    assert book.available_copies == 0
    assert book.status == BookStatus.Borrowed
    assert ("Book borrowed successfully.", "success") in notifier.messages


@pytest.mark.asyncio
async def test_borrow_keeps_book_available_while_copies_remain(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=3)

    await service.borrow(db_session, librarian, member.id, book.id)

    book = await get_book(db_session, book.id)
    assert book.available_copies == 2
    assert book.status == BookStatus.Available


@pytest.mark.asyncio
async def test_borrow_defaults_due_date(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session)

    before = datetime.utcnow()
    txn = await service.borrow(db_session, librarian, member.id, book.id)

    assert before + timedelta(days=13) < txn.due_date <= datetime.utcnow() + timedelta(days=14)


@pytest.mark.asyncio
async def test_blacklisted_member_cannot_borrow(db_session, service, notifier):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=2)
    await blacklist_service.add_entry(db_session, librarian, member.id, "Unpaid fines")

    with pytest.raises(MemberBlacklisted):
        await service.borrow(db_session, librarian, member.id, book.id)

    assert await count_transactions(db_session) == 0
    book = await get_book(db_session, book.id)
    assert book.available_copies == 2
    assert notifier.messages[-1][1] == "error"


@pytest.mark.asyncio
async def test_lifted_blacklist_allows_borrowing(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session)
    entry = await blacklist_service.add_entry(db_session, librarian, member.id, "Late")
    await blacklist_service.toggle_active(db_session, librarian, entry.id)

    txn = await service.borrow(db_session, librarian, member.id, book.id)
    assert txn.status == TransactionStatus.Active


@pytest.mark.asyncio
async def test_borrow_unavailable_book(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    out = await make_book(db_session, copies=1, available=0, status=BookStatus.Borrowed)
    repairing = await make_book(db_session, copies=2, status=BookStatus.Maintenance)

    with pytest.raises(BookUnavailable):
        await service.borrow(db_session, librarian, member.id, out.id)
    with pytest.raises(BookUnavailable):
        await service.borrow(db_session, librarian, member.id, repairing.id)

    assert await count_transactions(db_session) == 0
    assert (await get_book(db_session, repairing.id)).available_copies == 2


@pytest.mark.asyncio
async def test_borrow_checks_permission_first(db_session, service):
    member = await make_profile(db_session)
    book = await make_book(db_session)

    for role in (UserRole.Faculty, UserRole.Student, UserRole.Public):
        actor = await make_actor(db_session, role=role)
        with pytest.raises(Forbidden):
            await service.borrow(db_session, actor, member.id, book.id)

    # permission is checked before anything is looked up
    with pytest.raises(Forbidden):
        await service.borrow(db_session, actor, uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_borrow_rejects_bad_input(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session)

    with pytest.raises(ValidationError):
        await service.borrow(
            db_session, librarian, member.id, book.id,
            due_date=datetime.utcnow() - timedelta(days=1),
        )
    with pytest.raises(ValidationError):
        await service.borrow(db_session, librarian, member.id, book.id, price=-5)
    with pytest.raises(NotFound):
        await service.borrow(db_session, librarian, uuid.uuid4(), book.id)
    with pytest.raises(NotFound):
        await service.borrow(db_session, librarian, member.id, uuid.uuid4())

    assert (await get_book(db_session, book.id)).available_copies == 1


# ------------------------------------------------------------------
# concurrency
# ------------------------------------------------------------------
@pytest.mark.asyncio
async def test_concurrent_borrows_of_last_copy(db_session, service):
    librarian = await make_actor(db_session)
    first = await make_profile(db_session)
    second = await make_profile(db_session)
    book = await make_book(db_session, copies=1)

    async def attempt(member):
        async with AsyncSessionLocal() as session:
            try:
                return await service.borrow(session, librarian, member.id, book.id)
            except BookUnavailable as exc:
                return exc

    results = await asyncio.gather(attempt(first), attempt(second))

    loans = [r for r in results if isinstance(r, Transaction)]
    refused = [r for r in results if isinstance(r, BookUnavailable)]
    assert len(loans) == 1
    assert len(refused) == 1

    book = await get_book(db_session, book.id)
    assert book.available_copies == 0
    assert await count_transactions(db_session) == 1


@pytest.mark.asyncio
async def test_reserve_copy_is_conditional(db_session, service):
    book = await make_book(db_session, copies=1)
    book_id = book.id

    assert await service._reserve_copy(db_session, book_id) is True
    # a second service (another process) sees the same store
    assert await TransactionService()._reserve_copy(db_session, book_id) is False

    book = await get_book(db_session, book_id)
    assert book.available_copies == 0
    assert book.status == BookStatus.Borrowed


@pytest.mark.asyncio
async def test_last_copy_taken_by_another_worker(db_session, service, notifier, monkeypatch):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=1)
    member_id, book_id = member.id, book.id

    reserve = service._reserve_copy

    async def reserve_after_other_worker(session, target_id):
        # the copy goes out through another connection between check and write
        async with AsyncSessionLocal() as other:
            await other.execute(
                update(Book)
                .where(Book.id == target_id)
                .values(available_copies=0, status=BookStatus.Borrowed)
            )
            await other.commit()
        return await reserve(session, target_id)

    monkeypatch.setattr(service, "_reserve_copy", reserve_after_other_worker)

    with pytest.raises(BookUnavailable):
        await service.borrow(db_session, librarian, member_id, book_id)

    assert await count_transactions(db_session) == 0
    assert (await get_book(db_session, book_id)).available_copies == 0
    assert notifier.messages[-1][1] == "error"


@pytest.mark.asyncio
async def test_release_copy_is_capped(db_session, service):
    book = await make_book(db_session, copies=2)

    assert await service._release_copy(db_session, book.id) is False
    assert (await get_book(db_session, book.id)).available_copies == 2


# ------------------------------------------------------------------
# return
# ------------------------------------------------------------------
@pytest.mark.asyncio
async def test_borrow_return_round_trip(db_session, service, notifier):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=1)

    txn = await service.borrow(db_session, librarian, member.id, book.id)
    assert (await get_book(db_session, book.id)).available_copies == 0

    returned = await service.return_transaction(db_session, librarian, txn.id)

    assert returned.status == TransactionStatus.Completed
    assert returned.transaction_type == TransactionType.Return
    assert returned.returned_date is not None

    book = await get_book(db_session, book.id)
    assert book.available_copies == 1
    assert book.status == BookStatus.Available
    assert notifier.messages[-1] == ("The book has been successfully returned.", "success")


@pytest.mark.asyncio
async def test_return_twice(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=2)
    txn = await service.borrow(db_session, librarian, member.id, book.id)

    await service.return_transaction(db_session, librarian, txn.id)
    with pytest.raises(AlreadyReturned):
        await service.return_transaction(db_session, librarian, txn.id)

    # counter never exceeds copies
    assert (await get_book(db_session, book.id)).available_copies == 2


@pytest.mark.asyncio
async def test_return_unknown_or_forbidden(db_session, service):
    librarian = await make_actor(db_session)
    faculty = await make_actor(db_session, role=UserRole.Faculty)
    member = await make_profile(db_session)
    book = await make_book(db_session)
    txn = await service.borrow(db_session, librarian, member.id, book.id)

    with pytest.raises(NotFound):
        await service.return_transaction(db_session, librarian, uuid.uuid4())
    with pytest.raises(Forbidden):
        await service.return_transaction(db_session, faculty, txn.id)


@pytest.mark.asyncio
async def test_return_after_book_deleted(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session)
    txn = await service.borrow(db_session, librarian, member.id, book.id)

    # history keeps the loan even if the catalogue record disappears
    txn.book_id = None
    db_session.add(txn)
    await db_session.commit()

    returned = await service.return_transaction(db_session, librarian, txn.id)
    assert returned.status == TransactionStatus.Completed
    assert returned.book_title == book.title


# ------------------------------------------------------------------
# overdue
# ------------------------------------------------------------------
@pytest.mark.asyncio
async def test_overdue_sweep_then_return(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=1)
    txn = await service.borrow(
        db_session, librarian, member.id, book.id,
        due_date=datetime.utcnow() + timedelta(days=1),
    )

    later = datetime.utcnow() + timedelta(days=2)
    assert await service.recompute_overdue(db_session, later) == 1

    txn = await service.get_transaction(db_session, txn.id)
    assert txn.status == TransactionStatus.Overdue

    returned = await service.return_transaction(db_session, librarian, txn.id)
    assert returned.status == TransactionStatus.Completed
    assert (await get_book(db_session, book.id)).available_copies == 1


@pytest.mark.asyncio
async def test_overdue_sweep_is_idempotent(db_session, service):
    librarian = await make_actor(db_session)
    book = await make_book(db_session, copies=5)
    for _ in range(3):
        member = await make_profile(db_session)
        await service.borrow(
            db_session, librarian, member.id, book.id,
            due_date=datetime.utcnow() + timedelta(days=1),
        )

    later = datetime.utcnow() + timedelta(days=3)
    assert await service.recompute_overdue(db_session, later) == 3
    assert await service.recompute_overdue(db_session, later) == 0


@pytest.mark.asyncio
async def test_overdue_sweep_leaves_current_and_returned_loans(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=3)

    on_time = await service.borrow(db_session, librarian, member.id, book.id)
    returned = await service.borrow(
        db_session, librarian, member.id, book.id,
        due_date=datetime.utcnow() + timedelta(days=1),
    )
    await service.return_transaction(db_session, librarian, returned.id)

    assert await service.recompute_overdue(db_session, datetime.utcnow() + timedelta(days=2)) == 0
    assert (await service.get_transaction(db_session, on_time.id)).status == TransactionStatus.Active
    assert (await service.get_transaction(db_session, returned.id)).status == TransactionStatus.Completed


# ------------------------------------------------------------------
# partial failures
# ------------------------------------------------------------------
@pytest.mark.asyncio
async def test_borrow_partial_failure_is_compensated(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=1)
    book_id = book.id

    # commit 1 reserves the copy, commit 2 records the loan
    with failing_commits(db_session, 2):
        with pytest.raises(PartialFailure) as exc:
            await service.borrow(db_session, librarian, member.id, book_id)

    assert exc.value.compensated is True
    assert exc.value.status_code == 500
    assert await count_transactions(db_session) == 0
    book = await get_book(db_session, book_id)
    assert book.available_copies == 1
    assert book.status == BookStatus.Available


@pytest.mark.asyncio
async def test_borrow_partial_failure_flagged_when_compensation_fails(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=1)
    book_id = book.id

    with failing_commits(db_session, 2, 3):
        with pytest.raises(PartialFailure) as exc:
            await service.borrow(db_session, librarian, member.id, book_id)

    assert exc.value.compensated is False
    # the reserved copy is still out: this is what reconciliation has to fix
    assert (await get_book(db_session, book_id)).available_copies == 0


@pytest.mark.asyncio
async def test_return_partial_failure_reopens_loan(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session, copies=1)
    book_id = book.id
    txn = await service.borrow(db_session, librarian, member.id, book_id)
    txn_id = txn.id

    # commit 1 closes the loan, commit 2 restores the counter
    with failing_commits(db_session, 2):
        with pytest.raises(PartialFailure) as exc:
            await service.return_transaction(db_session, librarian, txn_id)

    assert exc.value.compensated is True
    txn = await service.get_transaction(db_session, txn_id)
    assert txn.status == TransactionStatus.Active
    assert txn.transaction_type == TransactionType.Borrow
    assert txn.returned_date is None
    assert (await get_book(db_session, book_id)).available_copies == 0

    # and it can be returned properly afterwards
    await service.return_transaction(db_session, librarian, txn_id)
    assert (await get_book(db_session, book_id)).available_copies == 1


# ------------------------------------------------------------------
# listing
# ------------------------------------------------------------------
@pytest.mark.asyncio
async def test_list_transactions_newest_first_with_filters(db_session, service):
    librarian = await make_actor(db_session)
    alice = await make_profile(db_session, name="Alice Reader")
    bob = await make_profile(db_session, name="Bob Borrower")
    dune = await make_book(db_session, copies=2, title="Dune")
    emma = await make_book(db_session, copies=2, title="Emma")

    first = await service.borrow(db_session, librarian, alice.id, dune.id)
    second = await service.borrow(db_session, librarian, bob.id, emma.id)
    third = await service.borrow(db_session, librarian, bob.id, dune.id)
    await service.return_transaction(db_session, librarian, first.id)

    everything = await service.list_transactions(db_session)
    assert [t.id for t in everything] == [third.id, second.id, first.id]
    assert everything[0].member_name == "Bob Borrower"

    returned = await service.list_transactions(
        db_session, TransactionFilter(transaction_type=TransactionType.Return)
    )
    assert [t.id for t in returned] == [first.id]

    active = await service.list_transactions(
        db_session, TransactionFilter(status=TransactionStatus.Active)
    )
    assert {t.id for t in active} == {second.id, third.id}

    by_title = await service.list_transactions(db_session, TransactionFilter(search="dune"))
    assert [t.id for t in by_title] == [third.id, first.id]

    by_member = await service.list_transactions(db_session, TransactionFilter(search="alice"))
    assert [t.id for t in by_member] == [first.id]

    limited = await service.list_transactions(db_session, TransactionFilter(limit=1))
    assert [t.id for t in limited] == [third.id]


@pytest.mark.asyncio
async def test_listing_refreshes_overdue_status(db_session, service):
    librarian = await make_actor(db_session)
    member = await make_profile(db_session)
    book = await make_book(db_session)
    txn = await service.borrow(
        db_session, librarian, member.id, book.id,
        due_date=datetime.utcnow() + timedelta(days=1),
    )

    listed = await service.list_transactions(
        db_session,
        TransactionFilter(status=TransactionStatus.Overdue),
        now=datetime.utcnow() + timedelta(days=2),
    )
    assert [t.id for t in listed] == [txn.id]


@pytest.mark.asyncio
async def test_member_history(db_session, service):
    librarian = await make_actor(db_session)
    alice = await make_profile(db_session)
    bob = await make_profile(db_session)
    book = await make_book(db_session, copies=3)

    mine = await service.borrow(db_session, librarian, alice.id, book.id)
    await service.borrow(db_session, librarian, bob.id, book.id)

    history = await service.member_history(db_session, alice.id)
    assert [t.id for t in history] == [mine.id]
