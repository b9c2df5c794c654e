# libraryms/api/endpoints/transactions.py

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.api.deps import get_current_actor, get_db_session, get_transactions, permission_required
from libraryms.core.permissions import LIBRARIAN_TIER, Permission
from libraryms.models.actor import Actor
from libraryms.models.enums import TransactionStatus, TransactionType
from libraryms.schemas.transaction import BorrowRequest, OverdueSweepResult, TransactionRead
from libraryms.services.audit_service import log_activity
from libraryms.services.member_service import get_member
from libraryms.services.transaction_service import (
    TransactionFilter,
    TransactionService,
    to_transaction_read,
)

router = APIRouter(prefix="/api/transactions", tags=["Transactions"])

require_librarian = permission_required(LIBRARIAN_TIER, "manage transactions")


# -------------------------------------------------------------------
# LIST (status refreshed before it is shown)
# -------------------------------------------------------------------
@router.get("", response_model=List[TransactionRead])
async def list_transactions(
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    txn_status: Optional[TransactionStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, description="Book title or member name"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
    service: TransactionService = Depends(get_transactions),
    _: Actor = Depends(permission_required(Permission.ViewReports, "view transactions")),
):
    return await service.list_transactions(
        session,
        TransactionFilter(
            transaction_type=transaction_type,
            status=txn_status,
            search=search,
            limit=limit,
        ),
    )


@router.get("/mine", response_model=List[TransactionRead])
async def my_transactions(
    session: AsyncSession = Depends(get_db_session),
    service: TransactionService = Depends(get_transactions),
    actor: Actor = Depends(get_current_actor),
):
    return await service.member_history(session, actor.id)


# -------------------------------------------------------------------
# BORROW
# -------------------------------------------------------------------
@router.post("/borrow", response_model=TransactionRead, status_code=status.HTTP_201_CREATED)
async def borrow_book(
    data: BorrowRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    service: TransactionService = Depends(get_transactions),
    actor: Actor = Depends(require_librarian),
):
    txn = await service.borrow(
        session,
        actor,
        member_id=data.member_id,
        book_id=data.book_id,
        due_date=data.due_date,
        price=data.price,
    )
    member = await get_member(session, txn.member_id, include_inactive=True)

    background_tasks.add_task(
        log_activity,
        action="BOOK_BORROWED",
        actor=actor,
        subject=txn.book_title,
        details={"transaction_id": txn.id, "member": member.email, "due_date": txn.due_date},
    )
    return to_transaction_read(txn, member.full_name)


# -------------------------------------------------------------------
# RETURN
# -------------------------------------------------------------------
@router.post("/{transaction_id}/return", response_model=TransactionRead)
async def return_book(
    transaction_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    service: TransactionService = Depends(get_transactions),
    actor: Actor = Depends(require_librarian),
):
    txn = await service.return_transaction(session, actor, transaction_id)
    member = await get_member(session, txn.member_id, include_inactive=True)

    background_tasks.add_task(
        log_activity,
        action="BOOK_RETURNED",
        actor=actor,
        subject=txn.book_title,
        details={"transaction_id": txn.id, "member": member.email},
    )
    return to_transaction_read(txn, member.full_name)


# -------------------------------------------------------------------
# OVERDUE SWEEP (manual trigger)
# -------------------------------------------------------------------
@router.post("/recompute-overdue", response_model=OverdueSweepResult)
async def recompute_overdue(
    session: AsyncSession = Depends(get_db_session),
    service: TransactionService = Depends(get_transactions),
    _: Actor = Depends(require_librarian),
):
    ran_at = datetime.utcnow()
    transitioned = await service.recompute_overdue(session, ran_at)
    return OverdueSweepResult(transitioned=transitioned, ran_at=ran_at)
