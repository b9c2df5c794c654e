# libraryms/api/endpoints/dashboard.py

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.api.deps import get_db_session, get_transactions, permission_required
from libraryms.core.permissions import Permission
from libraryms.models.actor import Actor
from libraryms.schemas.dashboard import ActivityRead, DashboardStats
from libraryms.services.audit_service import list_recent_activities
from libraryms.services.book_service import inventory_counts
from libraryms.services.member_service import count_members
from libraryms.services.transaction_service import TransactionService

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])

require_reports = permission_required(Permission.ViewReports, "view reports")


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    session: AsyncSession = Depends(get_db_session),
    service: TransactionService = Depends(get_transactions),
    _: Actor = Depends(require_reports),
):
    inventory = await inventory_counts(session)
    return DashboardStats(
        **inventory,
        total_members=await count_members(session),
        overdue_books=await service.count_overdue(session),
    )


@router.get("/activities", response_model=List[ActivityRead])
async def recent_activities(
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
    _: Actor = Depends(require_reports),
):
    return await list_recent_activities(session, limit=limit)
