# libraryms/api/endpoints/jobs.py

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.api.deps import get_db_session, get_transactions
from libraryms.core.config import settings
from libraryms.schemas.transaction import OverdueSweepResult
from libraryms.services.transaction_service import TransactionService

router = APIRouter(prefix="/api/jobs", tags=["Background Jobs"])


@router.post("/recompute-overdue", response_model=OverdueSweepResult)
async def scheduled_overdue_sweep(
    secret_key: str,
    session: AsyncSession = Depends(get_db_session),
    service: TransactionService = Depends(get_transactions),
):
    """
    CRON JOB ENDPOINT.
    Flips loans past their due date to "overdue". Safe to call as often as
    the scheduler likes.
    """
    if not settings.JOB_SECRET or secret_key != settings.JOB_SECRET:
        logger.warning("Unauthorized access attempt to background job.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing Job Secret Key.",
        )

    ran_at = datetime.utcnow()
    transitioned = await service.recompute_overdue(session, ran_at)
    logger.info("Scheduled overdue sweep: {} transitioned", transitioned)
    return OverdueSweepResult(transitioned=transitioned, ran_at=ran_at)
