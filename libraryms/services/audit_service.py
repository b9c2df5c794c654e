# libraryms/services/audit_service.py

from typing import Optional, Dict, Any, List

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from libraryms.models.actor import Actor
from libraryms.models.audit import ActivityLog
from libraryms.core.database import AsyncSessionLocal


# This function manages its own session so it is safe in BackgroundTasks.
async def log_activity(
    action: str,
    actor: Optional[Actor] = None,
    subject: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
):
    """
    Creates an activity log entry in a separate DB session.
    Failures are logged and never propagate to the request that queued it.
    """
    async with AsyncSessionLocal() as session:
        try:
            entry = ActivityLog(
                actor_id=actor.id if actor else None,
                actor_role=actor.role.value if actor else None,
                actor_name=actor.display_name if actor else "System",
                action=action,
                subject=subject,
                details={k: str(v) for k, v in (details or {}).items()},
            )
            session.add(entry)
            await session.commit()

        except Exception:
            logger.exception("❌ ACTIVITY LOG ERROR ({})", action)
            # keep the connection healthy
            await session.rollback()


async def list_recent_activities(session: AsyncSession, limit: int = 10) -> List[ActivityLog]:
    result = await session.execute(
        select(ActivityLog).order_by(ActivityLog.timestamp.desc()).limit(limit)
    )
    return result.scalars().all()
