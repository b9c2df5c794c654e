# libraryms/api/endpoints/common.py

from typing import List

from fastapi import APIRouter, Depends, Query

from libraryms.api.deps import get_current_actor
from libraryms.core.permissions import navigation_for
from libraryms.models.actor import Actor
from libraryms.schemas.auth import NavItemRead
from libraryms.schemas.dashboard import NotificationRead
from libraryms.services.notification_service import get_notifier

router = APIRouter(prefix="/api", tags=["Common"])


# ----------------------------------------------------------
# ROLE-BASED NAVIGATION
# ----------------------------------------------------------
@router.get("/navigation", response_model=List[NavItemRead])
async def navigation(actor: Actor = Depends(get_current_actor)):
    return [NavItemRead(id=item.id, label=item.label) for item in navigation_for(actor)]


# ----------------------------------------------------------
# NOTIFICATION FEED (latest first)
# ----------------------------------------------------------
@router.get("/notifications", response_model=List[NotificationRead])
async def notifications(
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
):
    return [
        NotificationRead(
            message=n.message,
            severity=n.severity.value,
            title=n.title,
            created_at=n.created_at,
        )
        for n in get_notifier().recent(actor_id=actor.id, limit=limit)
    ]
