# libraryms/api/endpoints/blacklist.py

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.api.deps import get_db_session, permission_required
from libraryms.core.permissions import LIBRARIAN_TIER, Permission
from libraryms.models.actor import Actor
from libraryms.schemas.blacklist import BlacklistCreate, BlacklistRead, BlacklistStatus
from libraryms.services import blacklist_service
from libraryms.services.audit_service import log_activity
from libraryms.services.notification_service import Severity, get_notifier

router = APIRouter(prefix="/api/blacklist", tags=["Blacklist"])

require_librarian = permission_required(LIBRARIAN_TIER, "manage the blacklist")


# -------------------------------------------------------------------
# LEDGER
# -------------------------------------------------------------------
@router.get("", response_model=List[BlacklistRead])
async def list_blacklist(
    search: Optional[str] = Query(None, description="Member name or reason"),
    session: AsyncSession = Depends(get_db_session),
    _: Actor = Depends(require_librarian),
):
    return await blacklist_service.list_entries(session, search=search)


@router.post("", response_model=BlacklistRead, status_code=status.HTTP_201_CREATED)
async def add_to_blacklist(
    data: BlacklistCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(require_librarian),
):
    entry = await blacklist_service.add_entry(session, actor, data.member_id, data.reason)
    get_notifier().notify("Member added to blacklist.", Severity.Success, actor_id=actor.id)
    background_tasks.add_task(
        log_activity,
        action="MEMBER_BLACKLISTED",
        actor=actor,
        details={"member_id": entry.member_id, "reason": entry.reason},
    )
    return await blacklist_service.read_entry(session, entry.id)


@router.post("/{entry_id}/toggle", response_model=BlacklistRead)
async def toggle_blacklist_entry(
    entry_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(require_librarian),
):
    entry = await blacklist_service.toggle_active(session, actor, entry_id)
    get_notifier().notify(
        f"Blacklist entry {'activated' if entry.is_active else 'deactivated'}.",
        Severity.Success,
        actor_id=actor.id,
    )
    background_tasks.add_task(
        log_activity,
        action="BLACKLIST_ACTIVATED" if entry.is_active else "BLACKLIST_LIFTED",
        actor=actor,
        details={"entry_id": entry.id, "member_id": entry.member_id},
    )
    return await blacklist_service.read_entry(session, entry.id)


# -------------------------------------------------------------------
# ELIGIBILITY (readable by anyone who can see members)
# -------------------------------------------------------------------
@router.get("/members/{member_id}", response_model=BlacklistStatus)
async def member_blacklist_status(
    member_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    _: Actor = Depends(permission_required(Permission.ViewMembers, "view members")),
):
    return BlacklistStatus(
        member_id=member_id,
        is_blacklisted=await blacklist_service.is_blacklisted(session, member_id),
    )
