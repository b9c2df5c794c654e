# libraryms/api/endpoints/members.py

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.api.deps import get_db_session, permission_required
from libraryms.core.permissions import Permission
from libraryms.models.actor import Actor
from libraryms.schemas.user import MemberCreate, MemberRead, MemberUpdate
from libraryms.services import member_service
from libraryms.services.audit_service import log_activity
from libraryms.services.blacklist_service import blacklisted_member_ids, is_blacklisted

router = APIRouter(prefix="/api/members", tags=["Members"])


# -------------------------------------------------------------------
# LIST / SEARCH (librarians excluded)
# -------------------------------------------------------------------
@router.get("", response_model=List[MemberRead])
async def list_members(
    search: Optional[str] = Query(None, description="Name or email"),
    include_inactive: bool = Query(False),
    session: AsyncSession = Depends(get_db_session),
    _: Actor = Depends(permission_required(Permission.ViewMembers, "view members")),
):
    members = await member_service.list_members(session, search=search, include_inactive=include_inactive)
    barred = await blacklisted_member_ids(session)
    return [member_service.to_member_read(m, barred) for m in members]


@router.get("/{member_id}", response_model=MemberRead)
async def get_member(
    member_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    _: Actor = Depends(permission_required(Permission.ViewMembers, "view members")),
):
    member = await member_service.get_member(session, member_id, include_inactive=True)
    barred = {member.id} if await is_blacklisted(session, member.id) else set()
    return member_service.to_member_read(member, barred)


# -------------------------------------------------------------------
# CREATE (at the desk; password optional)
# -------------------------------------------------------------------
@router.post("", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
async def create_member(
    data: MemberCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(permission_required(Permission.AddMember, "add members")),
):
    member = await member_service.create_member(session, actor, data)
    background_tasks.add_task(
        log_activity,
        action="MEMBER_ADDED",
        actor=actor,
        subject=member.email,
        details={"role": member.role.value},
    )
    return member_service.to_member_read(member)


# -------------------------------------------------------------------
# UPDATE
# -------------------------------------------------------------------
@router.put("/{member_id}", response_model=MemberRead)
async def update_member(
    member_id: UUID,
    data: MemberUpdate,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(permission_required(Permission.EditMember, "edit members")),
):
    member = await member_service.update_member(session, actor, member_id, data)
    barred = {member.id} if await is_blacklisted(session, member.id) else set()
    return member_service.to_member_read(member, barred)


# -------------------------------------------------------------------
# DELETE (deactivates)
# -------------------------------------------------------------------
@router.delete("/{member_id}", response_model=MemberRead)
async def delete_member(
    member_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(permission_required(Permission.DeleteMember, "delete members")),
):
    member = await member_service.deactivate_member(session, actor, member_id)
    background_tasks.add_task(
        log_activity, action="MEMBER_DEACTIVATED", actor=actor, subject=member.email
    )
    return member_service.to_member_read(member)
