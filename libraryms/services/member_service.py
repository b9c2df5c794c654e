# libraryms/services/member_service.py

from typing import Iterable, List, Optional
import uuid

from loguru import logger
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from libraryms.core.database import backend_call
from libraryms.core.errors import EmailInUse, NotFound, ValidationError
from libraryms.core.permissions import Permission, require_permission
from libraryms.models.actor import Actor
from libraryms.models.enums import TransactionStatus, UserRole
from libraryms.models.profile import Profile
from libraryms.models.transaction import Transaction
from libraryms.schemas.user import MemberCreate, MemberRead, MemberUpdate
from libraryms.services.auth_service import create_profile, get_profile_by_email, normalize_email


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound("Member not found")


def to_member_read(profile: Profile, blacklisted_ids: Iterable[uuid.UUID] = ()) -> MemberRead:
    read = MemberRead.model_validate(profile)
    read.can_sign_in = profile.password_hash is not None
    read.is_blacklisted = profile.id in set(blacklisted_ids)
    return read


# ============================================================================
# QUERIES
# ============================================================================
async def list_members(
    session: AsyncSession,
    search: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Profile]:
    # librarians run the desk; they are not borrowers
    query = select(Profile).where(Profile.role != UserRole.Librarian)

    if not include_inactive:
        query = query.where(Profile.is_active.is_(True))

    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(Profile.full_name.ilike(pattern), Profile.email.ilike(pattern)))

    async with backend_call(session, "load members"):
        result = await session.execute(query.order_by(Profile.full_name))
        return result.scalars().all()


async def get_member(
    session: AsyncSession,
    member_id,
    include_inactive: bool = False,
) -> Profile:
    async with backend_call(session, "load member"):
        result = await session.execute(
            select(Profile)
            .where(Profile.id == _as_uuid(member_id))
            .execution_options(populate_existing=True)
        )
        profile = result.scalar_one_or_none()

    if not profile or (not profile.is_active and not include_inactive):
        raise NotFound("Member not found")
    return profile


async def count_members(session: AsyncSession) -> int:
    async with backend_call(session, "count members"):
        result = await session.execute(
            select(func.count(Profile.id))
            .where(Profile.role != UserRole.Librarian)
            .where(Profile.is_active.is_(True))
        )
        return result.scalar_one()


async def count_open_loans(session: AsyncSession, member_id: uuid.UUID) -> int:
    async with backend_call(session, "count loans"):
        result = await session.execute(
            select(func.count(Transaction.id))
            .where(Transaction.member_id == member_id)
            .where(Transaction.status != TransactionStatus.Completed)
        )
        return result.scalar_one()


# ============================================================================
# COMMANDS
# ============================================================================
async def create_member(session: AsyncSession, actor: Actor, data: MemberCreate) -> Profile:
    require_permission(actor, Permission.AddMember, "add members")

    profile = await create_profile(
        session,
        full_name=data.full_name,
        email=data.email,
        role=data.role,
        password=data.password,
        phone=data.phone,
        address=data.address,
    )
    logger.info("Member {} added by {}", profile.email, actor.email)
    return profile


async def update_member(
    session: AsyncSession,
    actor: Actor,
    member_id,
    data: MemberUpdate,
) -> Profile:
    require_permission(actor, Permission.EditMember, "edit members")

    profile = await get_member(session, member_id)
    changes = data.model_dump(exclude_unset=True)

    if "email" in changes and changes["email"]:
        email = normalize_email(changes["email"])
        if email != profile.email:
            existing = await get_profile_by_email(session, email)
            if existing:
                raise EmailInUse("Email already in use")
            profile.email = email

    if "full_name" in changes:
        full_name = (changes["full_name"] or "").strip()
        if not full_name:
            raise ValidationError("Full name cannot be empty")
        profile.full_name = full_name

    for field in ("phone", "address"):
        if field in changes:
            setattr(profile, field, changes[field])

    session.add(profile)
    async with backend_call(session, "update member"):
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise EmailInUse("Email already in use")
        await session.refresh(profile)

    return profile


async def deactivate_member(session: AsyncSession, actor: Actor, member_id) -> Profile:
    """
    Members are never removed: their loans and blacklist history point at them.
    Deleting one deactivates the profile instead.
    """
    require_permission(actor, Permission.DeleteMember, "delete members")

    profile = await get_member(session, member_id)
    if profile.id == actor.id:
        raise ValidationError("You cannot delete your own account")

    open_loans = await count_open_loans(session, profile.id)
    if open_loans:
        raise ValidationError(
            f"Member still has {open_loans} book(s) on loan; process the returns first"
        )

    profile.is_active = False
    session.add(profile)
    async with backend_call(session, "delete member"):
        await session.commit()
        await session.refresh(profile)

    logger.info("Member {} deactivated by {}", profile.email, actor.email)
    return profile
