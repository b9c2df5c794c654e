# libraryms/services/blacklist_service.py

from typing import List, Optional, Set
import uuid

from loguru import logger
from sqlalchemy import not_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlmodel import select

from libraryms.core.database import backend_call
from libraryms.core.errors import NotFound, ValidationError
from libraryms.core.permissions import LIBRARIAN_TIER, require_permission
from libraryms.models.actor import Actor
from libraryms.models.blacklist import BlacklistEntry
from libraryms.models.profile import Profile
from libraryms.schemas.blacklist import BlacklistRead
from libraryms.services.member_service import get_member


def _as_uuid(value, what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f"{what} not found")


# ============================================================================
# ELIGIBILITY
# ============================================================================
async def is_blacklisted(session: AsyncSession, member_id) -> bool:
    """True iff at least one entry for the member is active. Count is irrelevant."""
    member_id = _as_uuid(member_id, "Member")
    async with backend_call(session, "check blacklist"):
        result = await session.execute(
            select(BlacklistEntry.id)
            .where(BlacklistEntry.member_id == member_id)
            .where(BlacklistEntry.is_active.is_(True))
            .limit(1)
        )
        return result.first() is not None


async def blacklisted_member_ids(session: AsyncSession) -> Set[uuid.UUID]:
    async with backend_call(session, "load blacklist"):
        result = await session.execute(
            select(BlacklistEntry.member_id)
            .where(BlacklistEntry.is_active.is_(True))
            .distinct()
        )
        return set(result.scalars().all())


# ============================================================================
# LEDGER
# ============================================================================
def _ledger_query():
    member = aliased(Profile)
    librarian = aliased(Profile)
    query = (
        select(BlacklistEntry, member.full_name, librarian.full_name)
        .join(member, member.id == BlacklistEntry.member_id, isouter=True)
        .join(librarian, librarian.id == BlacklistEntry.blacklisted_by, isouter=True)
    )
    return query, member


def _to_read(entry: BlacklistEntry, member_name, librarian_name) -> BlacklistRead:
    read = BlacklistRead.model_validate(entry)
    read.member_name = member_name or "Unknown Member"
    read.blacklisted_by_name = librarian_name or "Unknown Librarian"
    return read


async def list_entries(session: AsyncSession, search: Optional[str] = None) -> List[BlacklistRead]:
    query, member = _ledger_query()
    query = query.order_by(BlacklistEntry.blacklisted_at.desc())
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(member.full_name.ilike(pattern), BlacklistEntry.reason.ilike(pattern)))

    async with backend_call(session, "load blacklist"):
        result = await session.execute(query)
        rows = result.all()

    return [_to_read(*row) for row in rows]


async def read_entry(session: AsyncSession, entry_id) -> BlacklistRead:
    query, _ = _ledger_query()
    query = query.where(BlacklistEntry.id == _as_uuid(entry_id, "Blacklist entry"))

    async with backend_call(session, "load blacklist entry"):
        result = await session.execute(query.execution_options(populate_existing=True))
        row = result.first()
    if not row:
        raise NotFound("Blacklist entry not found")
    return _to_read(*row)


async def get_entry(session: AsyncSession, entry_id) -> BlacklistEntry:
    async with backend_call(session, "load blacklist entry"):
        result = await session.execute(
            select(BlacklistEntry)
            .where(BlacklistEntry.id == _as_uuid(entry_id, "Blacklist entry"))
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
    if not entry:
        raise NotFound("Blacklist entry not found")
    return entry


async def add_entry(session: AsyncSession, actor: Actor, member_id, reason: str) -> BlacklistEntry:
    require_permission(actor, LIBRARIAN_TIER, "manage the blacklist")

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Please provide a reason.")

    try:
        member = await get_member(session, member_id, include_inactive=True)
    except NotFound:
        raise ValidationError("Please select an existing member.")

    # several entries per member are fine; only "any active" matters
    entry = BlacklistEntry(
        member_id=member.id,
        reason=reason,
        blacklisted_by=actor.id,
    )
    session.add(entry)

    async with backend_call(session, "add member to blacklist"):
        await session.commit()
        await session.refresh(entry)

    logger.warning("Member {} blacklisted by {}: {}", member.email, actor.email, reason)
    return entry


async def toggle_active(session: AsyncSession, actor: Actor, entry_id) -> BlacklistEntry:
    require_permission(actor, LIBRARIAN_TIER, "manage the blacklist")

    entry_id = _as_uuid(entry_id, "Blacklist entry")

    # flip in the store so two concurrent toggles cannot both read the same state
    async with backend_call(session, "update blacklist status"):
        result = await session.execute(
            update(BlacklistEntry)
            .where(BlacklistEntry.id == entry_id)
            .values(is_active=not_(BlacklistEntry.is_active))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise NotFound("Blacklist entry not found")
        await session.commit()

    entry = await get_entry(session, entry_id)

    logger.info(
        "Blacklist entry {} {} by {}",
        entry.id, "re-activated" if entry.is_active else "lifted", actor.email,
    )
    return entry
