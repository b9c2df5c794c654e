# libraryms/services/auth_service.py

from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from loguru import logger
import uuid
from datetime import datetime

from libraryms.core.config import settings
from libraryms.core.database import backend_call
from libraryms.core.errors import (
    EmailInUse,
    InvalidCredentials,
    NotAuthenticated,
    ValidationError,
    WeakPassword,
)
from libraryms.core.permissions import permissions_for
from libraryms.core.security import (
    create_access_token,
    hash_password,
    token_expiry,
    verify_password,
)
from libraryms.models.actor import Actor
from libraryms.models.audit import RevokedToken
from libraryms.models.enums import UserRole
from libraryms.models.profile import Profile
from libraryms.schemas.auth import ActorRead, TokenWithActor

# Roles anyone may pick when signing up; the rest are created by a librarian.
SELF_SIGNUP_ROLES = {UserRole.Student, UserRole.Public}


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_password(password: str) -> None:
    if not password or len(password) < settings.PASSWORD_MIN_LENGTH:
        raise WeakPassword(
            f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long"
        )
    if password.isspace():
        raise WeakPassword("Password cannot be blank")


# ============================================================================
# FETCH PROFILE
# ============================================================================
async def get_profile_by_email(session: AsyncSession, email: str) -> Profile | None:
    async with backend_call(session, "load profile"):
        result = await session.execute(
            select(Profile).where(Profile.email == normalize_email(email))
        )
        return result.scalar_one_or_none()


async def get_profile_by_id(session: AsyncSession, profile_id) -> Profile | None:
    if not isinstance(profile_id, uuid.UUID):
        try:
            profile_id = uuid.UUID(str(profile_id))
        except ValueError:
            return None
    async with backend_call(session, "load profile"):
        result = await session.execute(select(Profile).where(Profile.id == profile_id))
        return result.scalar_one_or_none()


# ============================================================================
# CREATE PROFILE
# ============================================================================
async def create_profile(
    session: AsyncSession,
    full_name: str,
    email: str,
    role: UserRole,
    password: str | None = None,
    phone: str | None = None,
    address: str | None = None,
) -> Profile:

    # ---- VALIDATION RULES ----
    full_name = (full_name or "").strip()
    if not full_name:
        raise ValidationError("Full name is required")

    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required")

    try:
        role = UserRole(role)
    except ValueError:
        raise ValidationError(f"Invalid role '{role}'. Allowed: {[r.value for r in UserRole]}")

    if password is not None:
        validate_password(password)

    if await get_profile_by_email(session, email):
        raise EmailInUse("Email already registered")

    profile = Profile(
        id=uuid.uuid4(),
        full_name=full_name,
        email=email,
        role=role,
        password_hash=hash_password(password) if password is not None else None,
        phone=phone,
        address=address,
    )

    session.add(profile)

    async with backend_call(session, "create profile"):
        try:
            await session.commit()
        except IntegrityError:
            # lost a race with another sign-up for the same email
            await session.rollback()
            raise EmailInUse("Email already registered")
        await session.refresh(profile)

    logger.info("Profile created: {} ({})", profile.email, profile.role.value)
    return profile


# ============================================================================
# SIGN UP (self-service)
# ============================================================================
async def sign_up(
    session: AsyncSession,
    email: str,
    password: str,
    full_name: str,
    role: UserRole = UserRole.Public,
) -> Profile:
    try:
        role = UserRole(role)
    except ValueError:
        raise ValidationError(f"Invalid role '{role}'")

    if role not in SELF_SIGNUP_ROLES:
        raise ValidationError(
            f"Role '{role.value}' cannot be self-assigned; ask a librarian to create the account"
        )

    validate_password(password)
    return await create_profile(session, full_name, email, role, password=password)


# ============================================================================
# AUTHENTICATE
# ============================================================================
async def authenticate(session: AsyncSession, email: str, password: str) -> Profile:
    profile = await get_profile_by_email(session, email)

    # same answer for unknown email, wrong password, desk-only or deactivated members
    if not profile or not profile.is_active:
        raise InvalidCredentials("Invalid email or password")
    if not verify_password(password, profile.password_hash):
        raise InvalidCredentials("Invalid email or password")

    return profile


def create_login_response(profile: Profile) -> TokenWithActor:
    actor = Actor.from_profile(profile)

    # role is resolved here, once, and travels inside the token
    token = create_access_token(
        subject=str(actor.id),
        data={"role": actor.role.value, "name": actor.display_name, "email": actor.email},
    )

    return TokenWithActor(
        access_token=token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        actor=actor_read(actor),
    )


def actor_read(actor: Actor) -> ActorRead:
    return ActorRead(
        id=actor.id,
        email=actor.email,
        display_name=actor.display_name,
        role=actor.role,
        permissions=sorted(permissions_for(actor.role)),
    )


# ============================================================================
# RESOLVE / REVOKE TOKENS
# ============================================================================
async def is_token_revoked(session: AsyncSession, jti: str) -> bool:
    async with backend_call(session, "check token"):
        return await session.get(RevokedToken, jti) is not None


async def resolve_actor(session: AsyncSession, payload: dict) -> Actor:
    """Turn a decoded token into an Actor, rejecting revoked or stale tokens."""
    if await is_token_revoked(session, payload["jti"]):
        raise NotAuthenticated("Session has been signed out")

    profile = await get_profile_by_id(session, payload.get("sub"))
    if not profile or not profile.is_active:
        raise NotAuthenticated("User not found")

    # role comes from the token; it was computed once at sign-in
    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise NotAuthenticated("Invalid token payload")

    return Actor(
        id=profile.id,
        email=profile.email,
        display_name=profile.full_name,
        role=role,
    )


async def revoke_token(session: AsyncSession, payload: dict) -> None:
    jti = payload["jti"]
    if await is_token_revoked(session, jti):
        return

    profile_id = payload.get("sub")
    session.add(RevokedToken(
        jti=jti,
        profile_id=uuid.UUID(profile_id) if profile_id else None,
        revoked_at=datetime.utcnow(),
        expires_at=token_expiry(payload),
    ))
    async with backend_call(session, "sign out"):
        try:
            await session.commit()
        except IntegrityError:
            # concurrent logout with the same token
            await session.rollback()
    logger.info("Token revoked for profile {}", profile_id)
