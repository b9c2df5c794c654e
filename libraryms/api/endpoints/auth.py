# libraryms/api/endpoints/auth.py

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.api.deps import get_current_actor, get_db_session, get_token_payload
from libraryms.core.config import settings
from libraryms.core.rate_limiter import limiter
from libraryms.models.actor import Actor
from libraryms.schemas.auth import ActorRead, LoginRequest, SignUpRequest, TokenWithActor
from libraryms.services.audit_service import log_activity
from libraryms.services.auth_service import (
    actor_read,
    authenticate,
    create_login_response,
    revoke_token,
    sign_up,
)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


# -------------------------------------------------------------------
# SIGN UP (student / public)
# -------------------------------------------------------------------
@router.post("/signup", response_model=TokenWithActor, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def signup(
    request: Request,
    payload: SignUpRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
):
    profile = await sign_up(
        session,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        role=payload.role,
    )
    response = create_login_response(profile)

    background_tasks.add_task(
        log_activity,
        action="MEMBER_SIGNED_UP",
        actor=Actor.from_profile(profile),
        subject=profile.email,
    )
    return response


# -------------------------------------------------------------------
# LOGIN
# -------------------------------------------------------------------
@router.post("/login", response_model=TokenWithActor)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    payload: LoginRequest,
    session: AsyncSession = Depends(get_db_session),
):
    profile = await authenticate(session, payload.email, payload.password)
    return create_login_response(profile)


# -------------------------------------------------------------------
# LOGOUT (revokes the presented token)
# -------------------------------------------------------------------
@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    payload: dict = Depends(get_token_payload),
    session: AsyncSession = Depends(get_db_session),
):
    await revoke_token(session, payload)
    return None


# -------------------------------------------------------------------
# WHO AM I
# -------------------------------------------------------------------
@router.get("/me", response_model=ActorRead)
async def me(actor: Actor = Depends(get_current_actor)):
    return actor_read(actor)
