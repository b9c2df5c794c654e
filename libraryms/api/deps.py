# libraryms/api/deps.py

from typing import AsyncGenerator, Union

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.core.database import get_session
from libraryms.core.errors import NotAuthenticated
from libraryms.core.permissions import Permission, require_permission
from libraryms.core.security import decode_token
from libraryms.models.actor import Actor
from libraryms.services.auth_service import resolve_actor
from libraryms.services.transaction_service import TransactionService, get_transaction_service


# ------------------------------------------------------------
# HTTP Bearer Authentication
# ------------------------------------------------------------
bearer_scheme = HTTPBearer(auto_error=False)


# ------------------------------------------------------------
# DB Session
# ------------------------------------------------------------
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


# ------------------------------------------------------------
# Decoded JWT of the caller
# ------------------------------------------------------------
async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise NotAuthenticated("Session expired. Please sign in again.")
    except jwt.PyJWTError:
        raise NotAuthenticated("Could not validate credentials")


# ------------------------------------------------------------
# Current actor (role fixed at sign-in, carried by the token)
# ------------------------------------------------------------
async def get_current_actor(
    payload: dict = Depends(get_token_payload),
    session: AsyncSession = Depends(get_db_session),
) -> Actor:
    return await resolve_actor(session, payload)


# ------------------------------------------------------------
# Permission gate
# ------------------------------------------------------------
def permission_required(permission: Union[Permission, str], action: str = None):
    """
    Router-level check. Services check again, so a route that forgets this
    still cannot perform the action.
    """

    async def checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        return require_permission(actor, permission, action)

    return checker


def get_transactions() -> TransactionService:
    return get_transaction_service()
