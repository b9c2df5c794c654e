# libraryms/services/session_service.py

"""
Client-side identity session.

One ``IdentitySession`` owns the current Actor for a client (a script, a
desk terminal, a test). It is the only writer of that state; everything
else reads it through ``current_actor`` / ``has_permission`` or listens
through ``subscribe``.

    UNAUTHENTICATED --sign_in/sign_up--> AUTHENTICATING --ok--> AUTHENTICATED
                                               |                    |
                                             error            sign_out / expiry
                                               v                    v
                                         UNAUTHENTICATED      UNAUTHENTICATED
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Protocol

from loguru import logger

from libraryms.core.errors import LibraryError, SessionBusy
from libraryms.core.permissions import has_permission as role_has_permission
from libraryms.models.actor import Actor
from libraryms.models.enums import UserRole


class SessionState(str, Enum):
    Unauthenticated = "unauthenticated"
    Authenticating = "authenticating"
    Authenticated = "authenticated"


@dataclass(frozen=True)
class AuthGrant:
    """What a backend hands back on a successful sign-in."""
    actor: Actor
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None   # naive UTC


class AuthBackend(Protocol):
    async def sign_in(self, email: str, password: str) -> AuthGrant: ...

    async def sign_up(
        self, email: str, password: str, full_name: str, role: UserRole
    ) -> AuthGrant: ...

    async def sign_out(self, access_token: Optional[str]) -> None: ...


Subscriber = Callable[[SessionState, Optional[Actor]], None]


class IdentitySession:

    def __init__(self, backend: AuthBackend, clock: Callable[[], datetime] = datetime.utcnow):
        self._backend = backend
        self._clock = clock
        self._state = SessionState.Unauthenticated
        self._grant: Optional[AuthGrant] = None
        self._subscribers: List[Subscriber] = []

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        self._expire_if_due()
        return self._state

    @property
    def access_token(self) -> Optional[str]:
        actor = self.current_actor()
        return self._grant.access_token if actor else None

    def current_actor(self) -> Optional[Actor]:
        self._expire_if_due()
        if self._state != SessionState.Authenticated or not self._grant:
            return None
        return self._grant.actor

    def has_permission(self, permission) -> bool:
        # role was fixed when the grant arrived; nothing is re-derived here
        return role_has_permission(self.current_actor(), permission)

    def _expire_if_due(self) -> None:
        if self._state != SessionState.Authenticated or not self._grant:
            return
        if self._grant.expires_at is not None and self._clock() >= self._grant.expires_at:
            logger.info("Session for {} expired", self._grant.actor.email)
            self._grant = None
            self._transition(SessionState.Unauthenticated)

    def _transition(self, state: SessionState) -> None:
        previous, self._state = self._state, state
        if previous == state:
            return
        if SessionState.Authenticated not in (previous, state):
            return

        actor = self._grant.actor if self._grant else None
        for callback in list(self._subscribers):
            try:
                callback(state, actor)
            except Exception:
                logger.exception("Session subscriber {!r} failed", callback)

    def _guard(self) -> None:
        if self._state == SessionState.Authenticating:
            raise SessionBusy()

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    async def sign_in(self, email: str, password: str) -> Actor:
        self._guard()
        return await self._authenticate(self._backend.sign_in(email, password))

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: str,
        role: UserRole = UserRole.Public,
    ) -> Actor:
        self._guard()
        return await self._authenticate(
            self._backend.sign_up(email, password, full_name, UserRole(role))
        )

    async def _authenticate(self, pending) -> Actor:
        # a new identity replaces the old one; drop it first
        if self._grant:
            self._grant = None
        self._transition(SessionState.Authenticating)
        try:
            grant = await pending
        except BaseException:
            self._transition(SessionState.Unauthenticated)
            raise

        self._grant = grant
        self._transition(SessionState.Authenticated)
        logger.info("Signed in as {} ({})", grant.actor.email, grant.actor.role.value)
        return grant.actor

    async def sign_out(self) -> None:
        self._guard()
        grant, self._grant = self._grant, None
        try:
            if grant is not None:
                await self._backend.sign_out(grant.access_token)
        except LibraryError as exc:
            logger.warning("Remote sign-out failed ({}); local session cleared", exc.code)
        finally:
            # local state goes regardless of what the backend said
            self._transition(SessionState.Unauthenticated)

    # ------------------------------------------------------------------
    # pub/sub
    # ------------------------------------------------------------------
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe
