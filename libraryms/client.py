# libraryms/client.py

"""
Async HTTP client for the LibraryMS API.

    async with httpx.AsyncClient(base_url="http://localhost:8000") as http:
        library = LibraryClient(http)
        await library.session.sign_in("librarian@library.edu", "password123")
        await library.borrow(member_id, book_id)

Errors come back as the same ``LibraryError`` classes the server raised;
connection problems surface as ``TransportError``. Nothing is retried.
"""

from datetime import datetime, timedelta
from typing import Any, List, Optional

import httpx
from loguru import logger

from libraryms.core.errors import LibraryError, NotAuthenticated, TransportError, error_from_payload
from libraryms.models.actor import Actor
from libraryms.models.enums import UserRole
from libraryms.services.session_service import AuthGrant, IdentitySession


async def _call(http: httpx.AsyncClient, method: str, url: str, token: Optional[str] = None, **kwargs) -> Any:
    headers = kwargs.pop("headers", {})
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = await http.request(method, url, headers=headers, **kwargs)
    except httpx.HTTPError as exc:
        logger.warning("{} {} failed: {}", method, url, exc)
        raise TransportError() from exc

    if response.status_code == 204:
        return None

    try:
        body = response.json()
    except ValueError:
        body = None

    if response.is_success:
        return body

    if isinstance(body, dict) and "error" in body:
        raise error_from_payload(body)
    if response.status_code == 401:
        raise NotAuthenticated()
    if response.status_code >= 500:
        raise TransportError(f"Server error ({response.status_code})")

    detail = body.get("detail") if isinstance(body, dict) else None
    error = LibraryError(str(detail) if detail else f"Request failed ({response.status_code})")
    error.status_code = response.status_code
    raise error


def _grant_from_login(body: dict) -> AuthGrant:
    expires_at = None
    if body.get("expires_in"):
        expires_at = datetime.utcnow() + timedelta(seconds=int(body["expires_in"]))
    return AuthGrant(
        actor=Actor.from_dict(body["actor"]),
        access_token=body["access_token"],
        expires_at=expires_at,
    )


class HttpAuthBackend:
    """``AuthBackend`` over /api/auth."""

    def __init__(self, http: httpx.AsyncClient, prefix: str = "/api/auth"):
        self.http = http
        self.prefix = prefix

    async def sign_in(self, email: str, password: str) -> AuthGrant:
        body = await _call(
            self.http, "POST", f"{self.prefix}/login",
            json={"email": email, "password": password},
        )
        return _grant_from_login(body)

    async def sign_up(self, email: str, password: str, full_name: str, role: UserRole) -> AuthGrant:
        body = await _call(
            self.http, "POST", f"{self.prefix}/signup",
            json={
                "email": email,
                "password": password,
                "full_name": full_name,
                "role": UserRole(role).value,
            },
        )
        return _grant_from_login(body)

    async def sign_out(self, access_token: Optional[str]) -> None:
        await _call(self.http, "POST", f"{self.prefix}/logout", token=access_token)


class LibraryClient:

    def __init__(self, http: httpx.AsyncClient, session: Optional[IdentitySession] = None):
        self.http = http
        self.session = session or IdentitySession(HttpAuthBackend(http))

    async def request(self, method: str, url: str, **kwargs) -> Any:
        token = self.session.access_token
        if token is None:
            raise NotAuthenticated()
        try:
            return await _call(self.http, method, url, token=token, **kwargs)
        except NotAuthenticated:
            # server no longer accepts the token: drop the local identity too
            await self.session.sign_out()
            raise

    # ---------------- books ----------------
    async def list_books(self, search: Optional[str] = None, category: Optional[str] = None) -> List[dict]:
        params = {k: v for k, v in {"search": search, "category": category}.items() if v}
        return await self.request("GET", "/api/books", params=params)

    # ---------------- blacklist ----------------
    async def blacklist(self, member_id, reason: str) -> dict:
        return await self.request(
            "POST", "/api/blacklist", json={"member_id": str(member_id), "reason": reason}
        )

    async def toggle_blacklist(self, entry_id) -> dict:
        return await self.request("POST", f"/api/blacklist/{entry_id}/toggle")

    async def is_blacklisted(self, member_id) -> bool:
        body = await self.request("GET", f"/api/blacklist/members/{member_id}")
        return bool(body["is_blacklisted"])

    # ---------------- circulation ----------------
    async def borrow(self, member_id, book_id, due_date: Optional[datetime] = None, price: Optional[float] = None) -> dict:
        payload = {"member_id": str(member_id), "book_id": str(book_id)}
        if due_date is not None:
            payload["due_date"] = due_date.isoformat()
        if price is not None:
            payload["price"] = price
        return await self.request("POST", "/api/transactions/borrow", json=payload)

    async def return_book(self, transaction_id) -> dict:
        return await self.request("POST", f"/api/transactions/{transaction_id}/return")

    async def list_transactions(self, **filters) -> List[dict]:
        params = {k: v for k, v in filters.items() if v is not None}
        return await self.request("GET", "/api/transactions", params=params)

    async def recompute_overdue(self) -> int:
        body = await self.request("POST", "/api/transactions/recompute-overdue")
        return body["transitioned"]
