from datetime import timedelta

import pytest

from sqlmodel import select

from conftest import PASSWORD, login, make_profile, random_str
from libraryms.core.security import create_access_token, decode_token
from libraryms.models.audit import RevokedToken
from libraryms.models.enums import UserRole


@pytest.mark.asyncio
async def test_signup_returns_token_and_actor(client):
    email = f"{random_str('reader')}@library.edu"
    res = await client.post("/api/auth/signup", json={
        "email": email,
        "password": PASSWORD,
        "full_name": "New Reader",
        "role": "student",
    })
    assert res.status_code == 201, res.text

    body = res.json()
    assert body["token_type"] == "bearer"
    assert body["actor"]["email"] == email
    assert body["actor"]["role"] == "student"
    assert body["actor"]["permissions"] == ["view_books", "view_members"]


@pytest.mark.asyncio
async def test_signup_defaults_to_public(client):
    res = await client.post("/api/auth/signup", json={
        "email": f"{random_str()}@library.edu",
        "password": PASSWORD,
        "full_name": "Walk-in Reader",
    })
    assert res.status_code == 201
    assert res.json()["actor"]["role"] == "public"


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["librarian", "faculty"])
async def test_signup_cannot_self_assign_staff_roles(client, role):
    res = await client.post("/api/auth/signup", json={
        "email": f"{random_str()}@library.edu",
        "password": PASSWORD,
        "full_name": "Sneaky",
        "role": role,
    })
    assert res.status_code == 422
    assert res.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_signup_errors(client, db_session):
    existing = await make_profile(db_session)

    dup = await client.post("/api/auth/signup", json={
        "email": existing.email.upper(),
        "password": PASSWORD,
        "full_name": "Copycat",
    })
    assert dup.status_code == 409
    assert dup.json()["error"] == "email_in_use"

    weak = await client.post("/api/auth/signup", json={
        "email": f"{random_str()}@library.edu",
        "password": "123",
        "full_name": "Weak",
    })
    assert weak.status_code == 422
    assert weak.json()["error"] == "weak_password"


@pytest.mark.asyncio
async def test_role_does_not_come_from_email(client, db_session):
    # an address that "looks" like staff still gets the stored role
    res = await client.post("/api/auth/signup", json={
        "email": f"librarian.{random_str()}@library.edu",
        "password": PASSWORD,
        "full_name": "Not A Librarian",
    })
    assert res.json()["actor"]["role"] == "public"


@pytest.mark.asyncio
async def test_login_and_me(client, librarian):
    headers = await login(client, librarian)

    me = await client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["role"] == "librarian"
    assert "delete_member" in me.json()["permissions"]


@pytest.mark.asyncio
async def test_login_rejects_bad_credentials(client, db_session):
    member = await make_profile(db_session)
    desk_only = await make_profile(db_session, password=None)

    for email, password in [
        (member.email, "wrong-password"),
        ("nobody@library.edu", PASSWORD),
        (desk_only.email, PASSWORD),
    ]:
        res = await client.post("/api/auth/login", json={"email": email, "password": password})
        assert res.status_code == 401
        assert res.json() == {"error": "invalid_credentials", "detail": "Invalid email or password"}


@pytest.mark.asyncio
async def test_logout_revokes_token(client, librarian):
    headers = await login(client, librarian)

    res = await client.post("/api/auth/logout", headers=headers)
    assert res.status_code == 204

    me = await client.get("/api/auth/me", headers=headers)
    assert me.status_code == 401


@pytest.mark.asyncio
async def test_revoked_token_is_recorded(client, db_session, librarian):
    headers = await login(client, librarian)
    jti = decode_token(headers["Authorization"].split()[1])["jti"]

    assert (await client.post("/api/auth/logout", headers=headers)).status_code == 204

    row = (await db_session.execute(select(RevokedToken).where(RevokedToken.jti == jti))).scalar_one()
    assert row.profile_id == librarian.id
    assert row.revoked_at.tzinfo is None
    assert row.expires_at > row.revoked_at


@pytest.mark.asyncio
async def test_missing_expired_and_forged_tokens(client, librarian):
    assert (await client.get("/api/auth/me")).status_code == 401

    expired = create_access_token(
        subject=str(librarian.id),
        data={"role": "librarian"},
        expires_delta=timedelta(seconds=-5),
    )
    res = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert res.status_code == 401

    forged = await client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert forged.status_code == 401


@pytest.mark.asyncio
async def test_deactivated_member_loses_access(client, db_session, librarian_headers):
    member = await make_profile(db_session, role=UserRole.Student)
    headers = await login(client, member)

    res = await client.delete(f"/api/members/{member.id}", headers=librarian_headers)
    assert res.status_code == 200
    assert res.json()["is_active"] is False

    assert (await client.get("/api/auth/me", headers=headers)).status_code == 401
    again = await client.post("/api/auth/login", json={"email": member.email, "password": PASSWORD})
    assert again.status_code == 401


@pytest.mark.asyncio
async def test_navigation_is_role_based(client, db_session):
    student = await make_profile(db_session, role=UserRole.Student)
    headers = await login(client, student)

    res = await client.get("/api/navigation", headers=headers)
    assert res.status_code == 200
    assert [item["id"] for item in res.json()] == ["dashboard", "books", "members", "history"]
