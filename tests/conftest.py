import os
import random
import string
import tempfile

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# ------------------------------------------------------------------
# FORCE TESTING MODE
# This must be done BEFORE importing libraryms so config.py and
# database.py pick up a throwaway SQLite file instead of Postgres.
# ------------------------------------------------------------------
_DB_FILE = os.path.join(tempfile.mkdtemp(prefix="libraryms-"), "test.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_FILE}"
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JOB_SECRET"] = "cron-secret"
os.environ.pop("REDIS_URL", None)

from libraryms.main import app  # noqa: E402
from libraryms.core.database import AsyncSessionLocal, drop_db, init_db  # noqa: E402
from libraryms.models.actor import Actor  # noqa: E402
from libraryms.models.book import Book  # noqa: E402
from libraryms.models.enums import BookStatus, UserRole  # noqa: E402
from libraryms.services.auth_service import create_profile  # noqa: E402
from libraryms.services.notification_service import get_notifier  # noqa: E402

PASSWORD = "password123"


def random_str(prefix=""):
    return f"{prefix}{''.join(random.choices(string.ascii_lowercase + string.digits, k=6))}"


# ------------------------------------------------------------------
# Fresh schema for every test
# ------------------------------------------------------------------
@pytest_asyncio.fixture(autouse=True)
async def fresh_db():
    await drop_db()
    await init_db()
    get_notifier().clear()
    yield


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest_asyncio.fixture
async def db_session():
    async with AsyncSessionLocal() as session:
        yield session


# ------------------------------------------------------------------
# Builders
# ------------------------------------------------------------------
async def make_profile(session, role=UserRole.Student, password=PASSWORD, name=None):
    profile = await create_profile(
        session,
        full_name=name or f"{role.value.title()} {random_str()}",
        email=f"{random_str(role.value)}@library.edu",
        role=role,
        password=password,
    )
    return profile


async def make_actor(session, role=UserRole.Librarian) -> Actor:
    return Actor.from_profile(await make_profile(session, role=role))


async def make_book(session, copies=1, available=None, status=BookStatus.Available, title=None):
    book = Book(
        title=title or f"Book {random_str()}",
        author="Test Author",
        isbn=random_str("978"),
        copies=copies,
        available_copies=copies if available is None else available,
        status=status,
    )
    session.add(book)
    await session.commit()
    await session.refresh(book)
    return book


async def login(client, profile, password=PASSWORD) -> dict:
    res = await client.post("/api/auth/login", json={"email": profile.email, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest_asyncio.fixture
async def librarian(db_session):
    return await make_profile(db_session, role=UserRole.Librarian, name="Head Librarian")


@pytest_asyncio.fixture
async def librarian_headers(client, librarian):
    return await login(client, librarian)
