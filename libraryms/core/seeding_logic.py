from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.core.config import settings
from libraryms.core.database import AsyncSessionLocal
from libraryms.models.enums import UserRole
from libraryms.services.auth_service import create_profile, get_profile_by_email

# ----------------------------------------------------------------
# 1. DEFINE STATIC DATA
# ----------------------------------------------------------------

DEMO_PASSWORD = "password123"

DEMO_USERS = [
    {"email": "librarian@library.edu", "full_name": "Demo Librarian", "role": UserRole.Librarian},
    {"email": "faculty@library.edu", "full_name": "Demo Faculty", "role": UserRole.Faculty},
    {"email": "student@library.edu", "full_name": "Demo Student", "role": UserRole.Student},
]


# ----------------------------------------------------------------
# 2. SEEDING FUNCTIONS
# ----------------------------------------------------------------

async def seed_all():
    """Master function to run all seeding logic."""
    async with AsyncSessionLocal() as session:
        await seed_librarian(session)
        if settings.SEED_DEMO_USERS:
            await seed_demo_users(session)


async def seed_librarian(session: AsyncSession):
    if not settings.LIBRARIAN_EMAIL or not settings.LIBRARIAN_PASSWORD:
        logger.warning("Missing librarian credentials in settings.")
        return

    existing = await get_profile_by_email(session, settings.LIBRARIAN_EMAIL)
    if existing:
        logger.info("Librarian already exists. Skipping.")
        return

    logger.info("Seeding librarian: {}", settings.LIBRARIAN_EMAIL)
    await create_profile(
        session,
        full_name=settings.LIBRARIAN_NAME or "Head Librarian",
        email=settings.LIBRARIAN_EMAIL,
        role=UserRole.Librarian,
        password=settings.LIBRARIAN_PASSWORD,
    )
    logger.success("👤 Librarian created.")


async def seed_demo_users(session: AsyncSession):
    created = 0
    for user in DEMO_USERS:
        if await get_profile_by_email(session, user["email"]):
            continue
        await create_profile(session, password=DEMO_PASSWORD, **user)
        created += 1

    if created:
        logger.success("👥 {} demo account(s) created (password: {}).", created, DEMO_PASSWORD)
