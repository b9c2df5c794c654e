# libraryms/api/endpoints/books.py

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from libraryms.api.deps import get_db_session, permission_required
from libraryms.core.permissions import Permission
from libraryms.models.actor import Actor
from libraryms.models.enums import BookStatus
from libraryms.schemas.book import BookCreate, BookRead, BookUpdate
from libraryms.services import book_service
from libraryms.services.audit_service import log_activity

router = APIRouter(prefix="/api/books", tags=["Books"])


# -------------------------------------------------------------------
# LIST / SEARCH
# -------------------------------------------------------------------
@router.get("", response_model=List[BookRead])
async def list_books(
    search: Optional[str] = Query(None, description="Title, author or ISBN"),
    category: Optional[str] = Query(None),
    book_status: Optional[BookStatus] = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
    _: Actor = Depends(permission_required(Permission.ViewBooks, "view books")),
):
    return await book_service.list_books(session, search=search, category=category, status=book_status)


@router.get("/{book_id}", response_model=BookRead)
async def get_book(
    book_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    _: Actor = Depends(permission_required(Permission.ViewBooks, "view books")),
):
    return await book_service.get_book(session, book_id)


# -------------------------------------------------------------------
# CREATE
# -------------------------------------------------------------------
@router.post("", response_model=BookRead, status_code=status.HTTP_201_CREATED)
async def create_book(
    data: BookCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(permission_required(Permission.AddBook, "add books")),
):
    book = await book_service.create_book(session, actor, data)
    background_tasks.add_task(
        log_activity,
        action="BOOK_ADDED",
        actor=actor,
        subject=book.title,
        details={"book_id": book.id, "copies": book.copies},
    )
    return book


# -------------------------------------------------------------------
# UPDATE
# -------------------------------------------------------------------
@router.put("/{book_id}", response_model=BookRead)
async def update_book(
    book_id: UUID,
    data: BookUpdate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(permission_required(Permission.EditBook, "edit books")),
):
    book = await book_service.update_book(session, actor, book_id, data)
    background_tasks.add_task(
        log_activity,
        action="BOOK_UPDATED",
        actor=actor,
        subject=book.title,
        details=data.model_dump(exclude_unset=True),
    )
    return book


# -------------------------------------------------------------------
# DELETE
# -------------------------------------------------------------------
@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(
    book_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(permission_required(Permission.DeleteBook, "delete books")),
):
    await book_service.delete_book(session, actor, book_id)
    background_tasks.add_task(
        log_activity, action="BOOK_DELETED", actor=actor, details={"book_id": book_id}
    )
    return None
