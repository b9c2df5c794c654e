from pydantic import BaseModel
from typing import Optional
from uuid import UUID
from datetime import datetime


class DashboardStats(BaseModel):
    total_books: int
    total_copies: int
    available_books: int
    borrowed_books: int
    total_members: int
    overdue_books: int


class ActivityRead(BaseModel):
    id: UUID
    action: str
    subject: Optional[str] = None
    actor_name: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class NotificationRead(BaseModel):
    message: str
    severity: str
    title: Optional[str] = None
    created_at: datetime
