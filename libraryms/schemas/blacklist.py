from pydantic import BaseModel
from typing import Optional
from uuid import UUID
from datetime import datetime


class BlacklistCreate(BaseModel):
    member_id: UUID
    reason: str


class BlacklistRead(BaseModel):
    id: UUID
    member_id: UUID
    reason: str
    blacklisted_by: UUID
    blacklisted_at: datetime
    is_active: bool

    # joined for display
    member_name: Optional[str] = None
    blacklisted_by_name: Optional[str] = None

    class Config:
        from_attributes = True


class BlacklistStatus(BaseModel):
    member_id: UUID
    is_blacklisted: bool
