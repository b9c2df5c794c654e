from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, EmailStr
from libraryms.models.enums import UserRole


# ---------------------------------------------------------
# BASE
# ---------------------------------------------------------
class MemberBase(BaseModel):
    full_name: str
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None


# ---------------------------------------------------------
# CREATE MEMBER (librarian at the desk)
# ---------------------------------------------------------
class MemberCreate(MemberBase):
    role: UserRole = UserRole.Student
    password: Optional[str] = None   # without one the member cannot sign in


# ---------------------------------------------------------
# UPDATE MEMBER (role is fixed at creation)
# ---------------------------------------------------------
class MemberUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None


# ---------------------------------------------------------
# READ MEMBER (response)
# ---------------------------------------------------------
class MemberRead(MemberBase):
    id: UUID
    email: str
    role: UserRole
    is_active: bool
    can_sign_in: bool = False
    is_blacklisted: bool = False
    created_at: datetime

    class Config:
        from_attributes = True
