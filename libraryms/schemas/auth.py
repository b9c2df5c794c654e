from pydantic import BaseModel, EmailStr
from typing import List, Optional
from uuid import UUID

from libraryms.models.enums import UserRole


# -------------------------------------------------------------------
# LOGIN REQUEST
# -------------------------------------------------------------------
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# -------------------------------------------------------------------
# SIGN-UP REQUEST (self-service: student / public)
# -------------------------------------------------------------------
class SignUpRequest(BaseModel):
    email: EmailStr
    password: str
    full_name: str
    role: UserRole = UserRole.Public

    class Config:
        json_schema_extra = {
            "examples": [
                {
                    "email": "student@library.edu",
                    "password": "password123",
                    "full_name": "Demo Student",
                    "role": "student"
                }
            ]
        }


# -------------------------------------------------------------------
# ACTOR (current identity + resolved permissions)
# -------------------------------------------------------------------
class ActorRead(BaseModel):
    id: UUID
    email: str
    display_name: str
    role: UserRole
    permissions: List[str] = []


# -------------------------------------------------------------------
# TOKEN + ACTOR (login response)
# -------------------------------------------------------------------
class TokenWithActor(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    actor: ActorRead


class NavItemRead(BaseModel):
    id: str
    label: str
