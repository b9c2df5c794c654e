# libraryms/models/actor.py

from dataclasses import dataclass
from typing import Any, Mapping
import uuid

from libraryms.models.enums import UserRole
from libraryms.models.profile import Profile


@dataclass(frozen=True)
class Actor:
    """
    The authenticated principal behind a request or a client session.
    The role is resolved once, when the actor is built, and never again.
    """

    id: uuid.UUID
    email: str
    display_name: str
    role: UserRole

    @classmethod
    def from_profile(cls, profile: Profile) -> "Actor":
        return cls(
            id=profile.id,
            email=profile.email,
            display_name=profile.full_name,
            role=UserRole(profile.role),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Actor":
        return cls(
            id=uuid.UUID(str(data["id"])),
            email=data["email"],
            display_name=data.get("display_name") or data.get("full_name") or "User",
            role=UserRole(data["role"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role.value,
        }
