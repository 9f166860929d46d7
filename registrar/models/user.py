from datetime import datetime
from enum import Enum

from beanie import Document, Indexed
from pydantic import Field


class UserRole(str, Enum):
    STUDENT = "student"
    CASHIER = "cashier"
    REGISTRAR_STAFF = "registrar_staff"
    REGISTRAR_ADMIN = "registrar_admin"


STAFF_ROLES = (UserRole.REGISTRAR_STAFF, UserRole.REGISTRAR_ADMIN)


class User(Document):
    google_sub: Indexed(str, unique=True)
    email: str
    name: str = ""
    picture: str | None = None
    role: UserRole = UserRole.STUDENT
    student_number: str | None = None  # university id, students only
    session_version: int = 0
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
