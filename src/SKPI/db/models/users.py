from __future__ import annotations

import enum
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from SKPI.db.base import Base, UUIDMixin


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    PARENT = "PARENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class User(UUIDMixin, Base):
    __tablename__ = "users"

    first_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(120), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(sa.String(255), unique=True)
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role", native_enum=False, length=16),
        nullable=False,
        index=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
