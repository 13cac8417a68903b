from __future__ import annotations

import uuid
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from SKPI.db.base import Base, UUIDMixin, SoftDeleteMixin, GUID


class Group(UUIDMixin, Base):
    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)

    students: Mapped[List["Student"]] = relationship("Student", back_populates="group")
    study_plans: Mapped[List["StudyPlan"]] = relationship("StudyPlan", back_populates="group")


class Student(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "students"

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("groups.id", ondelete="SET NULL"), index=True
    )

    user: Mapped["User"] = relationship("User")
    group: Mapped[Optional["Group"]] = relationship("Group", back_populates="students")
    parents: Mapped[List["Parent"]] = relationship("Parent", back_populates="student")


class Parent(UUIDMixin, Base):
    __tablename__ = "parents"

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )

    user: Mapped["User"] = relationship("User")
    student: Mapped["Student"] = relationship("Student", back_populates="parents")
