from __future__ import annotations

import uuid
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from SKPI.db.base import Base, UUIDMixin, GUID


class Teacher(UUIDMixin, Base):
    __tablename__ = "teachers"

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )

    user: Mapped["User"] = relationship("User")
    workloads: Mapped[List["TeacherWorkload"]] = relationship(
        "TeacherWorkload", back_populates="teacher", cascade="all, delete-orphan"
    )
    study_plans: Mapped[List["StudyPlan"]] = relationship("StudyPlan", back_populates="teacher")
    schedule_entries: Mapped[List["ScheduleEntry"]] = relationship("ScheduleEntry", back_populates="teacher")


class TeacherWorkload(UUIDMixin, Base):
    __tablename__ = "teacher_workloads"

    teacher_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    academic_year: Mapped[Optional[str]] = mapped_column(sa.String(16))
    standard_hours: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0)
    actual_hours: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0)

    teacher: Mapped["Teacher"] = relationship("Teacher", back_populates="workloads")
