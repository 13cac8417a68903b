from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from SKPI.db.base import Base, UUIDMixin, SoftDeleteMixin, GUID

LESSON_TYPE_REGULAR = "REGULAR"
LESSON_TYPE_CONTROL_WORK = "CONTROL_WORK"


class Lesson(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "lessons"

    study_plan_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("study_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False, default="")
    lesson_type: Mapped[str] = mapped_column(sa.String(32), nullable=False, default=LESSON_TYPE_REGULAR)
    lesson_date: Mapped[Optional[date]] = mapped_column(sa.Date)

    study_plan: Mapped["StudyPlan"] = relationship("StudyPlan")


class LessonResult(UUIDMixin, SoftDeleteMixin, Base):
    __tablename__ = "lesson_results"

    lesson_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # None = not marked yet
    attendance: Mapped[Optional[bool]] = mapped_column(sa.Boolean)
    lesson_score: Mapped[Optional[int]] = mapped_column(sa.SmallInteger)

    lesson: Mapped["Lesson"] = relationship("Lesson")
