from __future__ import annotations

import uuid
from datetime import time
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from SKPI.db.base import Base, UUIDMixin, SoftDeleteMixin, GUID


class StudyPlan(UUIDMixin, SoftDeleteMixin, Base):
    """A subject taught by one teacher to one group."""
    __tablename__ = "study_plans"

    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    teacher_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("groups.id", ondelete="SET NULL"), index=True
    )

    teacher: Mapped["Teacher"] = relationship("Teacher", back_populates="study_plans")
    group: Mapped[Optional["Group"]] = relationship("Group", back_populates="study_plans")


class ScheduleEntry(UUIDMixin, Base):
    __tablename__ = "schedule_entries"

    teacher_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    study_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("study_plans.id", ondelete="SET NULL")
    )
    day_of_week: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)  # 1 = Monday
    start_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    end_time: Mapped[Optional[time]] = mapped_column(sa.Time)

    teacher: Mapped["Teacher"] = relationship("Teacher", back_populates="schedule_entries")
