from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Optional

import sqlalchemy as sa
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from SKPI.db.base import Base, UUIDMixin, GUID, JSONB


class FeedbackTemplate(UUIDMixin, Base):
    __tablename__ = "feedback_templates"

    name: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False, default="")
    # list of question dicts as stored by the form builder (camelCase keys)
    questions: Mapped[List[dict]] = mapped_column(JSONB(), nullable=False, default=list)
    has_kpi_questions: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    kpi_metrics: Mapped[List[str]] = mapped_column(JSONB(), nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class FeedbackResponse(UUIDMixin, Base):
    """A submitted feedback form. Rows are never mutated after submission."""
    __tablename__ = "feedback_responses"

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("feedback_templates.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    answers: Mapped[dict[str, Any]] = mapped_column(JSONB(), nullable=False, default=dict)
    is_completed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, index=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    about_teacher_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("teachers.id", ondelete="SET NULL")
    )
    period: Mapped[Optional[str]] = mapped_column(sa.String(16), index=True)

    user: Mapped["User"] = relationship("User")
    template: Mapped["FeedbackTemplate"] = relationship("FeedbackTemplate")
