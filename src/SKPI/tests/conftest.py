# src/SKPI/tests/conftest.py
from __future__ import annotations

import os
import sys
import logging
import uuid
from datetime import datetime, time, timedelta, timezone
from typing import Any, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("TESTING", "1")

from SKPI.db.base import Base  # noqa: E402
from SKPI.db.models import (  # noqa: E402
    FeedbackResponse,
    FeedbackTemplate,
    Group,
    Lesson,
    LessonResult,
    LESSON_TYPE_REGULAR,
    Parent,
    ScheduleEntry,
    Student,
    StudyPlan,
    Teacher,
    TeacherWorkload,
    User,
    UserRole,
)

# Fixed "now" for anything windowed or scheduled
NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


# =========================
# Logging -> stdout
# =========================
@pytest.fixture(scope="session", autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    if not any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout
        for h in root.handlers
    ):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(os.getenv("TEST_LOG_LEVEL", "INFO").upper())


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session", autouse=True)
def anyio_backend():
    return "asyncio"


# ==============================================================
# Database: in-memory SQLite shared by every session of a test
# ==============================================================
@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


# ==============================================================
# Data builders
# ==============================================================
def rating_question(qid: str, metric: str, *, qtype: str = "RATING_1_5", **extra: Any) -> dict:
    q = {"id": qid, "type": qtype, "question": f"Question {qid}", "kpiMetric": metric}
    q.update(extra)
    return q


class Seed:
    """Builds rows through relationships so loaded collections stay in sync."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._n = 0

    async def _add(self, obj):
        self.session.add(obj)
        await self.session.flush()
        return obj

    def _email(self, prefix: str) -> str:
        self._n += 1
        return f"{prefix}{self._n}@school.test"

    async def user(self, role: UserRole, first_name: str = "Alex", last_name: str = "Smith") -> User:
        return await self._add(
            User(first_name=first_name, last_name=last_name, email=self._email(role.value.lower()), role=role)
        )

    async def teacher(
        self,
        first_name: str = "Maria",
        last_name: str = "Ivanova",
        *,
        workloads: tuple[tuple[float, float], ...] = (),
        schedule_entries: int = 0,
    ) -> Teacher:
        user = await self.user(UserRole.TEACHER, first_name, last_name)
        teacher = Teacher(user=user, workloads=[], study_plans=[], schedule_entries=[])
        for standard, actual in workloads:
            teacher.workloads.append(
                TeacherWorkload(academic_year="2024-2025", standard_hours=standard, actual_hours=actual)
            )
        for day in range(schedule_entries):
            teacher.schedule_entries.append(
                ScheduleEntry(day_of_week=day % 5 + 1, start_time=time(9, 0), end_time=time(9, 45))
            )
        return await self._add(teacher)

    async def group_for(self, teacher: Teacher, *, students: int = 0, name: str = "7A") -> tuple[StudyPlan, list[Student]]:
        group = Group(name=name, students=[], study_plans=[])
        plan = StudyPlan(name=f"Math {name}", teacher=teacher, group=group)
        await self._add(plan)
        members = [await self.student(group) for _ in range(students)]
        return plan, members

    async def student(self, group: Optional[Group] = None) -> Student:
        user = await self.user(UserRole.STUDENT, "Student", str(self._n))
        return await self._add(Student(user=user, group=group, parents=[]))

    async def parent(self, student: Student) -> Parent:
        user = await self.user(UserRole.PARENT, "Parent", str(self._n))
        return await self._add(Parent(user=user, student=student))

    async def template(
        self,
        name: str,
        questions: list[dict],
        *,
        kpi_metrics: Optional[list[str]] = None,
        has_kpi_questions: bool = True,
    ) -> FeedbackTemplate:
        metrics = kpi_metrics
        if metrics is None:
            metrics = sorted({q["kpiMetric"] for q in questions if q.get("kpiMetric")})
        return await self._add(
            FeedbackTemplate(
                name=name,
                title=name.replace("_", " ").title(),
                questions=questions,
                has_kpi_questions=has_kpi_questions,
                kpi_metrics=metrics,
            )
        )

    async def response(
        self,
        user: User,
        template: FeedbackTemplate,
        answers: dict,
        *,
        created_at: Optional[datetime] = None,
        period: Optional[str] = None,
        completed: bool = True,
    ) -> FeedbackResponse:
        created = created_at or NOW - timedelta(days=1)
        return await self._add(
            FeedbackResponse(
                user_id=user.id,
                template_id=template.id,
                answers=answers,
                is_completed=completed,
                submitted_at=created if completed else None,
                period=period,
                created_at=created,
                updated_at=created,
            )
        )

    async def lesson(self, plan: StudyPlan, *, lesson_type: str = LESSON_TYPE_REGULAR, deleted: bool = False) -> Lesson:
        return await self._add(
            Lesson(
                study_plan_id=plan.id,
                name="Lesson",
                lesson_type=lesson_type,
                lesson_date=NOW.date(),
                deleted_at=NOW if deleted else None,
            )
        )

    async def result(
        self,
        lesson: Lesson,
        student: Student,
        *,
        attendance: Optional[bool] = None,
        score: Optional[int] = None,
    ) -> LessonResult:
        return await self._add(
            LessonResult(lesson_id=lesson.id, student_id=student.id, attendance=attendance, lesson_score=score)
        )


@pytest.fixture
def seed(session) -> Seed:
    return Seed(session)


# ==============================================================
# HTTP client against the app (no network)
# ==============================================================
@pytest.fixture
async def client(session_factory):
    from SKPI.db.session import get_db
    from SKPI.main import create_app

    app = create_app(session_factory=session_factory, clock=fixed_clock, start_scheduler=False)

    async def _override_get_db():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        c.app = app
        yield c


@pytest.fixture
def new_id() -> str:
    return str(uuid.uuid4())
