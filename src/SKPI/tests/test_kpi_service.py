# src/SKPI/tests/test_kpi_service.py
from __future__ import annotations

import pytest
import sqlalchemy as sa

from SKPI.db.models import User, UserRole
from SKPI.errors import TeacherNotFoundError
from SKPI.schemas.kpi import MetricKey
from SKPI.services.kpi_service import KpiService
from SKPI.services.kpi_settings import KpiSettingsProvider, default_kpi_settings
from SKPI.services.notifications import LOW_KPI_WARNING

from conftest import NOW, fixed_clock, rating_question


class RecordingNotifier:
    def __init__(self, fail_for=None):
        self.sent = []
        self.fail_for = fail_for

    async def notify_low_kpi(self, notification):
        if notification.teacher_id == self.fail_for:
            raise RuntimeError("notification service unavailable")
        self.sent.append(notification)


class RecordingSink:
    def __init__(self):
        self.snapshots = []
        self.runs = []

    async def save_snapshot(self, snapshot):
        self.snapshots.append(snapshot)

    async def save_run_statistics(self, result):
        self.runs.append(result)


def only_workload_settings():
    settings = default_kpi_settings()
    for m in settings.metrics:
        m.is_active = m.key is MetricKey.WORKLOAD_COMPLIANCE
    settings.find(MetricKey.WORKLOAD_COMPLIANCE).weight = 100
    return settings


@pytest.mark.anyio
async def test_workload_only_teacher_scores_90(seed, session):
    teacher = await seed.teacher(workloads=((20, 18),))
    service = KpiService(session, KpiSettingsProvider(only_workload_settings()), clock=fixed_clock)

    details = await service.get_teacher_kpi_details(teacher.id)

    assert details.overall_score == 90
    workload = details.metrics["workload_compliance"]
    assert workload.value == 90 and workload.available and workload.is_active and workload.weight == 100
    assert details.metrics["teaching_quality"].is_active is False
    assert details.metrics["class_attendance"].available is False
    assert details.raw_data.total_workload_hours == 20
    assert details.raw_data.actual_workload_hours == 18
    assert details.raw_data.subjects_count == 0
    assert details.last_calculated == NOW


@pytest.mark.anyio
async def test_details_with_default_settings(seed, session):
    teacher = await seed.teacher("Anna", "Karimova", workloads=((20, 18),), schedule_entries=2)
    await seed.group_for(teacher)
    service = KpiService(session, KpiSettingsProvider(), clock=fixed_clock)

    details = await service.get_teacher_kpi_details(str(teacher.id))

    assert details.teacher.name == "Anna Karimova"
    assert details.teacher.id == str(teacher.id)
    assert set(details.metrics) == {k.value for k in MetricKey}
    assert details.raw_data.subjects_count == 1
    assert details.raw_data.schedules_count == 2
    # teaching quality 65 (w25), workload 90 (w15), control works 0 (w10), journal 0 (w5);
    # attendance, satisfaction and development are unavailable -> renormalized over 55
    expected = (65 * 0.25 + 90 * 0.15) / 55 * 100
    assert details.overall_score == round(expected)


@pytest.mark.anyio
async def test_unknown_teacher(session, new_id):
    service = KpiService(session)
    with pytest.raises(TeacherNotFoundError):
        await service.get_teacher_kpi_details(new_id)
    with pytest.raises(TeacherNotFoundError):
        await service.get_teacher_kpi_details("42")


@pytest.mark.anyio
async def test_feedback_operations_are_delegated(seed, session):
    teacher = await seed.teacher()
    _, students = await seed.group_for(teacher, students=10)
    survey = await seed.template("student_retention_survey", [rating_question("r1", "STUDENT_RETENTION")])
    for s in students:
        await seed.response(s.user, survey, {"r1": 5})

    service = KpiService(session, clock=fixed_clock)
    metrics = await service.aggregate_all_kpi_metrics_for_teacher(teacher.id)
    assert metrics["STUDENT_RETENTION"].score == 100
    assert metrics["STUDENT_RETENTION"].confidence == 1

    data = await service.calculate_teacher_kpi_from_feedback(teacher.id)
    assert data.student_retention == 100
    assert data.feedback_count == 10


@pytest.mark.anyio
async def test_recalculate_all_snapshots_and_notifies(seed, session):
    strong = await seed.teacher("Anna", "Karimova", workloads=((20, 20),))
    weak = await seed.teacher("Ivan", "Petrov", workloads=((20, 10),))
    notifier, sink = RecordingNotifier(), RecordingSink()
    service = KpiService(
        session,
        KpiSettingsProvider(only_workload_settings()),
        notifier=notifier,
        snapshot_sink=sink,
        clock=fixed_clock,
    )

    result = await service.recalculate_all(trigger="scheduled")

    assert result.trigger == "scheduled"
    assert result.total_teachers == 2
    assert result.success_count == 2
    assert result.error_count == 0
    assert result.finished_at == NOW
    assert sink.runs == [result]
    assert {s.teacher_id: s.overall_score for s in sink.snapshots} == {str(strong.id): 100, str(weak.id): 50}

    assert len(notifier.sent) == 1
    sent = notifier.sent[0]
    assert sent.teacher_id == str(weak.id)
    assert sent.user_id == str(weak.user_id)
    assert sent.type == LOW_KPI_WARNING
    assert sent.url == "/kpi"
    assert sent.current_score == 50 and sent.threshold == 70


@pytest.mark.anyio
async def test_notifications_respect_settings(seed, session):
    await seed.teacher(workloads=((20, 10),))
    settings = only_workload_settings()
    settings.auto_notifications = False
    notifier = RecordingNotifier()
    service = KpiService(session, KpiSettingsProvider(settings), notifier=notifier, snapshot_sink=RecordingSink())

    await service.recalculate_all()
    assert notifier.sent == []


@pytest.mark.anyio
async def test_one_teacher_failing_does_not_stop_the_run(seed, session):
    await seed.teacher("Anna", "Karimova", workloads=((20, 10),))
    broken = await seed.teacher("Ivan", "Petrov", workloads=((20, 10),))
    notifier = RecordingNotifier(fail_for=str(broken.id))
    service = KpiService(
        session, KpiSettingsProvider(only_workload_settings()), notifier=notifier, snapshot_sink=RecordingSink()
    )

    result = await service.recalculate_all()

    assert result.success_count == 1
    assert result.error_count == 1
    assert result.errors == [f"Teacher {broken.id}: notification service unavailable"]
    assert len(notifier.sent) == 1


@pytest.mark.anyio
async def test_teachers_overview_is_ranked_with_band_counts(seed, session):
    middle = await seed.teacher("Ivan", "Petrov", workloads=((20, 15),))
    low = await seed.teacher("Olga", "Sidorova", workloads=((20, 10),))
    top = await seed.teacher("Anna", "Karimova", workloads=((20, 20),))
    service = KpiService(session, KpiSettingsProvider(only_workload_settings()), clock=fixed_clock)

    overview = await service.get_teachers_kpi()

    assert [t.id for t in overview.teachers] == [str(top.id), str(middle.id), str(low.id)]
    assert [t.rank for t in overview.teachers] == [1, 2, 3]
    assert [t.overall_score for t in overview.teachers] == [100, 75, 50]
    assert [t.trend for t in overview.teachers] == [0, -2, -5]
    assert overview.teachers[0].name == "Anna Karimova"
    assert overview.teachers[0].metrics["workload_compliance"] == 100
    assert overview.teachers[0].metrics["class_attendance"] is None

    stats = overview.statistics
    assert stats.average_kpi == 75
    assert (stats.top_performers, stats.on_track, stats.needs_improvement) == (1, 1, 1)


@pytest.mark.anyio
async def test_teachers_overview_without_teachers(session):
    overview = await KpiService(session).get_teachers_kpi()
    assert overview.teachers == []
    assert overview.statistics.average_kpi == 0


class HalfWritingNotifier:
    """Writes a row, then fails, inside the teacher's unit of work."""

    def __init__(self, session):
        self.session = session
        self.calls = 0

    async def notify_low_kpi(self, notification):
        self.calls += 1
        self.session.add(
            User(first_name="Ghost", last_name="Row", email=f"ghost{self.calls}@school.test", role=UserRole.PARENT)
        )
        await self.session.flush()
        raise RuntimeError("mail server rejected the message")


@pytest.mark.anyio
async def test_failed_teacher_work_is_rolled_back_and_the_run_continues(seed, session):
    await seed.teacher("Anna", "Karimova", workloads=((20, 10),))
    await seed.teacher("Ivan", "Petrov", workloads=((20, 10),))
    notifier = HalfWritingNotifier(session)
    sink = RecordingSink()
    service = KpiService(
        session, KpiSettingsProvider(only_workload_settings()), notifier=notifier, snapshot_sink=sink
    )

    result = await service.recalculate_all()

    assert notifier.calls == 2
    assert result.error_count == 2
    assert len(sink.snapshots) == 2
    ghosts = await session.scalar(
        sa.select(sa.func.count()).select_from(User).where(User.email.like("ghost%"))
    )
    assert ghosts == 0
