# src/SKPI/api/routers/kpi.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from SKPI.db.session import get_db
from SKPI.schemas.feedback import AggregationResult, FeedbackAggregationStats, KpiCalculationData
from SKPI.schemas.kpi import (
    KpiSettings,
    KpiSettingsOut,
    RecalculationResult,
    SchedulerStatus,
    TeacherKpiDetails,
    TeachersKpiOverview,
)
from SKPI.services.feedback_aggregation import FeedbackAggregationService
from SKPI.services.kpi_scheduler import KpiScheduler
from SKPI.services.kpi_service import KpiService
from SKPI.services.kpi_settings import KpiSettingsProvider

router = APIRouter(prefix="/kpi", tags=["kpi"])


def get_settings_provider(request: Request) -> KpiSettingsProvider:
    return request.app.state.settings_provider


def get_scheduler(request: Request) -> KpiScheduler:
    return request.app.state.scheduler


def get_kpi_service(
    request: Request,
    session: AsyncSession = Depends(get_db),
    provider: KpiSettingsProvider = Depends(get_settings_provider),
) -> KpiService:
    return KpiService(session, provider, clock=request.app.state.clock)


# ----- Teachers -----
@router.get("/teachers", response_model=TeachersKpiOverview)
async def get_teachers_kpi(service: KpiService = Depends(get_kpi_service)):
    return await service.get_teachers_kpi()


@router.get("/teachers/{teacher_id}/details", response_model=TeacherKpiDetails)
async def get_teacher_kpi_details(teacher_id: str, service: KpiService = Depends(get_kpi_service)):
    return await service.get_teacher_kpi_details(teacher_id)


@router.get("/teachers/{teacher_id}/feedback", response_model=KpiCalculationData)
async def get_teacher_feedback_kpi(
    teacher_id: str,
    period: Optional[str] = Query(default=None, max_length=16),
    service: KpiService = Depends(get_kpi_service),
):
    return await service.calculate_teacher_kpi_from_feedback(teacher_id, period)


@router.get("/teachers/{teacher_id}/feedback-metrics", response_model=dict[str, AggregationResult])
async def get_teacher_feedback_metrics(teacher_id: str, service: KpiService = Depends(get_kpi_service)):
    return await service.aggregate_all_kpi_metrics_for_teacher(teacher_id)


@router.get("/feedback-stats", response_model=FeedbackAggregationStats)
async def get_feedback_stats(request: Request, session: AsyncSession = Depends(get_db)):
    return await FeedbackAggregationService(session, clock=request.app.state.clock).get_feedback_aggregation_stats()


# ----- Batch runs -----
@router.post("/recalculate", response_model=RecalculationResult)
async def recalculate(
    triggered_by: str = Query(default="admin", max_length=120),
    scheduler: KpiScheduler = Depends(get_scheduler),
):
    return await scheduler.manual_kpi_recalculation(triggered_by)


@router.get("/calculation-status", response_model=SchedulerStatus)
async def calculation_status(scheduler: KpiScheduler = Depends(get_scheduler)):
    return scheduler.status()


# ----- Settings -----
@router.get("/settings", response_model=KpiSettingsOut)
async def get_settings(provider: KpiSettingsProvider = Depends(get_settings_provider)):
    return provider.get_settings_out()


@router.put("/settings", response_model=KpiSettingsOut)
async def update_settings(
    payload: KpiSettings,
    updated_by: str = Query(default="admin", max_length=120),
    provider: KpiSettingsProvider = Depends(get_settings_provider),
):
    return provider.update_settings(payload, updated_by=updated_by)
