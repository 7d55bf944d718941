from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from report_engine.database import get_db
from report_engine.schemas.reporting import (
    ReportCreateRequest,
    ReportDuplicateRequest,
    ReportExecutionResponse,
    ReportExportRequest,
    ReportExportResponse,
    ReportResponse,
    ReportRunRequest,
    ReportRunResponse,
    ReportUpdateRequest,
    ScheduleCreateRequest,
    ScheduleResponse,
    ScheduleToggleRequest,
    ScheduleUpdateRequest,
    SeedSystemReportsResponse,
)
from report_engine.services.report_catalog import describe_catalog
from report_engine.services.report_errors import (
    DefinitionError,
    ExecutionNotFoundError,
    ReportEngineError,
    ReportNotFoundError,
    ScheduleNotFoundError,
)
from report_engine.services.report_runner import (
    export_report,
    list_executions,
    require_execution,
    resolve_download,
    run_report,
)
from report_engine.services.report_schedule_service import (
    create_schedule,
    delete_schedule,
    list_schedules,
    require_schedule,
    toggle_schedule,
    update_schedule,
)
from report_engine.services.report_scheduler import ScheduledReportEngine, scheduled_report_engine
from report_engine.services.report_service import (
    create_report,
    delete_report,
    duplicate_report,
    list_reports,
    require_report,
    seed_system_reports,
    update_report,
)
from report_engine.services.report_storage import ReportFileStorage, get_report_storage

router = APIRouter(prefix="/reporting", tags=["Reporting"])


def get_schedule_engine() -> ScheduledReportEngine:
    return scheduled_report_engine


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ReportNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found.")
    if isinstance(exc, ScheduleNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found.")
    if isinstance(exc, ExecutionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Execution or file not found.")
    if isinstance(exc, (DefinitionError, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _serialize_report(report: Any) -> ReportResponse:
    return ReportResponse.model_validate(report)


def _serialize_schedule(schedule: Any) -> ScheduleResponse:
    return ScheduleResponse.model_validate(schedule)


@router.get("/catalog")
def get_catalog() -> Dict[str, Dict[str, object]]:
    return describe_catalog()


@router.get("/reports", response_model=List[ReportResponse])
def list_report_definitions(
    organization_id: Optional[str] = Query(default=None, alias="organizationId"),
    db: Session = Depends(get_db),
) -> List[ReportResponse]:
    return [_serialize_report(report) for report in list_reports(db, organization_id)]


@router.post("/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
def create_report_definition(
    payload: ReportCreateRequest,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> ReportResponse:
    try:
        report = create_report(db, payload, actor_id=actor_id)
    except (ReportEngineError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _serialize_report(report)


@router.get("/reports/{report_id}", response_model=ReportResponse)
def get_report_definition(report_id: UUID, db: Session = Depends(get_db)) -> ReportResponse:
    try:
        report = require_report(db, report_id)
    except ReportNotFoundError as exc:
        raise _http_error(exc) from None
    return _serialize_report(report)


@router.patch("/reports/{report_id}", response_model=ReportResponse)
def update_report_definition(
    report_id: UUID,
    payload: ReportUpdateRequest,
    db: Session = Depends(get_db),
) -> ReportResponse:
    try:
        report = require_report(db, report_id)
        report = update_report(db, report, payload)
    except (ReportEngineError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _serialize_report(report)


@router.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report_definition(report_id: UUID, db: Session = Depends(get_db)) -> Response:
    try:
        report = require_report(db, report_id)
    except ReportNotFoundError as exc:
        raise _http_error(exc) from None
    delete_report(db, report)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/reports/{report_id}/duplicate",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
)
def duplicate_report_definition(
    report_id: UUID,
    payload: ReportDuplicateRequest,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> ReportResponse:
    try:
        report = require_report(db, report_id)
        copy = duplicate_report(db, report, name=payload.name, actor_id=actor_id)
    except (ReportEngineError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _serialize_report(copy)


@router.post("/reports/{report_id}/run", response_model=ReportRunResponse)
def run_report_definition(
    report_id: UUID,
    payload: ReportRunRequest,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> ReportRunResponse:
    try:
        report = require_report(db, report_id)
        return run_report(db, report, payload, actor_id=actor_id)
    except (ReportEngineError, ValueError) as exc:
        raise _http_error(exc) from exc


@router.post(
    "/reports/{report_id}/export",
    response_model=ReportExportResponse,
    status_code=status.HTTP_201_CREATED,
)
def export_report_definition(
    report_id: UUID,
    payload: ReportExportRequest,
    db: Session = Depends(get_db),
    storage: ReportFileStorage = Depends(get_report_storage),
    actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> ReportExportResponse:
    try:
        report = require_report(db, report_id)
        result = export_report(db, report, payload, actor_id=actor_id, storage=storage)
    except (ReportEngineError, ValueError) as exc:
        raise _http_error(exc) from exc

    return ReportExportResponse(
        execution_id=result.execution.id,
        file_name=result.artifact.file_name,
        download_url=result.execution.download_url,
        format=result.artifact.format,
        row_count=result.artifact.row_count,
        file_size_bytes=result.artifact.size_bytes,
    )


@router.get("/reports/{report_id}/executions", response_model=List[ReportExecutionResponse])
def list_report_executions(
    report_id: UUID,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db),
) -> List[ReportExecutionResponse]:
    try:
        require_report(db, report_id)
    except ReportNotFoundError as exc:
        raise _http_error(exc) from None
    return [
        ReportExecutionResponse.model_validate(execution)
        for execution in list_executions(db, report_id, limit=limit)
    ]


@router.get("/executions/{execution_id}", response_model=ReportExecutionResponse)
def get_execution(execution_id: UUID, db: Session = Depends(get_db)) -> ReportExecutionResponse:
    try:
        execution = require_execution(db, execution_id)
    except ExecutionNotFoundError as exc:
        raise _http_error(exc) from None
    return ReportExecutionResponse.model_validate(execution)


@router.get("/executions/{execution_id}/download")
def download_execution_file(
    execution_id: UUID,
    db: Session = Depends(get_db),
    storage: ReportFileStorage = Depends(get_report_storage),
) -> FileResponse:
    try:
        download = resolve_download(db, execution_id, storage=storage)
    except ExecutionNotFoundError as exc:
        raise _http_error(exc) from None
    return FileResponse(download.path, media_type=download.media_type, filename=download.file_name)


@router.get("/schedules", response_model=List[ScheduleResponse])
def list_report_schedules(
    report_id: Optional[UUID] = Query(default=None, alias="reportId"),
    db: Session = Depends(get_db),
) -> List[ScheduleResponse]:
    return [_serialize_schedule(schedule) for schedule in list_schedules(db, report_id)]


@router.post("/schedules", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
def create_report_schedule(
    payload: ScheduleCreateRequest,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> ScheduleResponse:
    try:
        schedule = create_schedule(db, payload, actor_id=actor_id)
    except (ReportEngineError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _serialize_schedule(schedule)


@router.patch("/schedules/{schedule_id}", response_model=ScheduleResponse)
def update_report_schedule(
    schedule_id: UUID,
    payload: ScheduleUpdateRequest,
    db: Session = Depends(get_db),
) -> ScheduleResponse:
    try:
        schedule = require_schedule(db, schedule_id)
        schedule = update_schedule(db, schedule, payload)
    except (ReportEngineError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _serialize_schedule(schedule)


@router.patch("/schedules/{schedule_id}/toggle", response_model=ScheduleResponse)
def toggle_report_schedule(
    schedule_id: UUID,
    payload: ScheduleToggleRequest,
    db: Session = Depends(get_db),
) -> ScheduleResponse:
    try:
        schedule = require_schedule(db, schedule_id)
    except ScheduleNotFoundError as exc:
        raise _http_error(exc) from None
    return _serialize_schedule(toggle_schedule(db, schedule, payload.is_active))


@router.post("/schedules/{schedule_id}/trigger", response_model=ScheduleResponse)
def trigger_report_schedule(
    schedule_id: UUID,
    db: Session = Depends(get_db),
    engine: ScheduledReportEngine = Depends(get_schedule_engine),
) -> ScheduleResponse:
    try:
        require_schedule(db, schedule_id)
    except ScheduleNotFoundError as exc:
        raise _http_error(exc) from None

    engine.trigger_now(schedule_id)
    db.expire_all()
    return _serialize_schedule(require_schedule(db, schedule_id))


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report_schedule(schedule_id: UUID, db: Session = Depends(get_db)) -> Response:
    try:
        schedule = require_schedule(db, schedule_id)
    except ScheduleNotFoundError as exc:
        raise _http_error(exc) from None
    delete_schedule(db, schedule)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/system-reports/seed", response_model=SeedSystemReportsResponse)
def seed_builtin_reports(db: Session = Depends(get_db)) -> SeedSystemReportsResponse:
    return SeedSystemReportsResponse(created=seed_system_reports(db))
