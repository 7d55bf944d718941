"""Run and export saved reports, recording each attempt in the execution ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from report_engine.config import get_settings
from report_engine.models import Report, ReportExecution
from report_engine.schemas.reporting import (
    ExecutionTrigger,
    ReportDateRange,
    ReportExportFormat,
    ReportExportRequest,
    ReportRunRequest,
    ReportRunResponse,
)
from report_engine.services.report_errors import ExecutionNotFoundError, LedgerStateError
from report_engine.services.report_execution_ledger import (
    complete_execution,
    fail_execution,
    open_execution,
)
from report_engine.services.report_executor import compute_aggregates, execute_page, iter_rows
from report_engine.services.report_exporter import ExportArtifact, export_rows, media_type_for
from report_engine.services.report_query_planner import ResolvedDateRange, build_query_plan
from report_engine.services.report_scheduling import resolve_date_range, utcnow
from report_engine.services.report_service import definition_from_report
from report_engine.services.report_storage import ReportFileStorage, get_report_storage

logger = logging.getLogger(__name__)

DOWNLOAD_URL_TEMPLATE = "/api/reporting/executions/{execution_id}/download"


@dataclass
class ReportExportResult:
    execution: ReportExecution
    artifact: ExportArtifact


@dataclass(frozen=True)
class ReportDownload:
    path: Path
    file_name: str
    media_type: str


def resolve_requested_range(
    date_range: Optional[ReportDateRange],
    date_preset: Optional[str],
) -> Optional[ResolvedDateRange]:
    if date_range is not None:
        return ResolvedDateRange.from_bounds(date_range.start, date_range.end)
    if date_preset:
        return resolve_date_range(date_preset, timezone_name=get_settings().report_default_timezone)
    return None


def _parameters(date_range: Optional[ResolvedDateRange], filters: Mapping[str, Any], **extra: Any) -> Dict[str, Any]:
    parameters: Dict[str, Any] = {
        "dateRange": date_range.as_parameters() if date_range else None,
        "filters": dict(filters),
    }
    parameters.update(extra)
    return jsonable_encoder(parameters)


def _record_failure(db: Session, execution: ReportExecution, exc: BaseException) -> None:
    try:
        fail_execution(db, execution, exc)
    except (SQLAlchemyError, LedgerStateError):
        logger.exception("Unable to record failure for execution %s", execution.id)


def _artifact_expiry(retention_days: Optional[int]) -> Optional[datetime]:
    if not retention_days:
        return None
    return utcnow() + timedelta(days=retention_days)


def _clamp_page_size(requested: Optional[int]) -> int:
    settings = get_settings()
    size = requested or settings.report_default_page_size
    return max(1, min(size, settings.report_max_page_size))


def run_report(
    db: Session,
    report: Report,
    request: ReportRunRequest,
    *,
    trigger: ExecutionTrigger = ExecutionTrigger.MANUAL,
    actor_id: Optional[str] = None,
) -> ReportRunResponse:
    definition = definition_from_report(report)
    date_range = resolve_requested_range(request.date_range, request.date_preset)
    plan = build_query_plan(definition, date_range=date_range, ad_hoc_filters=request.filters)
    page_size = _clamp_page_size(request.page_size)

    execution = open_execution(
        db,
        report_id=report.id,
        trigger=trigger,
        parameters=_parameters(date_range, request.filters, page=request.page, pageSize=page_size),
        triggered_by_id=actor_id,
    )
    try:
        page = execute_page(db, plan, page=request.page, page_size=page_size)
        aggregates = compute_aggregates(db, plan)
        preview_rows = get_settings().report_preview_rows
        summary = jsonable_encoder(
            {
                "columns": plan.labels,
                "rows": page.rows[:preview_rows],
                "totalRows": page.total_rows,
                "aggregates": aggregates,
            }
        )
        complete_execution(db, execution, row_count=page.total_rows, result_summary=summary)
    except Exception as exc:
        _record_failure(db, execution, exc)
        raise

    return ReportRunResponse(
        execution_id=execution.id,
        columns=[planned.column for planned in plan.columns],
        rows=page.rows,
        total_rows=page.total_rows,
        page=page.page,
        page_size=page.page_size,
        aggregates=aggregates,
    )


def export_report(
    db: Session,
    report: Report,
    request: ReportExportRequest,
    *,
    trigger: ExecutionTrigger = ExecutionTrigger.MANUAL,
    actor_id: Optional[str] = None,
    schedule_id: Optional[UUID] = None,
    date_range: Optional[ResolvedDateRange] = None,
    storage: Optional[ReportFileStorage] = None,
    retention_days: Optional[int] = None,
) -> ReportExportResult:
    """Write the full result set to a file; ``date_range`` overrides whatever the request carries.

    With ``retention_days`` the artifact is stamped with an expiry for the retention sweep;
    without it the file is kept until removed by hand.
    """
    definition = definition_from_report(report)
    resolved_range = date_range or resolve_requested_range(request.date_range, request.date_preset)
    plan = build_query_plan(definition, date_range=resolved_range, ad_hoc_filters=request.filters)
    export_format = ReportExportFormat(request.format)
    storage = storage or get_report_storage()

    execution = open_execution(
        db,
        report_id=report.id,
        trigger=trigger,
        schedule_id=schedule_id,
        parameters=_parameters(resolved_range, request.filters, format=export_format.value),
        triggered_by_id=actor_id,
    )
    artifact: Optional[ExportArtifact] = None
    try:
        artifact = export_rows(
            iter_rows(db, plan),
            plan.columns,
            export_format,
            storage=storage,
            report_name=report.name,
            execution_id=execution.id,
        )
        complete_execution(
            db,
            execution,
            row_count=artifact.row_count,
            result_summary={"columns": plan.labels, "totalRows": artifact.row_count},
            artifact=artifact,
            download_url=DOWNLOAD_URL_TEMPLATE.format(execution_id=execution.id),
            expires_at=_artifact_expiry(retention_days),
        )
    except Exception as exc:
        _record_failure(db, execution, exc)
        if artifact is not None:
            storage.delete(artifact.path)
        raise
    return ReportExportResult(execution=execution, artifact=artifact)


def list_executions(db: Session, report_id: UUID, *, limit: Optional[int] = None) -> List[ReportExecution]:
    limit = limit or get_settings().report_execution_history_limit
    statement = (
        select(ReportExecution)
        .where(ReportExecution.report_id == report_id)
        .order_by(ReportExecution.created_at.desc())
        .limit(limit)
    )
    return list(db.execute(statement).scalars())


def require_execution(db: Session, execution_id: UUID) -> ReportExecution:
    execution = db.get(ReportExecution, execution_id)
    if execution is None:
        raise ExecutionNotFoundError(str(execution_id))
    return execution


def resolve_download(
    db: Session,
    execution_id: UUID,
    *,
    storage: Optional[ReportFileStorage] = None,
) -> ReportDownload:
    """Locate an execution's artifact. Only paths recorded by the ledger are ever served."""
    execution = require_execution(db, execution_id)
    storage = storage or get_report_storage()
    path = storage.resolve(execution.file_path)
    if path is None:
        raise ExecutionNotFoundError(f"No downloadable file for execution {execution_id}.")
    file_name = execution.file_name or path.name
    return ReportDownload(path=path, file_name=file_name, media_type=media_type_for(file_name))


__all__ = [
    "DOWNLOAD_URL_TEMPLATE",
    "ReportDownload",
    "ReportExportResult",
    "export_report",
    "list_executions",
    "require_execution",
    "resolve_download",
    "resolve_requested_range",
    "run_report",
]
