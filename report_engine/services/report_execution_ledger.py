"""Durable audit record for every report run attempt.

Each attempt is written twice: once when it starts (``running``) and once when it
finishes (``completed`` or ``failed``). A retry is a new record, never an update.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from report_engine.models import ReportExecution
from report_engine.schemas.reporting import ExecutionStatus, ExecutionTrigger
from report_engine.services.report_errors import LedgerStateError
from report_engine.services.report_exporter import ExportArtifact
from report_engine.services.report_scheduling import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = {
    ExecutionStatus.COMPLETED.value,
    ExecutionStatus.FAILED.value,
    ExecutionStatus.CANCELLED.value,
}


def open_execution(
    db: Session,
    *,
    report_id: UUID,
    trigger: ExecutionTrigger,
    parameters: Optional[Dict[str, Any]] = None,
    schedule_id: Optional[UUID] = None,
    triggered_by_id: Optional[str] = None,
) -> ReportExecution:
    execution = ReportExecution(
        report_id=report_id,
        schedule_id=schedule_id,
        status=ExecutionStatus.RUNNING.value,
        trigger=ExecutionTrigger(trigger).value,
        parameters=parameters or {},
        started_at=utcnow(),
        triggered_by_id=triggered_by_id,
    )
    db.add(execution)
    db.commit()
    db.refresh(execution)
    logger.debug("Opened execution %s for report %s", execution.id, report_id)
    return execution


def _finalize(execution: ReportExecution, status: ExecutionStatus) -> None:
    if execution.status in _TERMINAL_STATUSES:
        raise LedgerStateError(
            f"Execution {execution.id} is already {execution.status}; it cannot become {status.value}."
        )
    completed_at = utcnow()
    started_at = ensure_utc(execution.started_at) or completed_at
    execution.status = status.value
    execution.completed_at = completed_at
    execution.duration_ms = max(int((completed_at - started_at).total_seconds() * 1000), 0)


def complete_execution(
    db: Session,
    execution: ReportExecution,
    *,
    row_count: int,
    result_summary: Optional[Dict[str, Any]] = None,
    artifact: Optional[ExportArtifact] = None,
    download_url: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> ReportExecution:
    _finalize(execution, ExecutionStatus.COMPLETED)
    execution.row_count = row_count
    execution.result_summary = result_summary
    if artifact is not None:
        execution.file_path = str(artifact.path)
        execution.file_name = artifact.file_name
        execution.file_size_bytes = artifact.size_bytes
        execution.download_url = download_url
        execution.artifact_expires_at = expires_at
    db.add(execution)
    db.commit()
    db.refresh(execution)
    return execution


def fail_execution(
    db: Session,
    execution: ReportExecution,
    error: BaseException | str,
    *,
    details: Optional[Dict[str, Any]] = None,
) -> ReportExecution:
    # The failed statement may have poisoned the transaction.
    db.rollback()
    _finalize(execution, ExecutionStatus.FAILED)
    execution.error_message = str(error) or error.__class__.__name__
    error_details = dict(details or {})
    if isinstance(error, BaseException):
        error_details.setdefault("type", error.__class__.__name__)
    execution.error_details = error_details or None
    db.add(execution)
    db.commit()
    db.refresh(execution)
    logger.warning("Execution %s failed: %s", execution.id, execution.error_message)
    return execution


__all__ = ["complete_execution", "fail_execution", "open_execution"]
