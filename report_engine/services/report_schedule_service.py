from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from report_engine.config import get_settings
from report_engine.models import ReportSchedule
from report_engine.schemas.reporting import DeliveryMethod, ScheduleCreateRequest, ScheduleUpdateRequest
from report_engine.services.report_errors import ScheduleNotFoundError
from report_engine.services.report_scheduling import next_run_for_schedule, resolve_date_range
from report_engine.services.report_service import require_report

logger = logging.getLogger(__name__)

_ENUM_FIELDS = {"frequency", "delivery_method", "format"}


def _refresh_next_run(schedule: ReportSchedule, now: Optional[datetime] = None) -> None:
    schedule.next_run_at = next_run_for_schedule(schedule, now=now) if schedule.is_active else None


def _validate_schedule(schedule: ReportSchedule) -> None:
    method = DeliveryMethod(schedule.delivery_method)
    if method == DeliveryMethod.EMAIL and not schedule.email_recipients:
        raise ValueError("Email delivery requires at least one recipient.")
    if method == DeliveryMethod.WEBHOOK and not schedule.webhook_url:
        raise ValueError("Webhook delivery requires a URL.")
    if method == DeliveryMethod.SFTP and not schedule.sftp_host:
        raise ValueError("SFTP delivery requires a host.")
    if schedule.date_range_override:
        resolve_date_range(schedule.date_range_override, timezone_name=schedule.timezone)


def list_schedules(db: Session, report_id: Optional[UUID] = None) -> list[ReportSchedule]:
    statement = select(ReportSchedule).order_by(ReportSchedule.created_at.desc())
    if report_id is not None:
        statement = statement.where(ReportSchedule.report_id == report_id)
    return list(db.execute(statement).scalars())


def require_schedule(db: Session, schedule_id: UUID) -> ReportSchedule:
    schedule = db.get(ReportSchedule, schedule_id)
    if schedule is None:
        raise ScheduleNotFoundError(str(schedule_id))
    return schedule


def create_schedule(
    db: Session,
    payload: ScheduleCreateRequest,
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReportSchedule:
    require_report(db, payload.report_id)

    values = payload.model_dump()
    for key in _ENUM_FIELDS:
        values[key] = values[key].value
    values["name"] = payload.name.strip()
    values["timezone"] = payload.timezone or get_settings().report_default_timezone

    schedule = ReportSchedule(**values, created_by_id=actor_id)
    _validate_schedule(schedule)
    _refresh_next_run(schedule, now)

    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    logger.info("Created schedule %s for report %s, next run %s", schedule.id, schedule.report_id, schedule.next_run_at)
    return schedule


def update_schedule(
    db: Session,
    schedule: ReportSchedule,
    payload: ScheduleUpdateRequest,
    *,
    now: Optional[datetime] = None,
) -> ReportSchedule:
    changes = payload.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if key in _ENUM_FIELDS:
            if value is None:
                continue
            value = value.value
        if key == "timezone" and not value:
            value = get_settings().report_default_timezone
        if key in {"name", "time", "retention_days"} and value is None:
            continue
        setattr(schedule, key, value)

    try:
        _validate_schedule(schedule)
        _refresh_next_run(schedule, now)
    except Exception:
        db.rollback()
        raise

    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule


def toggle_schedule(
    db: Session,
    schedule: ReportSchedule,
    is_active: bool,
    *,
    now: Optional[datetime] = None,
) -> ReportSchedule:
    schedule.is_active = is_active
    _refresh_next_run(schedule, now)
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    logger.info("Schedule %s %s", schedule.id, "activated" if is_active else "paused")
    return schedule


def delete_schedule(db: Session, schedule: ReportSchedule) -> None:
    db.delete(schedule)
    db.commit()


__all__ = [
    "create_schedule",
    "delete_schedule",
    "list_schedules",
    "require_schedule",
    "toggle_schedule",
    "update_schedule",
]
