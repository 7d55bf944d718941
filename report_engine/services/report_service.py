from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from report_engine.models import Report
from report_engine.schemas.reporting import (
    ReportColumn,
    ReportCreateRequest,
    ReportDefinition,
    ReportFilter,
    ReportGrouping,
    ReportUpdateRequest,
)
from report_engine.services.report_errors import ReportNotFoundError
from report_engine.services.report_query_planner import build_query_plan
from report_engine.services.system_reports import SYSTEM_REPORTS

logger = logging.getLogger(__name__)


def _dump_items(items: Optional[Iterable[BaseModel]]) -> list[dict[str, Any]]:
    return [item.model_dump(by_alias=True, mode="json", exclude_none=True) for item in items or []]


def definition_from_report(report: Report) -> ReportDefinition:
    return ReportDefinition(
        name=report.name,
        report_type=report.report_type,
        primary_entity=report.primary_entity,
        join_entities=list(report.join_entities or []),
        columns=[ReportColumn.model_validate(item) for item in report.columns or []],
        filters=[ReportFilter.model_validate(item) for item in report.filters or []],
        group_by=[ReportGrouping.model_validate(item) for item in report.group_by or []],
        date_field=report.date_field,
        default_date_range=report.default_date_range,
    )


def validate_definition(definition: ReportDefinition) -> None:
    """Reject definitions the planner cannot turn into a query."""
    build_query_plan(definition)


def list_reports(db: Session, organization_id: Optional[str] = None) -> list[Report]:
    statement = select(Report).order_by(Report.created_at.desc())
    if organization_id is not None:
        statement = statement.where(Report.organization_id == organization_id)
    return list(db.execute(statement).scalars())


def get_report(db: Session, report_id: UUID) -> Report | None:
    return db.get(Report, report_id)


def require_report(db: Session, report_id: UUID) -> Report:
    report = get_report(db, report_id)
    if not report:
        raise ReportNotFoundError(str(report_id))
    return report


def create_report(
    db: Session,
    payload: ReportCreateRequest,
    *,
    actor_id: Optional[str] = None,
    is_system: bool = False,
) -> Report:
    validate_definition(payload)

    description = payload.description.strip() if payload.description and payload.description.strip() else None
    report = Report(
        name=payload.name,
        description=description,
        report_type=payload.report_type.value,
        primary_entity=payload.primary_entity,
        join_entities=list(payload.join_entities),
        columns=_dump_items(payload.columns),
        filters=_dump_items(payload.filters),
        group_by=_dump_items(payload.group_by),
        date_field=payload.date_field,
        default_date_range=payload.default_date_range,
        visualizations=_dump_items(payload.visualizations),
        is_public=payload.is_public,
        is_system=is_system,
        created_by_id=actor_id,
        organization_id=payload.organization_id,
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    logger.info("Created report %s (%s)", report.id, report.name)
    return report


def update_report(db: Session, report: Report, payload: ReportUpdateRequest) -> Report:
    changes = payload.model_dump(exclude_unset=True)

    if "primary_entity" in changes and changes["primary_entity"] != report.primary_entity:
        raise ValueError("The primary entity of a report cannot be changed after creation.")

    if "name" in changes:
        cleaned_name = (payload.name or "").strip()
        if not cleaned_name:
            raise ValueError("Report name cannot be empty.")
        report.name = cleaned_name
    if "description" in changes:
        report.description = payload.description.strip() if payload.description and payload.description.strip() else None
    if payload.report_type is not None:
        report.report_type = payload.report_type.value
    if "join_entities" in changes:
        report.join_entities = list(payload.join_entities or [])
    if payload.columns is not None:
        report.columns = _dump_items(payload.columns)
    if "filters" in changes:
        report.filters = _dump_items(payload.filters)
    if "group_by" in changes:
        report.group_by = _dump_items(payload.group_by)
    if "date_field" in changes:
        report.date_field = payload.date_field
    if payload.default_date_range is not None:
        report.default_date_range = payload.default_date_range
    if "visualizations" in changes:
        report.visualizations = _dump_items(payload.visualizations)
    if payload.is_public is not None:
        report.is_public = payload.is_public

    try:
        validate_definition(definition_from_report(report))
    except Exception:
        db.rollback()
        raise

    db.add(report)
    db.commit()
    db.refresh(report)
    return report


def delete_report(db: Session, report: Report) -> None:
    db.delete(report)
    db.commit()
    logger.info("Deleted report %s", report.id)


def duplicate_report(
    db: Session,
    report: Report,
    *,
    name: str,
    actor_id: Optional[str] = None,
) -> Report:
    cleaned_name = name.strip()
    if not cleaned_name:
        raise ValueError("Report name cannot be empty.")

    copy = Report(
        name=cleaned_name,
        description=report.description,
        report_type=report.report_type,
        primary_entity=report.primary_entity,
        join_entities=list(report.join_entities or []),
        columns=[dict(item) for item in report.columns or []],
        filters=[dict(item) for item in report.filters or []],
        group_by=[dict(item) for item in report.group_by or []],
        date_field=report.date_field,
        default_date_range=report.default_date_range,
        visualizations=[dict(item) for item in report.visualizations or []],
        is_public=False,
        is_system=False,
        created_by_id=actor_id,
        organization_id=report.organization_id,
    )
    db.add(copy)
    db.commit()
    db.refresh(copy)
    return copy


def seed_system_reports(db: Session) -> List[str]:
    """Create the built-in reports that are missing; returns the names created."""
    created: List[str] = []
    for data in SYSTEM_REPORTS:
        payload = ReportCreateRequest.model_validate(data)
        exists = db.execute(
            select(Report.id).where(Report.name == payload.name, Report.is_system.is_(True)).limit(1)
        ).first()
        if exists:
            continue
        create_report(db, payload, is_system=True)
        created.append(payload.name)
        logger.info("Created system report: %s", payload.name)
    return created


__all__ = [
    "create_report",
    "definition_from_report",
    "delete_report",
    "duplicate_report",
    "get_report",
    "list_reports",
    "require_report",
    "seed_system_reports",
    "update_report",
    "validate_definition",
]
