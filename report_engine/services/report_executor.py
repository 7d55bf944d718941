from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from report_engine.config import get_settings
from report_engine.schemas.reporting import ReportColumn, ReportColumnType
from report_engine.services.report_errors import ExecutionError
from report_engine.services.report_query_planner import PlannedColumn, ReportQueryPlan

logger = logging.getLogger(__name__)

STREAM_BATCH_SIZE = 500


@dataclass
class ReportPage:
    rows: List[Dict[str, Any]]
    total_rows: int
    page: int
    page_size: int


def format_value(value: Any, column: ReportColumn, *, currency_symbol: Optional[str] = None) -> Any:
    """Render a raw store value for display. Nulls pass through untouched."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        value = float(value)

    if column.type == ReportColumnType.DATE:
        if isinstance(value, (datetime, date)):
            return value.isoformat()[:10]
        if isinstance(value, str):
            return value[:10]

    hint = (column.format or "").lower()
    if hint == "currency" and _is_numeric(value):
        symbol = currency_symbol if currency_symbol is not None else get_settings().report_currency_symbol
        return f"{symbol}{float(value):.2f}"
    if hint == "percent" and _is_numeric(value):
        return f"{float(value) * 100:.2f}%"

    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _transform_row(row: Row, columns: List[PlannedColumn], currency_symbol: str) -> Dict[str, Any]:
    mapping = row._mapping
    return {
        planned.label: format_value(mapping[planned.key], planned.column, currency_symbol=currency_symbol)
        for planned in columns
    }


def execute_page(db: Session, plan: ReportQueryPlan, *, page: int, page_size: int) -> ReportPage:
    if page < 1:
        raise ValueError("Page numbers start at 1.")
    if page_size < 1:
        raise ValueError("Page size must be positive.")

    symbol = get_settings().report_currency_symbol
    try:
        total_rows = int(db.execute(plan.count_statement()).scalar_one() or 0)
        rows: List[Dict[str, Any]] = []
        if total_rows:
            statement = plan.rows_statement(offset=(page - 1) * page_size, limit=page_size)
            rows = [_transform_row(row, plan.columns, symbol) for row in db.execute(statement)]
    except SQLAlchemyError as exc:
        logger.exception("Report query failed for entity %s", plan.primary.entity.value)
        raise ExecutionError(f"Report query failed: {exc}") from exc

    return ReportPage(rows=rows, total_rows=total_rows, page=page, page_size=page_size)


def iter_rows(db: Session, plan: ReportQueryPlan) -> Iterator[Dict[str, Any]]:
    """Stream the full ordered result set, labelled and formatted."""
    symbol = get_settings().report_currency_symbol
    statement = plan.rows_statement().execution_options(yield_per=STREAM_BATCH_SIZE)
    try:
        for row in db.execute(statement):
            yield _transform_row(row, plan.columns, symbol)
    except SQLAlchemyError as exc:
        logger.exception("Report export query failed for entity %s", plan.primary.entity.value)
        raise ExecutionError(f"Report query failed: {exc}") from exc


def execute_full(db: Session, plan: ReportQueryPlan) -> List[Dict[str, Any]]:
    return list(iter_rows(db, plan))


def compute_aggregates(db: Session, plan: ReportQueryPlan) -> Optional[Dict[str, Any]]:
    statement = plan.aggregate_statement()
    if statement is None:
        return None

    symbol = get_settings().report_currency_symbol
    try:
        row = db.execute(statement).one()
    except SQLAlchemyError as exc:
        logger.exception("Report aggregate query failed for entity %s", plan.primary.entity.value)
        raise ExecutionError(f"Report aggregate query failed: {exc}") from exc
    return _transform_row(row, plan.summary_columns, symbol)


__all__ = [
    "ReportPage",
    "compute_aggregates",
    "execute_full",
    "execute_page",
    "format_value",
    "iter_rows",
]
