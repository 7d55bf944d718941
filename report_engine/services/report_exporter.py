from __future__ import annotations

import csv
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence
from uuid import UUID

from openpyxl import Workbook

from report_engine.schemas.reporting import ReportExportFormat
from report_engine.services.report_errors import ExportError
from report_engine.services.report_query_planner import PlannedColumn
from report_engine.services.report_scheduling import utcnow
from report_engine.services.report_storage import ReportFileStorage

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    ReportExportFormat.CSV: ("csv", "text/csv"),
    ReportExportFormat.JSON: ("json", "application/json"),
    ReportExportFormat.EXCEL: (
        "xlsx",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ),
}
_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass(frozen=True)
class ExportArtifact:
    path: Path
    file_name: str
    format: ReportExportFormat
    media_type: str
    size_bytes: int
    row_count: int


def media_type_for(file_name: str) -> str:
    suffix = Path(file_name).suffix.lstrip(".").lower()
    for extension, media_type in _EXTENSIONS.values():
        if extension == suffix:
            return media_type
    return "application/octet-stream"


def build_file_name(report_name: str, execution_id: UUID | str, export_format: ReportExportFormat) -> str:
    extension, _ = _EXTENSIONS[export_format]
    stem = _UNSAFE_NAME.sub("_", report_name).strip("_") or "report"
    return f"{stem[:80]}_{execution_id}.{extension}"


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _write_csv(path: Path, columns: Sequence[PlannedColumn], rows: Iterable[Dict[str, Any]]) -> int:
    labels = [planned.label for planned in columns]
    count = 0
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle, lineterminator="\n")
        writer.writerow(labels)
        for row in rows:
            writer.writerow(["" if row.get(label) is None else row.get(label) for label in labels])
            count += 1
    return count


def _write_json(path: Path, columns: Sequence[PlannedColumn], rows: Iterable[Dict[str, Any]]) -> int:
    described = [
        {"id": planned.column.id, "label": planned.label, "type": planned.column.type.value}
        for planned in columns
    ]
    count = 0
    with path.open("w", encoding="utf-8") as handle:
        handle.write('{"columns": ')
        handle.write(json.dumps(described))
        handle.write(', "rows": [')
        for row in rows:
            if count:
                handle.write(", ")
            handle.write(json.dumps(row, default=_json_default))
            count += 1
        handle.write('], "exportedAt": ')
        handle.write(json.dumps(utcnow().isoformat()))
        handle.write(f', "totalRows": {count}}}')
    return count


def _write_xlsx(
    path: Path,
    columns: Sequence[PlannedColumn],
    rows: Iterable[Dict[str, Any]],
    sheet_title: str,
) -> int:
    labels = [planned.label for planned in columns]
    workbook = Workbook(write_only=True)
    sheet = workbook.create_sheet(title=sheet_title)
    sheet.append(labels)
    count = 0
    for row in rows:
        sheet.append([row.get(label) for label in labels])
        count += 1
    workbook.save(path)
    return count


def export_rows(
    rows: Iterable[Dict[str, Any]],
    columns: Sequence[PlannedColumn],
    export_format: ReportExportFormat,
    *,
    storage: ReportFileStorage,
    report_name: str,
    execution_id: UUID | str,
) -> ExportArtifact:
    """Serialize labelled rows into a file named after the execution.

    ``rows`` is consumed lazily so the full result set never has to be held in memory.
    """
    export_format = ReportExportFormat(export_format)
    file_name = build_file_name(report_name, execution_id, export_format)
    _, media_type = _EXTENSIONS[export_format]

    try:
        path = storage.path_for(file_name)
    except (OSError, ValueError) as exc:
        raise ExportError(f"Unable to prepare export location: {exc}") from exc

    try:
        if export_format == ReportExportFormat.CSV:
            row_count = _write_csv(path, columns, rows)
        elif export_format == ReportExportFormat.JSON:
            row_count = _write_json(path, columns, rows)
        else:
            sheet_title = (_UNSAFE_NAME.sub(" ", report_name).strip() or "Report")[:31]
            row_count = _write_xlsx(path, columns, rows, sheet_title)
        size_bytes = path.stat().st_size
    except (OSError, ValueError, TypeError) as exc:
        path.unlink(missing_ok=True)
        logger.exception("Failed to write %s export %s", export_format.value, file_name)
        raise ExportError(f"Failed to write {export_format.value} export: {exc}") from exc
    except Exception:
        path.unlink(missing_ok=True)
        raise

    logger.info("Exported %s rows to %s (%s bytes)", row_count, path, size_bytes)
    return ExportArtifact(
        path=path,
        file_name=file_name,
        format=export_format,
        media_type=media_type,
        size_bytes=size_bytes,
        row_count=row_count,
    )


__all__ = ["ExportArtifact", "build_file_name", "export_rows", "media_type_for"]
