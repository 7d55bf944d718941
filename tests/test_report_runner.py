import uuid
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from report_engine.models import ReportExecution
from report_engine.schemas.reporting import ReportExportRequest, ReportRunRequest
from report_engine.services.report_catalog import call_table
from report_engine.services.report_errors import (
    ExecutionError,
    ExecutionNotFoundError,
    UnknownFieldError,
)
from report_engine.services.report_runner import (
    export_report,
    list_executions,
    resolve_download,
    run_report,
)

FIRST_WEEK = {"start": "2024-01-01", "end": "2024-01-07"}


def _execution_count(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(ReportExecution)).scalar_one()


def test_run_report_returns_page_and_records_execution(db_session, call_rows, report_factory) -> None:
    report = report_factory()

    response = run_report(
        db_session,
        report,
        ReportRunRequest.model_validate({"dateRange": FIRST_WEEK}),
        actor_id="tester",
    )

    assert response.total_rows == 2
    assert response.rows == [{"Campaign": "camp-a", "Calls": 3}, {"Campaign": "camp-b", "Calls": 1}]
    assert response.aggregates == {"Calls": 4}
    assert response.page == 1

    execution = db_session.get(ReportExecution, response.execution_id)
    assert execution.status == "completed"
    assert execution.trigger == "manual"
    assert execution.row_count == 2
    assert execution.triggered_by_id == "tester"
    assert execution.parameters["dateRange"]["start"].startswith("2024-01-01T00:00:00")
    assert execution.result_summary["totalRows"] == 2
    assert execution.result_summary["rows"][0] == {"Campaign": "camp-a", "Calls": 3}


def test_run_report_applies_ad_hoc_filters(db_session, call_rows, report_factory) -> None:
    report = report_factory()

    response = run_report(db_session, report, ReportRunRequest.model_validate({"filters": {"direction": "inbound"}}))

    assert response.rows == [{"Campaign": "camp-b", "Calls": 2}]


def test_page_size_is_clamped(db_session, call_rows, report_factory) -> None:
    report = report_factory()

    response = run_report(db_session, report, ReportRunRequest.model_validate({"pageSize": 1_000_000}))

    assert response.page_size == 1_000


def test_definition_errors_do_not_create_executions(db_session, report_factory) -> None:
    report = report_factory()

    with pytest.raises(UnknownFieldError):
        run_report(db_session, report, ReportRunRequest.model_validate({"filters": {"talkTime": 5}}))

    assert _execution_count(db_session) == 0


def test_query_failure_is_recorded_as_failed_execution(db_session, report_factory, engine) -> None:
    report = report_factory()
    call_table.drop(bind=engine)
    try:
        with pytest.raises(ExecutionError):
            run_report(db_session, report, ReportRunRequest())
    finally:
        call_table.create(bind=engine)

    [execution] = list_executions(db_session, report.id)
    assert execution.status == "failed"
    assert execution.error_details == {"type": "ExecutionError"}
    assert execution.completed_at is not None


def test_export_report_writes_artifact_and_download_url(db_session, call_rows, report_factory, storage) -> None:
    report = report_factory()

    result = export_report(
        db_session,
        report,
        ReportExportRequest.model_validate({"dateRange": FIRST_WEEK, "format": "json"}),
        storage=storage,
    )

    execution = result.execution
    assert execution.status == "completed"
    assert execution.row_count == 2
    assert execution.file_name == result.artifact.file_name
    assert execution.file_name.endswith(f"{execution.id}.json")
    assert execution.download_url == f"/api/reporting/executions/{execution.id}/download"
    assert execution.file_size_bytes == result.artifact.path.stat().st_size

    download = resolve_download(db_session, execution.id, storage=storage)
    assert download.path == result.artifact.path
    assert download.media_type == "application/json"


def test_download_without_artifact_is_not_found(db_session, call_rows, report_factory, storage) -> None:
    report = report_factory()
    response = run_report(db_session, report, ReportRunRequest())

    with pytest.raises(ExecutionNotFoundError):
        resolve_download(db_session, response.execution_id, storage=storage)
    with pytest.raises(ExecutionNotFoundError):
        resolve_download(db_session, uuid.uuid4(), storage=storage)


def test_executions_are_listed_newest_first(db_session, call_rows, report_factory) -> None:
    report = report_factory()
    first = run_report(db_session, report, ReportRunRequest.model_validate({"dateRange": FIRST_WEEK}))
    second = run_report(
        db_session,
        report,
        ReportRunRequest.model_validate({"dateRange": {"start": date(2024, 1, 8), "end": date(2024, 1, 9)}}),
    )

    listed = list_executions(db_session, report.id, limit=1)

    assert [execution.id for execution in listed] == [second.execution_id]
    assert first.execution_id != second.execution_id


def _failing_commit(*args, **kwargs):
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def test_finalize_failure_leaves_run_marked_failed(db_session, call_rows, report_factory, monkeypatch) -> None:
    report = report_factory()
    monkeypatch.setattr("report_engine.services.report_runner.complete_execution", _failing_commit)

    with pytest.raises(OperationalError):
        run_report(db_session, report, ReportRunRequest.model_validate({"dateRange": FIRST_WEEK}))

    [execution] = list_executions(db_session, report.id)
    assert execution.status == "failed"
    assert "database is locked" in execution.error_message
    assert execution.completed_at is not None


def test_finalize_failure_discards_export_file(db_session, call_rows, report_factory, storage, monkeypatch) -> None:
    report = report_factory()
    monkeypatch.setattr("report_engine.services.report_runner.complete_execution", _failing_commit)

    with pytest.raises(OperationalError):
        export_report(
            db_session,
            report,
            ReportExportRequest.model_validate({"dateRange": FIRST_WEEK, "format": "csv"}),
            storage=storage,
        )

    [execution] = list_executions(db_session, report.id)
    assert execution.status == "failed"
    assert execution.file_path is None
    assert list(storage.root.iterdir()) == []
