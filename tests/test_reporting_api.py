from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient

from report_engine.services.system_reports import SYSTEM_REPORTS


def _report_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "name": "Calls by agent",
        "description": "Call volume per agent",
        "type": "agent",
        "primaryEntity": "call",
        "joinEntities": ["agent"],
        "columns": [
            {"id": "agent", "field": "agentId", "label": "Agent"},
            {"id": "agent_name", "field": "agent.name", "label": "Agent, Name"},
            {"id": "calls", "field": "id", "label": "Calls", "aggregation": "count"},
            {"id": "talk", "field": "duration", "label": "Talk Time", "aggregation": "sum"},
        ],
        "groupBy": [{"field": "agentId", "label": "Agent"}],
        "dateField": "createdAt",
    }
    payload.update(overrides)
    return payload


def test_report_crud_flow(client: TestClient) -> None:
    create_response = client.post("/reporting/reports", json=_report_payload(), headers={"X-Actor-Id": "dana"})
    assert create_response.status_code == 201
    created = create_response.json()
    report_id = created["id"]
    assert created["primaryEntity"] == "call"
    assert created["createdById"] == "dana"
    assert created["isSystem"] is False
    assert [column["label"] for column in created["columns"]][:2] == ["Agent", "Agent, Name"]

    list_response = client.get("/reporting/reports")
    assert list_response.status_code == 200
    assert [item["id"] for item in list_response.json()] == [report_id]

    update_response = client.patch(f"/reporting/reports/{report_id}", json={"name": "Agent volume"})
    assert update_response.status_code == 200
    assert update_response.json()["name"] == "Agent volume"

    immutable_response = client.patch(f"/reporting/reports/{report_id}", json={"primaryEntity": "lead"})
    assert immutable_response.status_code == 400

    duplicate_response = client.post(f"/reporting/reports/{report_id}/duplicate", json={"name": "Agent volume v2"})
    assert duplicate_response.status_code == 201
    assert duplicate_response.json()["id"] != report_id

    delete_response = client.delete(f"/reporting/reports/{report_id}")
    assert delete_response.status_code == 204
    assert client.get(f"/reporting/reports/{report_id}").status_code == 404


def test_invalid_definitions_are_rejected(client: TestClient) -> None:
    unknown_field = _report_payload(columns=[{"id": "x", "field": "talkTime", "label": "Talk"}])
    response = client.post("/reporting/reports", json=unknown_field)
    assert response.status_code == 400
    assert "talkTime" in response.json()["detail"]

    bad_operator = _report_payload(filters=[{"id": "f", "field": "status", "operator": "regex", "value": "x"}])
    assert client.post("/reporting/reports", json=bad_operator).status_code == 400

    assert client.post("/reporting/reports", json=_report_payload(columns=[])).status_code == 422


def test_run_report_endpoint(client: TestClient, call_rows: list[dict[str, object]]) -> None:
    report_id = client.post("/reporting/reports", json=_report_payload()).json()["id"]

    response = client.post(
        f"/reporting/reports/{report_id}/run",
        json={"dateRange": {"start": "2024-01-01", "end": "2024-01-07"}, "pageSize": 10},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["totalRows"] == 3
    assert body["rows"] == [
        {"Agent": None, "Agent, Name": None, "Calls": 1, "Talk Time": 30},
        {"Agent": "agent-1", "Agent, Name": "Dana", "Calls": 2, "Talk Time": 60},
        {"Agent": "agent-2", "Agent, Name": "Lee", "Calls": 1, "Talk Time": 120},
    ]
    assert body["aggregates"] == {"Calls": 4, "Talk Time": 210}

    executions = client.get(f"/reporting/reports/{report_id}/executions")
    assert executions.status_code == 200
    [execution] = executions.json()
    assert execution["id"] == body["executionId"]
    assert execution["status"] == "completed"
    assert execution["rowCount"] == 3


def test_export_and_download_endpoint(client: TestClient, call_rows: list[dict[str, object]]) -> None:
    report_id = client.post("/reporting/reports", json=_report_payload()).json()["id"]

    export_response = client.post(
        f"/reporting/reports/{report_id}/export",
        json={"dateRange": {"start": "2024-01-01", "end": "2024-01-07"}, "format": "csv"},
    )

    assert export_response.status_code == 201
    exported = export_response.json()
    assert exported["rowCount"] == 3
    assert exported["format"] == "csv"

    download = client.get(exported["downloadUrl"].removeprefix("/api"))
    assert download.status_code == 200
    assert download.headers["content-type"].startswith("text/csv")
    assert exported["fileName"] in download.headers["content-disposition"]
    assert download.text.splitlines()[0] == 'Agent,"Agent, Name",Calls,Talk Time'

    execution = client.get(f"/reporting/executions/{exported['executionId']}")
    assert execution.status_code == 200
    assert execution.json()["downloadUrl"] == exported["downloadUrl"]


def test_missing_resources_return_404(client: TestClient) -> None:
    missing = uuid4()

    assert client.get(f"/reporting/reports/{missing}").status_code == 404
    assert client.post(f"/reporting/reports/{missing}/run", json={}).status_code == 404
    assert client.get(f"/reporting/executions/{missing}").status_code == 404
    assert client.get(f"/reporting/executions/{missing}/download").status_code == 404
    assert client.patch(f"/reporting/schedules/{missing}/toggle", json={"isActive": False}).status_code == 404


def test_schedule_lifecycle(client: TestClient, call_rows: list[dict[str, object]]) -> None:
    report_id = client.post("/reporting/reports", json=_report_payload()).json()["id"]

    create_response = client.post(
        "/reporting/schedules",
        json={
            "reportId": report_id,
            "name": "Monday agent volume",
            "frequency": "weekly",
            "dayOfWeek": 1,
            "time": "07:30",
            "timezone": "UTC",
            "deliveryMethod": "sftp",
            "sftpHost": "files.example.test",
            "sftpPassword": "hunter2",
        },
    )
    assert create_response.status_code == 201
    schedule = create_response.json()
    schedule_id = schedule["id"]
    assert schedule["isActive"] is True
    assert schedule["nextRunAt"] is not None
    assert "sftpPassword" not in schedule

    listed = client.get("/reporting/schedules", params={"reportId": report_id})
    assert [item["id"] for item in listed.json()] == [schedule_id]

    paused = client.patch(f"/reporting/schedules/{schedule_id}/toggle", json={"isActive": False})
    assert paused.status_code == 200
    assert paused.json()["nextRunAt"] is None

    resumed = client.patch(f"/reporting/schedules/{schedule_id}/toggle", json={"isActive": True})
    assert resumed.json()["nextRunAt"] is not None

    # No SFTP transfer is configured in tests, so a manual run fails at delivery.
    triggered = client.post(f"/reporting/schedules/{schedule_id}/trigger")
    assert triggered.status_code == 200
    assert triggered.json()["totalRuns"] == 1
    assert triggered.json()["failedRuns"] == 1
    assert triggered.json()["lastRunStatus"] == "failed"

    updated = client.patch(f"/reporting/schedules/{schedule_id}", json={"deliveryMethod": "storage", "time": "06:00"})
    assert updated.status_code == 200
    assert updated.json()["deliveryMethod"] == "storage"
    assert updated.json()["time"] == "06:00"

    assert client.delete(f"/reporting/schedules/{schedule_id}").status_code == 204
    assert client.get("/reporting/schedules", params={"reportId": report_id}).json() == []


def test_schedule_validation(client: TestClient) -> None:
    report_id = client.post("/reporting/reports", json=_report_payload()).json()["id"]

    no_recipients = client.post(
        "/reporting/schedules",
        json={"reportId": report_id, "name": "Email", "frequency": "daily", "deliveryMethod": "email"},
    )
    assert no_recipients.status_code == 422

    bad_time = client.post(
        "/reporting/schedules",
        json={"reportId": report_id, "name": "Late", "frequency": "daily", "time": "24:00", "deliveryMethod": "storage"},
    )
    assert bad_time.status_code == 422

    bad_range = client.post(
        "/reporting/schedules",
        json={
            "reportId": report_id,
            "name": "Fortnight",
            "frequency": "daily",
            "deliveryMethod": "storage",
            "dateRangeOverride": "fortnight",
        },
    )
    assert bad_range.status_code == 400

    unknown_report = client.post(
        "/reporting/schedules",
        json={"reportId": str(uuid4()), "name": "Orphan", "frequency": "daily", "deliveryMethod": "storage"},
    )
    assert unknown_report.status_code == 404


def test_seed_system_reports_endpoint(client: TestClient) -> None:
    first = client.post("/reporting/system-reports/seed")
    assert first.status_code == 200
    assert first.json()["created"] == [data["name"] for data in SYSTEM_REPORTS]

    second = client.post("/reporting/system-reports/seed")
    assert second.json()["created"] == []

    reports = client.get("/reporting/reports").json()
    assert all(report["isSystem"] for report in reports)


def test_catalog_endpoint(client: TestClient) -> None:
    response = client.get("/reporting/catalog")

    assert response.status_code == 200
    assert response.json()["call"]["relations"]["agent"] == "agent"
