from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from report_engine.schemas.reporting import ReportColumn, ReportDefinition
from report_engine.services.report_executor import (
    compute_aggregates,
    execute_full,
    execute_page,
    format_value,
)
from report_engine.services.report_query_planner import ResolvedDateRange, build_query_plan

FIRST_WEEK = ResolvedDateRange.from_bounds(date(2024, 1, 1), date(2024, 1, 7))


def _definition(**overrides: Any) -> ReportDefinition:
    payload: dict[str, Any] = {
        "name": "Calls",
        "primaryEntity": "call",
        "dateField": "createdAt",
        "columns": [
            {"id": "id", "field": "id", "label": "Call"},
            {"id": "duration", "field": "duration", "label": "Duration", "type": "number"},
        ],
    }
    payload.update(overrides)
    return ReportDefinition.model_validate(payload)


def _calls_per_campaign() -> ReportDefinition:
    return _definition(
        columns=[
            {"id": "campaign", "field": "campaignId", "label": "Campaign"},
            {"id": "calls", "field": "id", "label": "Calls", "aggregation": "count"},
        ],
        groupBy=[{"field": "campaignId", "label": "Campaign"}],
    )


def test_grouped_count_over_first_week(db_session, call_rows) -> None:
    plan = build_query_plan(_calls_per_campaign(), date_range=FIRST_WEEK)

    page = execute_page(db_session, plan, page=1, page_size=50)

    assert page.total_rows == 2
    assert page.rows == [
        {"Campaign": "camp-a", "Calls": 3},
        {"Campaign": "camp-b", "Calls": 1},
    ]
    assert compute_aggregates(db_session, plan) == {"Calls": 4}


def test_grouped_count_over_empty_window(db_session, call_rows) -> None:
    window = ResolvedDateRange.from_bounds(date(2023, 6, 1), date(2023, 6, 2))
    plan = build_query_plan(_calls_per_campaign(), date_range=window)

    page = execute_page(db_session, plan, page=1, page_size=50)

    assert page.total_rows == 0
    assert page.rows == []


def test_ungrouped_aggregate_over_empty_window_has_no_rows(db_session, call_rows) -> None:
    definition = _definition(
        columns=[{"id": "total", "field": "duration", "label": "Total", "aggregation": "sum"}]
    )
    empty = ResolvedDateRange.from_bounds(date(2023, 6, 1), date(2023, 6, 2))

    assert execute_page(db_session, build_query_plan(definition), page=1, page_size=10).rows == [
        {"Total": 300}
    ]
    empty_page = execute_page(db_session, build_query_plan(definition, date_range=empty), page=1, page_size=10)
    assert empty_page.total_rows == 0
    assert empty_page.rows == []


def test_zero_rows_when_nothing_is_stored(db_session) -> None:
    page = execute_page(db_session, build_query_plan(_definition()), page=1, page_size=25)

    assert page.total_rows == 0
    assert page.rows == []


def test_pages_partition_the_ordered_result(db_session, call_rows) -> None:
    plan = build_query_plan(_definition())

    pages = [execute_page(db_session, plan, page=number, page_size=2) for number in (1, 2, 3, 4)]

    assert [len(page.rows) for page in pages] == [2, 2, 1, 0]
    assert {page.total_rows for page in pages} == {5}
    seen = [row["Call"] for page in pages for row in page.rows]
    assert seen == sorted(row["id"] for row in call_rows)


@pytest.mark.parametrize(("page", "page_size"), [(0, 10), (1, 0)])
def test_invalid_paging_is_rejected(db_session, page: int, page_size: int) -> None:
    with pytest.raises(ValueError):
        execute_page(db_session, build_query_plan(_definition()), page=page, page_size=page_size)


def test_left_join_keeps_calls_without_agent(db_session, call_rows) -> None:
    definition = _definition(
        joinEntities=["agent"],
        columns=[
            {"id": "id", "field": "id", "label": "Call"},
            {"id": "agent", "field": "agent.name", "label": "Agent"},
        ],
    )

    rows = execute_full(db_session, build_query_plan(definition))

    assert len(rows) == 5
    assert {"Call": "call-04", "Agent": None} in rows
    assert {"Call": "call-01", "Agent": "Dana"} in rows


def test_declared_and_ad_hoc_filters_narrow_results(db_session, call_rows) -> None:
    definition = _definition(
        filters=[{"id": "f1", "field": "agentId", "operator": "neq", "value": None}],
    )

    plan = build_query_plan(definition, ad_hoc_filters={"campaignId": "camp-b"})
    rows = execute_full(db_session, plan)

    assert [row["Call"] for row in rows] == ["call-03", "call-05"]


def test_membership_filter_against_stored_rows(db_session, call_rows) -> None:
    definition = _definition(
        filters=[{"id": "f1", "field": "status", "operator": "in", "value": ["missed"]}],
    )

    rows = execute_full(db_session, build_query_plan(definition))

    assert rows == [{"Call": "call-03", "Duration": 0}]


def test_date_columns_are_rendered_as_calendar_days(db_session, call_rows) -> None:
    definition = _definition(
        columns=[
            {"id": "id", "field": "id", "label": "Call"},
            {"id": "created", "field": "createdAt", "label": "Created", "type": "date"},
        ],
    )

    rows = execute_full(db_session, build_query_plan(definition, date_range=FIRST_WEEK))

    assert rows[0] == {"Call": "call-01", "Created": "2024-01-01"}
    assert rows[-1] == {"Call": "call-04", "Created": "2024-01-07"}


def _column(**overrides: Any) -> ReportColumn:
    payload: dict[str, Any] = {"id": "value", "field": "duration", "label": "Value", "type": "number"}
    payload.update(overrides)
    return ReportColumn.model_validate(payload)


def test_format_value_applies_display_hints() -> None:
    assert format_value(12.5, _column(format="currency"), currency_symbol="$") == "$12.50"
    assert format_value(0.256, _column(format="percent")) == "25.60%"
    assert format_value(Decimal("1.50"), _column()) == 1.5
    assert format_value(None, _column(format="currency")) is None


def test_format_value_renders_dates() -> None:
    moment = datetime(2024, 1, 7, 23, 30, tzinfo=timezone.utc)

    assert format_value(moment, _column(type="date")) == "2024-01-07"
    assert format_value("2024-01-07T23:30:00", _column(type="date")) == "2024-01-07"
    assert format_value(moment, _column(type="string")) == "2024-01-07T23:30:00+00:00"


def test_colliding_labels_keep_every_column_value(db_session, call_rows) -> None:
    definition = _definition(
        columns=[
            {"id": "a", "field": "status", "label": "Status"},
            {"id": "b", "field": "direction", "label": "Status"},
            {"id": "c", "field": "duration", "label": "Status_1"},
        ]
    )
    plan = build_query_plan(definition, date_range=FIRST_WEEK)

    page = execute_page(db_session, plan, page=1, page_size=1)

    assert page.rows == [{"Status": "completed", "Status_2": "outbound", "Status_1": 60}]
