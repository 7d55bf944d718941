"""Built-in report definitions seeded for every installation."""

from __future__ import annotations

from typing import Any, Dict, List

SYSTEM_REPORTS: List[Dict[str, Any]] = [
    {
        "name": "Campaign Performance Summary",
        "description": "Overview of campaign metrics including calls, answer rates, and conversions",
        "type": "campaign",
        "primaryEntity": "call",
        "joinEntities": ["campaign"],
        "columns": [
            {"id": "campaign_name", "field": "campaign.name", "label": "Campaign", "type": "string", "sortable": True},
            {
                "id": "total_calls",
                "field": "id",
                "label": "Total Calls",
                "type": "number",
                "aggregation": "count",
                "sortable": True,
            },
            {
                "id": "avg_duration",
                "field": "duration",
                "label": "Avg Duration",
                "type": "number",
                "aggregation": "avg",
                "sortable": True,
            },
        ],
        "groupBy": [{"field": "campaignId", "label": "Campaign"}],
        "dateField": "createdAt",
        "defaultDateRange": "last_7_days",
    },
    {
        "name": "Agent Activity Report",
        "description": "Agent performance metrics and call statistics",
        "type": "agent",
        "primaryEntity": "call",
        "joinEntities": ["agent"],
        "columns": [
            {"id": "agent_name", "field": "agent.name", "label": "Agent", "type": "string", "sortable": True},
            {
                "id": "total_calls",
                "field": "id",
                "label": "Calls Handled",
                "type": "number",
                "aggregation": "count",
                "sortable": True,
            },
            {
                "id": "total_duration",
                "field": "duration",
                "label": "Total Talk Time",
                "type": "number",
                "aggregation": "sum",
                "sortable": True,
            },
        ],
        "groupBy": [{"field": "agentId", "label": "Agent"}],
        "dateField": "createdAt",
        "defaultDateRange": "today",
    },
    {
        "name": "Call Detail Records",
        "description": "Detailed listing of all calls with timestamps and outcomes",
        "type": "call",
        "primaryEntity": "call",
        "columns": [
            {
                "id": "created_at",
                "field": "createdAt",
                "label": "Date/Time",
                "type": "date",
                "sortable": True,
                "sortOrder": "desc",
                "sortPriority": 1,
            },
            {"id": "direction", "field": "direction", "label": "Direction", "type": "string", "sortable": True},
            {"id": "from", "field": "fromNumber", "label": "From", "type": "string"},
            {"id": "to", "field": "toNumber", "label": "To", "type": "string"},
            {"id": "status", "field": "status", "label": "Status", "type": "string", "sortable": True},
            {"id": "duration", "field": "duration", "label": "Duration (s)", "type": "number", "sortable": True},
        ],
        "dateField": "createdAt",
        "defaultDateRange": "today",
    },
]

__all__ = ["SYSTEM_REPORTS"]
