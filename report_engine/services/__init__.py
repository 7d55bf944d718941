from report_engine.services.report_errors import (
    DefinitionError,
    DeliveryError,
    ExecutionError,
    ExportError,
    ReportEngineError,
)
from report_engine.services.report_scheduler import ScheduledReportEngine, scheduled_report_engine

__all__ = [
    "DefinitionError",
    "DeliveryError",
    "ExecutionError",
    "ExportError",
    "ReportEngineError",
    "ScheduledReportEngine",
    "scheduled_report_engine",
]
