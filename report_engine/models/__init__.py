from report_engine.models.entities import Report, ReportExecution, ReportSchedule, TimestampMixin

__all__ = [
    "Report",
    "ReportExecution",
    "ReportSchedule",
    "TimestampMixin",
]
