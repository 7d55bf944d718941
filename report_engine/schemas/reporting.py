from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ReportType(str, Enum):
    CAMPAIGN = "campaign"
    AGENT = "agent"
    LEAD = "lead"
    CALL = "call"
    DISPOSITION = "disposition"
    CUSTOM = "custom"


class ReportColumnType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class ReportAggregateFn(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class ReportSortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ReportFilterOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "nin"
    LIKE = "like"
    BETWEEN = "between"

    @classmethod
    def _missing_(cls, value: object) -> "ReportFilterOperator | None":
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"not-in", "not_in", "notin"}:
                return cls.NOT_IN
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class ReportChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    AREA = "area"
    TABLE = "table"
    METRIC = "metric"
    HEATMAP = "heatmap"


class ReportExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    EXCEL = "excel"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    API = "api"


class ScheduleFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class DeliveryMethod(str, Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"
    SFTP = "sftp"
    STORAGE = "storage"


class ScheduleRunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ReportColumn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=120)
    field: str = Field(..., min_length=1, max_length=200)
    label: str = Field(..., min_length=1, max_length=200)
    type: ReportColumnType = ReportColumnType.STRING
    aggregation: Optional[ReportAggregateFn] = None
    format: Optional[str] = None
    visible: bool = True
    sortable: bool = False
    sort_order: Optional[ReportSortDirection] = Field(None, alias="sortOrder")
    sort_priority: Optional[int] = Field(None, alias="sortPriority")
    width: Optional[int] = Field(None, ge=0)


class ReportFilter(BaseModel):
    """A declared predicate. The operator is parsed by the planner so bad operators fail at plan time."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=120)
    field: str = Field(..., min_length=1, max_length=200)
    operator: str = Field(..., min_length=1, max_length=20)
    value: Any = None
    label: Optional[str] = None


class ReportGrouping(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field: str = Field(..., min_length=1, max_length=200)
    label: str
    order: Optional[ReportSortDirection] = None


class ReportVisualization(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: ReportChartType
    title: Optional[str] = None
    x_axis: Optional[str] = Field(None, alias="xAxis")
    y_axis: Optional[str] = Field(None, alias="yAxis")
    series: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    options: Optional[Dict[str, Any]] = None


class ReportDefinition(BaseModel):
    """The query-relevant part of a saved report."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    report_type: ReportType = Field(ReportType.CUSTOM, alias="type")
    primary_entity: str = Field("call", alias="primaryEntity")
    join_entities: List[str] = Field(default_factory=list, alias="joinEntities")
    columns: List[ReportColumn] = Field(..., min_length=1)
    filters: List[ReportFilter] = Field(default_factory=list)
    group_by: List[ReportGrouping] = Field(default_factory=list, alias="groupBy")
    date_field: Optional[str] = Field(None, alias="dateField")
    default_date_range: str = Field("last_7_days", alias="defaultDateRange")

    @field_validator("join_entities", "filters", "group_by", mode="before")
    @classmethod
    def _default_lists(cls, value: Optional[list]) -> list:
        return value or []

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Report name cannot be empty.")
        return cleaned


class ReportCreateRequest(ReportDefinition):
    description: Optional[str] = Field(None, max_length=2000)
    visualizations: List[ReportVisualization] = Field(default_factory=list)
    is_public: bool = Field(False, alias="isPublic")
    organization_id: Optional[str] = Field(None, alias="organizationId")


class ReportUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    report_type: Optional[ReportType] = Field(None, alias="type")
    primary_entity: Optional[str] = Field(None, alias="primaryEntity")
    join_entities: Optional[List[str]] = Field(None, alias="joinEntities")
    columns: Optional[List[ReportColumn]] = Field(None, min_length=1)
    filters: Optional[List[ReportFilter]] = None
    group_by: Optional[List[ReportGrouping]] = Field(None, alias="groupBy")
    date_field: Optional[str] = Field(None, alias="dateField")
    default_date_range: Optional[str] = Field(None, alias="defaultDateRange")
    visualizations: Optional[List[ReportVisualization]] = None
    is_public: Optional[bool] = Field(None, alias="isPublic")


class ReportDuplicateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class ReportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    report_type: ReportType = Field(..., alias="type")
    primary_entity: str = Field(..., alias="primaryEntity")
    join_entities: List[str] = Field(default_factory=list, alias="joinEntities")
    columns: List[ReportColumn]
    filters: List[ReportFilter] = Field(default_factory=list)
    group_by: List[ReportGrouping] = Field(default_factory=list, alias="groupBy")
    date_field: Optional[str] = Field(None, alias="dateField")
    default_date_range: str = Field(..., alias="defaultDateRange")
    visualizations: List[ReportVisualization] = Field(default_factory=list)
    is_public: bool = Field(..., alias="isPublic")
    is_system: bool = Field(..., alias="isSystem")
    created_by_id: Optional[str] = Field(None, alias="createdById")
    organization_id: Optional[str] = Field(None, alias="organizationId")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


def _parse_range_bound(value: Any) -> Any:
    if isinstance(value, str):
        cleaned = value.strip()
        if len(cleaned) == 10:
            return date.fromisoformat(cleaned)
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    return value


class ReportDateRange(BaseModel):
    """Inclusive range. Date-only bounds cover the whole day."""

    start: Union[datetime, date]
    end: Union[datetime, date]

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_bound(cls, value: Any) -> Any:
        return _parse_range_bound(value)


class ReportRunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_range: Optional[ReportDateRange] = Field(None, alias="dateRange")
    date_preset: Optional[str] = Field(None, alias="datePreset")
    filters: Dict[str, Any] = Field(default_factory=dict)
    page: int = Field(1, ge=1)
    page_size: Optional[int] = Field(None, alias="pageSize", ge=1)


class ReportExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_range: Optional[ReportDateRange] = Field(None, alias="dateRange")
    date_preset: Optional[str] = Field(None, alias="datePreset")
    filters: Dict[str, Any] = Field(default_factory=dict)
    format: ReportExportFormat = ReportExportFormat.CSV


class ReportRunResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    execution_id: UUID = Field(..., alias="executionId")
    columns: List[ReportColumn]
    rows: List[Dict[str, Any]]
    total_rows: int = Field(..., alias="totalRows")
    page: int
    page_size: int = Field(..., alias="pageSize")
    aggregates: Optional[Dict[str, Any]] = None


class ReportExportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    execution_id: UUID = Field(..., alias="executionId")
    file_name: str = Field(..., alias="fileName")
    download_url: str = Field(..., alias="downloadUrl")
    format: ReportExportFormat
    row_count: int = Field(..., alias="rowCount")
    file_size_bytes: int = Field(..., alias="fileSizeBytes")


class ReportExecutionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    report_id: UUID = Field(..., alias="reportId")
    schedule_id: Optional[UUID] = Field(None, alias="scheduleId")
    status: ExecutionStatus
    trigger: ExecutionTrigger
    parameters: Optional[Dict[str, Any]] = None
    row_count: Optional[int] = Field(None, alias="rowCount")
    file_name: Optional[str] = Field(None, alias="fileName")
    file_size_bytes: Optional[int] = Field(None, alias="fileSizeBytes")
    download_url: Optional[str] = Field(None, alias="downloadUrl")
    result_summary: Optional[Dict[str, Any]] = Field(None, alias="resultSummary")
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    duration_ms: Optional[int] = Field(None, alias="durationMs")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    error_details: Optional[Dict[str, Any]] = Field(None, alias="errorDetails")
    triggered_by_id: Optional[str] = Field(None, alias="triggeredById")
    created_at: datetime = Field(..., alias="createdAt")


_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ScheduleCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_id: UUID = Field(..., alias="reportId")
    name: str = Field(..., min_length=1, max_length=200)
    is_active: bool = Field(True, alias="isActive")
    frequency: ScheduleFrequency
    time: str = Field("08:00", pattern=_TIME_PATTERN)
    day_of_week: Optional[int] = Field(None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: Optional[int] = Field(None, alias="dayOfMonth", ge=1, le=31)
    timezone: Optional[str] = None
    delivery_method: DeliveryMethod = Field(..., alias="deliveryMethod")
    format: ReportExportFormat = ReportExportFormat.CSV
    email_recipients: Optional[List[str]] = Field(None, alias="emailRecipients")
    email_subject: Optional[str] = Field(None, alias="emailSubject")
    email_body: Optional[str] = Field(None, alias="emailBody")
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")
    webhook_headers: Optional[Dict[str, str]] = Field(None, alias="webhookHeaders")
    sftp_host: Optional[str] = Field(None, alias="sftpHost")
    sftp_port: Optional[int] = Field(None, alias="sftpPort", ge=1, le=65535)
    sftp_username: Optional[str] = Field(None, alias="sftpUsername")
    sftp_password: Optional[str] = Field(None, alias="sftpPassword")
    sftp_path: Optional[str] = Field(None, alias="sftpPath")
    date_range_override: Optional[str] = Field(None, alias="dateRangeOverride")
    retention_days: int = Field(30, alias="retentionDays", ge=1)

    @model_validator(mode="after")
    def _check_delivery_configuration(self) -> "ScheduleCreateRequest":
        if self.delivery_method == DeliveryMethod.EMAIL and not self.email_recipients:
            raise ValueError("Email delivery requires at least one recipient.")
        if self.delivery_method == DeliveryMethod.WEBHOOK and not self.webhook_url:
            raise ValueError("Webhook delivery requires a URL.")
        if self.delivery_method == DeliveryMethod.SFTP and not self.sftp_host:
            raise ValueError("SFTP delivery requires a host.")
        return self


class ScheduleUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    frequency: Optional[ScheduleFrequency] = None
    time: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    day_of_week: Optional[int] = Field(None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: Optional[int] = Field(None, alias="dayOfMonth", ge=1, le=31)
    timezone: Optional[str] = None
    delivery_method: Optional[DeliveryMethod] = Field(None, alias="deliveryMethod")
    format: Optional[ReportExportFormat] = None
    email_recipients: Optional[List[str]] = Field(None, alias="emailRecipients")
    email_subject: Optional[str] = Field(None, alias="emailSubject")
    email_body: Optional[str] = Field(None, alias="emailBody")
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")
    webhook_headers: Optional[Dict[str, str]] = Field(None, alias="webhookHeaders")
    sftp_host: Optional[str] = Field(None, alias="sftpHost")
    sftp_port: Optional[int] = Field(None, alias="sftpPort", ge=1, le=65535)
    sftp_username: Optional[str] = Field(None, alias="sftpUsername")
    sftp_password: Optional[str] = Field(None, alias="sftpPassword")
    sftp_path: Optional[str] = Field(None, alias="sftpPath")
    date_range_override: Optional[str] = Field(None, alias="dateRangeOverride")
    retention_days: Optional[int] = Field(None, alias="retentionDays", ge=1)


class ScheduleToggleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_active: bool = Field(..., alias="isActive")


class ScheduleResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    report_id: UUID = Field(..., alias="reportId")
    name: str
    is_active: bool = Field(..., alias="isActive")
    frequency: ScheduleFrequency
    time: str
    day_of_week: Optional[int] = Field(None, alias="dayOfWeek")
    day_of_month: Optional[int] = Field(None, alias="dayOfMonth")
    timezone: str
    delivery_method: DeliveryMethod = Field(..., alias="deliveryMethod")
    format: ReportExportFormat
    email_recipients: Optional[List[str]] = Field(None, alias="emailRecipients")
    email_subject: Optional[str] = Field(None, alias="emailSubject")
    email_body: Optional[str] = Field(None, alias="emailBody")
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")
    webhook_headers: Optional[Dict[str, str]] = Field(None, alias="webhookHeaders")
    sftp_host: Optional[str] = Field(None, alias="sftpHost")
    sftp_port: Optional[int] = Field(None, alias="sftpPort")
    sftp_username: Optional[str] = Field(None, alias="sftpUsername")
    sftp_path: Optional[str] = Field(None, alias="sftpPath")
    date_range_override: Optional[str] = Field(None, alias="dateRangeOverride")
    retention_days: int = Field(..., alias="retentionDays")
    last_run_at: Optional[datetime] = Field(None, alias="lastRunAt")
    next_run_at: Optional[datetime] = Field(None, alias="nextRunAt")
    last_run_status: Optional[ScheduleRunStatus] = Field(None, alias="lastRunStatus")
    last_run_error: Optional[str] = Field(None, alias="lastRunError")
    total_runs: int = Field(..., alias="totalRuns")
    failed_runs: int = Field(..., alias="failedRuns")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class SeedSystemReportsResponse(BaseModel):
    created: List[str]


__all__ = [
    "DeliveryMethod",
    "ExecutionStatus",
    "ExecutionTrigger",
    "ReportAggregateFn",
    "ReportChartType",
    "ReportColumn",
    "ReportColumnType",
    "ReportCreateRequest",
    "ReportDateRange",
    "ReportDefinition",
    "ReportDuplicateRequest",
    "ReportExecutionResponse",
    "ReportExportFormat",
    "ReportExportRequest",
    "ReportExportResponse",
    "ReportFilter",
    "ReportFilterOperator",
    "ReportGrouping",
    "ReportResponse",
    "ReportRunRequest",
    "ReportRunResponse",
    "ReportSortDirection",
    "ReportType",
    "ReportUpdateRequest",
    "ReportVisualization",
    "ScheduleCreateRequest",
    "ScheduleFrequency",
    "ScheduleResponse",
    "ScheduleRunStatus",
    "ScheduleToggleRequest",
    "ScheduleUpdateRequest",
    "SeedSystemReportsResponse",
]
