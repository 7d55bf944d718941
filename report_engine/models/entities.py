import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from report_engine.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class Report(Base, TimestampMixin):
    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = mapped_column(
        "report_id",
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    report_type: Mapped[str] = mapped_column(
        sa.Enum(
            "campaign",
            "agent",
            "lead",
            "call",
            "disposition",
            "custom",
            name="report_type_enum",
        ),
        nullable=False,
        default="custom",
    )
    primary_entity: Mapped[str] = mapped_column(String(60), nullable=False, default="call")
    join_entities: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    columns: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    filters: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    group_by: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    date_field: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    default_date_range: Mapped[str] = mapped_column(String(40), nullable=False, default="last_7_days")
    visualizations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)

    schedules: Mapped[list["ReportSchedule"]] = relationship(
        "ReportSchedule",
        back_populates="report",
        cascade="all, delete-orphan",
    )
    executions: Mapped[list["ReportExecution"]] = relationship(
        "ReportExecution",
        back_populates="report",
        cascade="all, delete-orphan",
    )


class ReportSchedule(Base, TimestampMixin):
    __tablename__ = "report_schedules"
    __table_args__ = (
        sa.Index("ix_report_schedules_due", "is_active", "next_run_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        "report_schedule_id",
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    report_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("reports.report_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    frequency: Mapped[str] = mapped_column(
        sa.Enum(
            "daily",
            "weekly",
            "monthly",
            "quarterly",
            name="report_schedule_frequency_enum",
        ),
        nullable=False,
    )
    time: Mapped[str] = mapped_column(String(5), nullable=False, default="08:00")
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timezone: Mapped[str] = mapped_column(String(60), nullable=False, default="America/New_York")
    delivery_method: Mapped[str] = mapped_column(
        sa.Enum(
            "email",
            "webhook",
            "sftp",
            "storage",
            name="report_delivery_method_enum",
        ),
        nullable=False,
    )
    format: Mapped[str] = mapped_column(
        sa.Enum("csv", "json", "excel", name="report_export_format_enum"),
        nullable=False,
        default="csv",
    )
    email_recipients: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    email_subject: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    email_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    webhook_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    webhook_headers: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    sftp_host: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sftp_port: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sftp_username: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    sftp_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sftp_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    date_range_override: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_run_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_runs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_runs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    report: Mapped[Report] = relationship("Report", back_populates="schedules")
    executions: Mapped[list["ReportExecution"]] = relationship(
        "ReportExecution",
        back_populates="schedule",
    )


class ReportExecution(Base, TimestampMixin):
    __tablename__ = "report_executions"
    __table_args__ = (
        sa.Index("ix_report_executions_report_created", "report_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        "report_execution_id",
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    report_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("reports.report_id", ondelete="CASCADE"),
        nullable=False,
    )
    schedule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("report_schedules.report_schedule_id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        sa.Enum(
            "pending",
            "running",
            "completed",
            "failed",
            "cancelled",
            name="report_execution_status_enum",
        ),
        nullable=False,
        default="pending",
    )
    trigger: Mapped[str] = mapped_column(
        sa.Enum("manual", "scheduled", "api", name="report_execution_trigger_enum"),
        nullable=False,
        default="manual",
    )
    parameters: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    row_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    file_path: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    file_size_bytes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    download_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    artifact_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    result_summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    triggered_by_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    report: Mapped[Report] = relationship("Report", back_populates="executions")
    schedule: Mapped[Optional[ReportSchedule]] = relationship(
        "ReportSchedule", back_populates="executions"
    )
