from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from report_engine.config import get_settings
from report_engine.database import SessionLocal
from report_engine.models import ReportExecution, ReportSchedule
from report_engine.schemas.reporting import ExecutionTrigger, ReportExportRequest, ScheduleRunStatus
from report_engine.services.report_delivery import ReportDeliveryRouter
from report_engine.services.report_runner import export_report
from report_engine.services.report_scheduling import (
    ensure_utc,
    next_run_for_schedule,
    schedule_date_range,
    utcnow,
)
from report_engine.services.report_storage import ReportFileStorage, get_report_storage

logger = logging.getLogger(__name__)


class ScheduledReportEngine:
    """Polls report schedules on a fixed tick and fires the ones that are due."""

    JOB_ID = "report-schedule-tick"

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        delivery: ReportDeliveryRouter | None = None,
        storage: ReportFileStorage | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._delivery = delivery
        self._storage = storage
        self._clock = clock
        self._tick_lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None

    @property
    def delivery(self) -> ReportDeliveryRouter:
        if self._delivery is None:
            self._delivery = ReportDeliveryRouter()
        return self._delivery

    @property
    def storage(self) -> ReportFileStorage:
        if self._storage is None:
            self._storage = get_report_storage()
        return self._storage

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        interval = get_settings().report_scheduler_tick_seconds
        self._scheduler = BackgroundScheduler(timezone=timezone.utc)
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=interval),
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Report scheduler started with a %ss tick", interval)

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Report scheduler stopped")

    def tick(self, now: Optional[datetime] = None) -> int:
        """Fire every due schedule in turn; returns how many were attempted."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous report scheduler tick is still running; skipping this one")
            return 0
        try:
            reference = ensure_utc(now) or self._clock()
            logger.debug("Report scheduler tick at %s", reference.isoformat())
            try:
                due = self._due_schedule_ids(reference)
            except SQLAlchemyError:
                logger.exception("Unable to load due report schedules")
                return 0

            for schedule_id in due:
                try:
                    self.run_schedule(schedule_id, now=reference)
                except Exception:  # noqa: B902
                    logger.exception("Unhandled error while running report schedule %s", schedule_id)

            try:
                self.purge_expired_artifacts(reference)
            except Exception:  # noqa: B902
                logger.exception("Report artifact retention sweep failed")
            return len(due)
        finally:
            self._tick_lock.release()

    def run_schedule(
        self,
        schedule_id: UUID,
        *,
        now: Optional[datetime] = None,
        trigger: ExecutionTrigger = ExecutionTrigger.SCHEDULED,
    ) -> bool:
        """Export and deliver one schedule's report, then record the outcome. Never raises."""
        reference = ensure_utc(now) or self._clock()
        try:
            with self._session_scope() as session:
                schedule = session.get(ReportSchedule, schedule_id)
                if schedule is None:
                    logger.info("Skipping report schedule %s because it no longer exists", schedule_id)
                    return False
                logger.info("Running scheduled report '%s' (%s)", schedule.name, schedule.id)
                result = export_report(
                    session,
                    schedule.report,
                    ReportExportRequest(format=schedule.format),
                    trigger=trigger,
                    schedule_id=schedule.id,
                    date_range=schedule_date_range(schedule, now=reference),
                    storage=self.storage,
                    retention_days=schedule.retention_days,
                )
                self.delivery.deliver(schedule, result.artifact)
        except Exception as exc:  # noqa: B902
            logger.exception("Report schedule %s failed", schedule_id)
            self._record_outcome(schedule_id, reference, error=exc)
            return False

        self._record_outcome(schedule_id, reference, error=None)
        return True

    def trigger_now(self, schedule_id: UUID) -> bool:
        """Run a schedule immediately. Waits for an in-flight tick so the two never overlap."""
        with self._tick_lock:
            return self.run_schedule(schedule_id, trigger=ExecutionTrigger.MANUAL)

    def purge_expired_artifacts(self, now: Optional[datetime] = None) -> int:
        """Delete artifact files past their expiry. Execution records stay, without a file."""
        reference = ensure_utc(now) or self._clock()
        removed = 0
        with self._session_scope() as session:
            expired = session.execute(
                select(ReportExecution)
                .where(ReportExecution.file_path.is_not(None))
                .where(ReportExecution.artifact_expires_at.is_not(None))
                .where(ReportExecution.artifact_expires_at <= reference)
            ).scalars().all()
            for execution in expired:
                try:
                    if self.storage.delete(execution.file_path):
                        removed += 1
                except OSError:
                    logger.exception("Unable to remove expired report artifact %s", execution.file_path)
                    continue
                execution.file_path = None
                execution.download_url = None
        return removed

    def _due_schedule_ids(self, reference: datetime) -> list[UUID]:
        with self._session_scope() as session:
            statement = (
                select(ReportSchedule.id)
                .where(ReportSchedule.is_active.is_(True))
                .where(ReportSchedule.next_run_at.is_not(None))
                .where(ReportSchedule.next_run_at <= reference)
                .order_by(ReportSchedule.next_run_at)
            )
            return list(session.execute(statement).scalars())

    def _record_outcome(self, schedule_id: UUID, reference: datetime, *, error: BaseException | None) -> None:
        try:
            with self._session_scope() as session:
                schedule = session.get(ReportSchedule, schedule_id)
                if schedule is None:
                    return
                schedule.last_run_at = reference
                schedule.total_runs = ReportSchedule.total_runs + 1
                if error is None:
                    schedule.last_run_status = ScheduleRunStatus.SUCCESS.value
                    schedule.last_run_error = None
                else:
                    schedule.last_run_status = ScheduleRunStatus.FAILED.value
                    schedule.last_run_error = (str(error) or error.__class__.__name__)[:2000]
                    schedule.failed_runs = ReportSchedule.failed_runs + 1
                if schedule.is_active:
                    try:
                        schedule.next_run_at = next_run_for_schedule(schedule, now=reference)
                    except ValueError:
                        logger.exception("Schedule %s has an invalid cadence; pausing it", schedule_id)
                        schedule.is_active = False
                        schedule.next_run_at = None
                else:
                    schedule.next_run_at = None
        except SQLAlchemyError:
            logger.exception("Unable to record the outcome of report schedule %s", schedule_id)

    @contextmanager
    def _session_scope(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        session.expire_on_commit = False
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


scheduled_report_engine = ScheduledReportEngine()


__all__ = ["ScheduledReportEngine", "scheduled_report_engine"]
