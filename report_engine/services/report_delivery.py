"""Hand exported report files to the channel configured on their schedule."""

from __future__ import annotations

import base64
import json
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import requests

from report_engine.config import get_settings
from report_engine.models import ReportSchedule
from report_engine.schemas.reporting import DeliveryMethod
from report_engine.services.report_errors import DeliveryError
from report_engine.services.report_exporter import ExportArtifact
from report_engine.services.report_scheduling import utcnow

logger = logging.getLogger(__name__)


class SftpTransfer(Protocol):
    def upload(
        self,
        *,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        remote_dir: Optional[str],
        local_path: str,
    ) -> None: ...


class DeliveryChannel(Protocol):
    def deliver(self, schedule: ReportSchedule, artifact: ExportArtifact) -> None: ...


class EmailDeliveryChannel:
    def __init__(self, *, settings_provider=get_settings, smtp_factory: Callable[..., Any] = smtplib.SMTP) -> None:
        self._settings_provider = settings_provider
        self._smtp_factory = smtp_factory

    def deliver(self, schedule: ReportSchedule, artifact: ExportArtifact) -> None:
        settings = self._settings_provider()
        recipients = [address.strip() for address in schedule.email_recipients or [] if address.strip()]
        if not recipients:
            raise DeliveryError(f"Schedule '{schedule.name}' has no email recipients.")
        if not settings.smtp_host:
            raise DeliveryError("Email delivery requires SMTP_HOST to be configured.")

        report_name = schedule.report.name if schedule.report is not None else schedule.name
        message = EmailMessage()
        message["From"] = f"{settings.smtp_from_name} <{settings.smtp_from_email}>"
        message["To"] = ", ".join(recipients)
        message["Subject"] = schedule.email_subject or f"Scheduled report: {report_name}"
        message.set_content(schedule.email_body or f"Attached is the latest export of {report_name}.")
        maintype, _, subtype = artifact.media_type.partition("/")
        if maintype == "text":
            # Byte payloads cannot carry a text/* content type.
            maintype, subtype = "application", "octet-stream"
        message.add_attachment(
            artifact.path.read_bytes(),
            maintype=maintype,
            subtype=subtype,
            filename=artifact.file_name,
        )

        try:
            with self._smtp_factory(settings.smtp_host, settings.smtp_port, timeout=30) as server:
                if settings.smtp_use_tls:
                    server.starttls()
                if settings.smtp_user and settings.smtp_password:
                    server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"Failed to send report email: {exc}") from exc

        logger.info("Emailed %s to %s", artifact.file_name, ", ".join(recipients))


class WebhookDeliveryChannel:
    def __init__(self, *, settings_provider=get_settings, request_client: Optional[Callable[..., Any]] = None) -> None:
        self._settings_provider = settings_provider
        self._request_client = request_client or requests.post

    def deliver(self, schedule: ReportSchedule, artifact: ExportArtifact) -> None:
        if not schedule.webhook_url:
            raise DeliveryError(f"Schedule '{schedule.name}' has no webhook URL.")

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        headers.update(schedule.webhook_headers or {})
        body = self._build_payload(schedule, artifact)

        try:
            response = self._request_client(
                schedule.webhook_url,
                headers=headers,
                data=json.dumps(body),
                timeout=self._settings_provider().webhook_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"Webhook delivery failed: {exc}") from exc

        status_code = getattr(response, "status_code", None)
        if status_code is None or not 200 <= status_code < 300:
            raise DeliveryError(f"Webhook responded with status {status_code}.")

        logger.info("Posted %s to webhook %s", artifact.file_name, schedule.webhook_url)

    def _build_payload(self, schedule: ReportSchedule, artifact: ExportArtifact) -> dict[str, Any]:
        return {
            "reportId": str(schedule.report_id),
            "scheduleId": str(schedule.id),
            "fileName": artifact.file_name,
            "content": base64.b64encode(artifact.path.read_bytes()).decode("ascii"),
            "timestamp": utcnow().isoformat(),
        }


class SftpDeliveryChannel:
    def __init__(self, transfer: Optional[SftpTransfer] = None) -> None:
        self._transfer = transfer

    def deliver(self, schedule: ReportSchedule, artifact: ExportArtifact) -> None:
        if self._transfer is None:
            raise DeliveryError("SFTP delivery is not configured on this server.")
        if not schedule.sftp_host:
            raise DeliveryError(f"Schedule '{schedule.name}' has no SFTP host.")
        try:
            self._transfer.upload(
                host=schedule.sftp_host,
                port=schedule.sftp_port or 22,
                username=schedule.sftp_username,
                password=schedule.sftp_password,
                remote_dir=schedule.sftp_path,
                local_path=str(artifact.path),
            )
        except DeliveryError:
            raise
        except Exception as exc:
            raise DeliveryError(f"SFTP delivery failed: {exc}") from exc
        logger.info("Uploaded %s to sftp://%s%s", artifact.file_name, schedule.sftp_host, schedule.sftp_path or "/")


class StorageDeliveryChannel:
    def deliver(self, schedule: ReportSchedule, artifact: ExportArtifact) -> None:
        logger.info("Report for schedule %s kept at %s", schedule.id, artifact.path)


class ReportDeliveryRouter:
    def __init__(
        self,
        channels: Optional[Mapping[DeliveryMethod, DeliveryChannel]] = None,
        *,
        sftp_transfer: Optional[SftpTransfer] = None,
    ) -> None:
        self._channels: Dict[DeliveryMethod, DeliveryChannel] = {
            DeliveryMethod.EMAIL: EmailDeliveryChannel(),
            DeliveryMethod.WEBHOOK: WebhookDeliveryChannel(),
            DeliveryMethod.SFTP: SftpDeliveryChannel(sftp_transfer),
            DeliveryMethod.STORAGE: StorageDeliveryChannel(),
        }
        if channels:
            self._channels.update(channels)

    def deliver(self, schedule: ReportSchedule, artifact: ExportArtifact) -> None:
        try:
            method = DeliveryMethod(schedule.delivery_method)
        except ValueError as exc:
            raise DeliveryError(f"Unknown delivery method '{schedule.delivery_method}'.") from exc
        self._channels[method].deliver(schedule, artifact)


__all__ = [
    "DeliveryChannel",
    "EmailDeliveryChannel",
    "ReportDeliveryRouter",
    "SftpDeliveryChannel",
    "SftpTransfer",
    "StorageDeliveryChannel",
    "WebhookDeliveryChannel",
]
