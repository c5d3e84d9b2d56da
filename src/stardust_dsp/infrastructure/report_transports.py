"""Report delivery transports: email, FTP, S3, HTTP API and signed webhook."""

from __future__ import annotations

import base64
import ftplib
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Callable, Mapping

import requests
from minio import Minio
from minio.error import S3Error
from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Cc,
    Content,
    Disposition,
    Email,
    FileContent,
    FileName,
    FileType,
    Mail,
    To,
)

from stardust_dsp.application.ports import ReportArtifact
from stardust_dsp.errors import ReportDeliveryError

LOGGER = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def _file_name(report: Mapping[str, Any]) -> str:
    return str(report.get("fileName", "report")).rsplit("/", 1)[-1]


def _require(distributor: Mapping[str, Any], key: str, message: str) -> Any:
    value = distributor.get(key)
    if not value:
        raise ReportDeliveryError(message)
    return value


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 hex digest over the exact request body."""

    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_payload(secret, body), signature)


def _email_body(report: Mapping[str, Any], distributor: Mapping[str, Any]) -> str:
    period = report.get("period") or {}
    statistics = report.get("statistics") or {}
    return (
        f"Dear {distributor.get('name', distributor.get('distributorId', 'partner'))},\n\n"
        f"Please find attached your {report.get('type')} report for the period "
        f"{period.get('startDate')} to {period.get('endDate')}.\n\n"
        "Report summary:\n"
        f"  Total tracks: {statistics.get('totalTracks', 0)}\n"
        f"  Total plays: {statistics.get('totalPlays', 0)}\n"
        f"  Total revenue: ${float(statistics.get('totalRevenue') or 0):.2f}\n\n"
        "Best regards,\nStardust DSP Team\n"
    )


@dataclass
class EmailTransport:
    """Sends the report as an attachment through SendGrid."""

    api_key: str | None = None
    sender: str = "reports@stardust-dsp.org"
    client_factory: Callable[..., SendGridAPIClient] = SendGridAPIClient
    method: str = "email"

    def deliver(self, artifact: ReportArtifact, distributor: Mapping[str, Any]) -> dict[str, Any]:
        recipient = _require(distributor, "email", "Distributor email not configured")
        if not self.api_key:
            raise ReportDeliveryError("SendGrid API key not configured")
        cc = list(distributor.get("ccEmails") or [])
        report = artifact.report
        period = report.get("period") or {}

        message = Mail(
            from_email=Email(self.sender),
            to_emails=To(recipient),
            subject=f"{report.get('type')} Report - {period.get('startDate')} to {period.get('endDate')}",
        )
        message.add_content(Content("text/plain", _email_body(report, distributor)))
        for address in cc:
            message.add_cc(Cc(address))
        message.add_attachment(
            Attachment(
                FileContent(base64.b64encode(artifact.content).decode("ascii")),
                FileName(_file_name(report)),
                FileType(str(report.get("mimeType") or "application/octet-stream")),
                Disposition("attachment"),
            )
        )

        try:
            response = self.client_factory(api_key=self.api_key).send(message)
        except HTTPError as exc:
            raise ReportDeliveryError(f"Email delivery failed: HTTP {exc.status_code} {exc.reason}") from exc
        except OSError as exc:
            raise ReportDeliveryError(f"Email delivery failed: {exc}") from exc
        if response.status_code not in (200, 201, 202):
            raise ReportDeliveryError(f"Email delivery failed: HTTP {response.status_code}")

        LOGGER.info(
            "report_email_sent",
            extra={"report_id": report.get("reportId"), "recipient": recipient, "status_code": response.status_code},
        )
        return {"success": True, "method": self.method, "recipients": [recipient, *cc]}


@dataclass
class FtpTransport:
    timeout_seconds: float = 30.0
    method: str = "ftp"

    def deliver(self, artifact: ReportArtifact, distributor: Mapping[str, Any]) -> dict[str, Any]:
        config = _require(distributor, "ftpConfig", "FTP configuration not found for distributor")
        host = config.get("host")
        if not host:
            raise ReportDeliveryError("FTP configuration has no host")
        directory = str(config.get("directory") or "/").rstrip("/")
        remote_path = f"{directory}/{_file_name(artifact.report)}"

        client: ftplib.FTP = ftplib.FTP_TLS() if config.get("secure") else ftplib.FTP()
        try:
            client.connect(host, int(config.get("port") or 21), timeout=self.timeout_seconds)
            client.login(config.get("username") or "anonymous", config.get("password") or "")
            if isinstance(client, ftplib.FTP_TLS):
                client.prot_p()
            client.storbinary(f"STOR {remote_path}", BytesIO(artifact.content))
        except ftplib.all_errors as exc:
            raise ReportDeliveryError(f"FTP delivery failed: {exc}") from exc
        finally:
            client.close()

        return {"success": True, "method": self.method, "remotePath": remote_path, "server": host}


@dataclass
class S3Transport:
    client_factory: Callable[..., Any] = Minio
    method: str = "s3"

    def deliver(self, artifact: ReportArtifact, distributor: Mapping[str, Any]) -> dict[str, Any]:
        config = _require(distributor, "s3Config", "S3 configuration not found for distributor")
        bucket = config.get("bucket")
        if not bucket:
            raise ReportDeliveryError("S3 configuration has no bucket")
        report = artifact.report
        period = report.get("period") or {}
        key = f"{config.get('prefix') or ''}{_file_name(report)}"

        try:
            client = self.client_factory(
                endpoint=config.get("endpoint", "s3.amazonaws.com"),
                access_key=config.get("accessKeyId"),
                secret_key=config.get("secretAccessKey"),
                secure=config.get("secure", True),
                region=config.get("region"),
            )
            client.put_object(
                bucket_name=bucket,
                object_name=key,
                data=BytesIO(artifact.content),
                length=len(artifact.content),
                content_type=report.get("mimeType") or "application/octet-stream",
                metadata={
                    "reportId": str(report.get("reportId")),
                    "reportType": str(report.get("type")),
                    "period": f"{period.get('startDate')}_{period.get('endDate')}",
                },
            )
        except (S3Error, ValueError, OSError) as exc:
            raise ReportDeliveryError(f"S3 delivery failed: {exc}") from exc

        return {"success": True, "method": self.method, "bucket": bucket, "key": key, "region": config.get("region")}


@dataclass
class ApiTransport:
    session: requests.Session
    timeout_seconds: float = 30.0
    method: str = "api"

    def deliver(self, artifact: ReportArtifact, distributor: Mapping[str, Any]) -> dict[str, Any]:
        config = _require(distributor, "apiConfig", "API configuration not found for distributor")
        endpoint = config.get("endpoint")
        if not endpoint:
            raise ReportDeliveryError("API configuration has no endpoint")

        headers = {"Content-Type": artifact.report.get("mimeType") or "application/octet-stream"}
        headers.update(config.get("headers") or {})
        if config.get("authType") == "bearer":
            headers["Authorization"] = f"Bearer {config.get('token')}"
        elif config.get("authType") == "apikey":
            headers[config.get("apiKeyHeader") or "X-API-Key"] = str(config.get("apiKey"))

        try:
            response = self.session.request(
                config.get("method") or "POST",
                endpoint,
                data=artifact.content,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ReportDeliveryError(f"API delivery failed: {exc}") from exc
        if not response.ok:
            raise ReportDeliveryError(f"API delivery failed: {response.status_code} {response.reason}")

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return {"success": True, "method": self.method, "endpoint": endpoint, "response": body}


@dataclass
class WebhookTransport:
    session: requests.Session
    timeout_seconds: float = 30.0
    method: str = "webhook"

    def deliver(self, artifact: ReportArtifact, distributor: Mapping[str, Any]) -> dict[str, Any]:
        url = _require(distributor, "webhookUrl", "Webhook URL not configured for distributor")
        report = artifact.report
        payload = {
            "event": "report.ready",
            "reportId": report.get("reportId"),
            "type": report.get("type"),
            "format": report.get("format"),
            "period": report.get("period"),
            "territory": report.get("territory"),
            "downloadUrl": artifact.download_url,
            "expiresAt": artifact.expires_at,
            "statistics": report.get("statistics"),
            "generatedAt": report.get("generatedAt"),
        }
        body = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        secret = distributor.get("webhookSecret")
        if secret:
            headers[SIGNATURE_HEADER] = sign_payload(secret, body)

        try:
            response = self.session.post(url, data=body, headers=headers, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise ReportDeliveryError(f"Webhook delivery failed: {exc}") from exc
        if not response.ok:
            raise ReportDeliveryError(f"Webhook delivery failed: {response.status_code} {response.reason}")

        LOGGER.debug("webhook_sent", extra={"url": url, "signed": bool(secret)})
        return {"success": True, "method": self.method, "webhookUrl": url, "downloadUrl": artifact.download_url}
