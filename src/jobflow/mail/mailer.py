from __future__ import annotations

import html
import json
import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from pathlib import Path
from typing import Protocol

from jobflow.config import Settings, get_settings
from jobflow.db.base import utcnow
from jobflow.errors import DeliveryFailed, TransientInfraError, ValidationError
from jobflow.types import CandidateProfileData, PostingData

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class Mailer(Protocol):
    sandbox: bool

    def send(
        self,
        profile: CandidateProfileData,
        posting: PostingData,
        text: str,
        destination: str,
        *,
        attachment: Attachment | None = None,
    ) -> str: ...


def compose_subject(profile: CandidateProfileData, posting: PostingData) -> str:
    subject = f"Application for {posting.title} position"
    if profile.name:
        subject = f"{subject} - {profile.name}"
    return subject


def text_to_html(text: str) -> str:
    body = html.escape(text).replace("\n", "<br>")
    return f'<div style="font-family: Arial, sans-serif; line-height: 1.6;">{body}</div>'


def _validate_destination(destination: str) -> None:
    if not destination or "@" not in destination:
        raise ValidationError(f"invalid destination address {destination!r}")


class SmtpMailer:
    sandbox = False

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(
        self,
        profile: CandidateProfileData,
        posting: PostingData,
        text: str,
        destination: str,
        *,
        attachment: Attachment | None = None,
    ) -> str:
        _validate_destination(destination)
        sender = self.settings.mail_from or self.settings.smtp_username
        message_id = make_msgid(domain=sender.split("@")[-1] if "@" in sender else None)

        msg = MIMEMultipart("mixed")
        msg["From"] = sender
        msg["To"] = destination
        msg["Subject"] = compose_subject(profile, posting)
        msg["Message-ID"] = message_id
        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text, "plain", "utf-8"))
        body.attach(MIMEText(text_to_html(text), "html", "utf-8"))
        msg.attach(body)
        if attachment is not None:
            part = MIMEApplication(attachment.content, _subtype=attachment.content_type.split("/")[-1])
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)

        try:
            with smtplib.SMTP(
                self.settings.smtp_host,
                self.settings.smtp_port,
                timeout=self.settings.smtp_timeout_sec,
            ) as server:
                if self.settings.smtp_use_tls:
                    server.starttls()
                server.login(self.settings.smtp_username, self.settings.smtp_password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as exc:
            raise DeliveryFailed(f"SMTP authentication rejected: {exc}") from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise DeliveryFailed(f"recipient refused: {destination}") from exc
        except smtplib.SMTPResponseException as exc:
            if 500 <= exc.smtp_code < 600:
                raise DeliveryFailed(f"SMTP permanent failure {exc.smtp_code}: {exc.smtp_error!r}") from exc
            raise TransientInfraError(f"SMTP temporary failure {exc.smtp_code}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise TransientInfraError(f"SMTP unavailable: {exc}") from exc

        logger.info("Sent application mail posting=%s to=%s id=%s", posting.id, destination, message_id)
        return message_id


class SandboxMailer:
    sandbox = True

    def __init__(self, outbox_dir: Path, *, sender: str = "sandbox@jobflow.local"):
        self.outbox_dir = outbox_dir
        self.sender = sender

    def send(
        self,
        profile: CandidateProfileData,
        posting: PostingData,
        text: str,
        destination: str,
        *,
        attachment: Attachment | None = None,
    ) -> str:
        _validate_destination(destination)
        delivery_id = f"sandbox-{uuid.uuid4().hex[:12]}"
        subject = compose_subject(profile, posting)
        stamp = utcnow().strftime("%Y%m%d%H%M%S")
        payload = {
            "id": delivery_id,
            "from": self.sender,
            "to": destination,
            "subject": subject,
            "text": text,
            "html": text_to_html(text),
            "attachments": (
                [{"filename": attachment.filename, "size": len(attachment.content)}] if attachment else []
            ),
            "profile_id": profile.id,
            "posting_id": posting.id,
            "timestamp": utcnow().isoformat(),
        }

        self.outbox_dir.mkdir(parents=True, exist_ok=True)
        json_path = self.outbox_dir / f"email-{stamp}-{delivery_id}.json"
        html_path = self.outbox_dir / f"email-{stamp}-{delivery_id}.html"
        json_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        html_path.write_text(self._preview(payload), encoding="utf-8")

        logger.info("Sandbox mail written to %s", json_path)
        return delivery_id

    def _preview(self, payload: dict) -> str:
        attachments = "".join(
            f"<p><strong>Attachment:</strong> {html.escape(item['filename'])}</p>" for item in payload["attachments"]
        )
        return (
            "<!DOCTYPE html>\n<html>\n<head>"
            f"<title>{html.escape(payload['subject'])}</title></head>\n<body>\n"
            f"<p><strong>Subject:</strong> {html.escape(payload['subject'])}</p>\n"
            f"<p><strong>From:</strong> {html.escape(payload['from'])}</p>\n"
            f"<p><strong>To:</strong> {html.escape(payload['to'])}</p>\n"
            f"{payload['html']}\n{attachments}\n</body>\n</html>\n"
        )


def build_mailer(settings: Settings | None = None) -> Mailer:
    settings = settings or get_settings()
    if settings.mail_sandbox or not settings.smtp_configured:
        if not settings.mail_sandbox:
            logger.warning("SMTP credentials not configured; writing mail to %s", settings.outbox_dir)
        return SandboxMailer(settings.outbox_dir, sender=settings.mail_from or "sandbox@jobflow.local")
    return SmtpMailer(settings)
