from __future__ import annotations

import json
import smtplib
from pathlib import Path

import pytest

from jobflow.config import Settings
from jobflow.errors import DeliveryFailed, TransientInfraError, ValidationError
from jobflow.mail.mailer import Attachment, SandboxMailer, SmtpMailer, build_mailer, text_to_html
from jobflow.types import CandidateProfileData, PostingData

PROFILE = CandidateProfileData(id=1, content_hash="abc", name="Jane Doe")
POSTING = PostingData(id=3, title="Backend Engineer", company="Acme")


class FakeSMTP:
    error: Exception | None = None
    sent: list = []

    def __init__(self, host: str, port: int, timeout: int):
        self.host = host

    def __enter__(self) -> FakeSMTP:
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def starttls(self) -> None:
        return None

    def login(self, username: str, password: str) -> None:
        return None

    def send_message(self, msg) -> None:
        if FakeSMTP.error is not None:
            raise FakeSMTP.error
        FakeSMTP.sent.append(msg)


def smtp_settings() -> Settings:
    return Settings(
        smtp_host="smtp.example.com",
        smtp_username="me@example.com",
        smtp_password="secret",
        mail_sandbox=False,
    )


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.error = None
    FakeSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_text_to_html_escapes() -> None:
    assert text_to_html("a < b\nc") == (
        '<div style="font-family: Arial, sans-serif; line-height: 1.6;">a &lt; b<br>c</div>'
    )


def test_sandbox_mailer_writes_outbox(tmp_path: Path) -> None:
    mailer = SandboxMailer(tmp_path / "outbox")

    delivery_id = mailer.send(
        PROFILE, POSTING, "Hello", "jobs@acme.example", attachment=Attachment("cv.pdf", b"%PDF-1.4")
    )

    (json_path,) = (tmp_path / "outbox").glob("*.json")
    payload = json.loads(json_path.read_text(encoding="utf-8"))
    assert payload["id"] == delivery_id
    assert payload["subject"] == "Application for Backend Engineer position - Jane Doe"
    assert payload["attachments"] == [{"filename": "cv.pdf", "size": 8}]
    assert json_path.with_suffix(".html").exists()


def test_sandbox_mailer_rejects_bad_destination(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        SandboxMailer(tmp_path).send(PROFILE, POSTING, "Hello", "not-an-address")


def test_smtp_mailer_sends(fake_smtp) -> None:
    message_id = SmtpMailer(smtp_settings()).send(PROFILE, POSTING, "Hello", "jobs@acme.example")

    (msg,) = fake_smtp.sent
    assert msg["To"] == "jobs@acme.example"
    assert msg["Message-ID"] == message_id


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (smtplib.SMTPRecipientsRefused({"jobs@acme.example": (550, b"no such user")}), DeliveryFailed),
        (smtplib.SMTPDataError(554, b"rejected"), DeliveryFailed),
        (smtplib.SMTPDataError(451, b"try later"), TransientInfraError),
        (smtplib.SMTPServerDisconnected("gone"), TransientInfraError),
        (ConnectionRefusedError("refused"), TransientInfraError),
    ],
)
def test_smtp_errors_are_classified(fake_smtp, error: Exception, expected: type[Exception]) -> None:
    fake_smtp.error = error

    with pytest.raises(expected):
        SmtpMailer(smtp_settings()).send(PROFILE, POSTING, "Hello", "jobs@acme.example")


def test_build_mailer_prefers_sandbox_without_credentials(tmp_path: Path) -> None:
    assert build_mailer(Settings(smtp_host="", outbox_dir=tmp_path)).sandbox is True
    assert build_mailer(smtp_settings()).sandbox is False
