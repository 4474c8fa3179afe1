"""
Outbound delivery of generated documents to bank recipients.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol, Sequence

from config import Settings
from schemas.application import ApplicationRecord
from services.errors import CompletionError, DispatchFailure
from services.llm import TextCompletion
from services.storage import PDF_CONTENT_TYPE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = PDF_CONTENT_TYPE


class DeliveryDispatcher(Protocol):
    async def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachments: Sequence[Attachment],
    ) -> None: ...


def build_message(
    sender: str,
    recipients: Sequence[str],
    subject: str,
    body: str,
    attachments: Sequence[Attachment],
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject
    msg.set_content(body)
    for att in attachments:
        maintype, _, subtype = att.content_type.partition("/")
        msg.add_attachment(att.content, maintype=maintype, subtype=subtype or "octet-stream", filename=att.filename)
    return msg


class SmtpDispatcher:
    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        sender: str = "team@salestorvely.com",
        timeout: float = 30.0,
    ):
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._use_tls = use_tls
        self._sender = sender
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpDispatcher":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender=settings.mail_from,
            timeout=settings.smtp_timeout_seconds,
        )

    def _send_sync(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._user and self._password:
                smtp.login(self._user, self._password)
            smtp.send_message(msg)

    async def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachments: Sequence[Attachment],
    ) -> None:
        if not self._host:
            raise DispatchFailure("SMTP host is not configured")
        if not recipients:
            raise DispatchFailure("No recipients")
        msg = build_message(self._sender, recipients, subject, body, attachments)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DispatchFailure(f"SMTP delivery failed: {e}") from e
        logger.info("Sent %r to %s with %d attachments", subject, ", ".join(recipients), len(attachments))


EMAIL_SYSTEM_PROMPT = """You are an expert email writer for a small-business loan brokerage.
Write the body of a professional email to a bank loan officer.

Guidelines:
- Short sentences, one idea per paragraph.
- Professional yet approachable; no filler such as "I hope this email finds you well".
- Do not use em dashes.
- Close with "Best".
- Return only the email body: no subject line, no recipient list, no markdown."""


def submission_subject(application_id: str) -> str:
    return f"SBA Loan Application Submission - Application ID: {application_id}"


def key_points(record: ApplicationRecord, form_names: Sequence[str], now_year: int) -> list[str]:
    applicant = record.applicant
    years = max(0, now_year - applicant.year_founded)
    return [
        f"New SBA loan application for {applicant.business_name} with {years} years of operation",
        f"Annual revenue: ${applicant.annual_revenue:,.0f}",
        f"Credit score: {applicant.credit_score}",
        f"Completed forms attached: {', '.join(form_names)}",
        "Ready for review and processing",
    ]


def template_body(record: ApplicationRecord, points: Sequence[str]) -> str:
    lines = [
        "Hello,",
        "",
        f"Please find attached the completed SBA loan application package for {record.applicant.business_name} "
        f"(application ID {record.id}).",
        "",
    ]
    lines += [f"- {p}" for p in points]
    lines += ["", "Let us know if you need anything else to move this forward.", "", "Best"]
    return "\n".join(lines)


class SubmissionEmailComposer:
    """Subject is fixed; the body is drafted by the completion client when one is given."""

    def __init__(self, completion: Optional[TextCompletion] = None):
        self._completion = completion

    async def compose(
        self,
        record: ApplicationRecord,
        recipients: Sequence[str],
        form_names: Sequence[str],
        now_year: int,
    ) -> tuple[str, str]:
        subject = submission_subject(record.id)
        points = key_points(record, form_names, now_year)
        if self._completion is None:
            return subject, template_body(record, points)

        prompt = (
            "Write an email with the following requirements:\n"
            f"- Recipients: {', '.join(recipients)}\n"
            f"- Subject: {subject}\n"
            f"- Key points to cover: {'; '.join(points)}\n"
            "- Purpose: submit a completed loan application package for review\n"
        )
        try:
            body = await self._completion.complete(EMAIL_SYSTEM_PROMPT, prompt)
        except CompletionError as e:
            logger.info("Email drafting unavailable for %s, using template: %s", record.id, e)
            return subject, template_body(record, points)
        except Exception:
            logger.exception("Email drafting failed for %s, using template", record.id)
            return subject, template_body(record, points)
        if not body or not body.strip():
            return subject, template_body(record, points)
        return subject, body.strip()
