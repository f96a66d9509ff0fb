from __future__ import annotations

import smtplib
import time
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Sequence

from site_trawler.domain import RollCallEntry, SourceFailure


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    from_address: str
    starttls: bool = True
    use_ssl: bool = False


@dataclass(frozen=True)
class SourceReport:
    source_id: str
    body: str
    roll_call: tuple[RollCallEntry, ...] = ()


def build_digest_subject(now: datetime) -> str:
    return f"[site-trawler] {now:%Y-%m-%d %H:%M} results"


def _format_roll_call(entries: Sequence[RollCallEntry]) -> list[str]:
    lines = ["Roll call:"]
    for entry in entries:
        status = "present" if entry.present else "absent"
        values = ", ".join(f"{key}={value}" for key, value in entry.fields.items() if key != "id")
        lines.append(f"- {entry.name} ({status}): {values}")
    return lines


def build_digest_body(
    now: datetime,
    reports: Sequence[SourceReport],
    failures: Sequence[SourceFailure] = (),
) -> str:
    """Plain-text digest. Sources with nothing to say are left out; failed sources are listed last."""
    lines: list[str] = [f"Run time: {now:%Y-%m-%d %H:%M:%S %Z}".rstrip(), ""]
    for report in reports:
        if not report.body and not report.roll_call:
            continue
        lines.append(f"[{report.source_id}]")
        if report.body:
            lines.append(report.body)
        if report.roll_call:
            lines.extend(_format_roll_call(report.roll_call))
        lines.append("")
    if failures:
        lines.append("Errors:")
        lines.append(build_source_failures_message(failures))
    return "\n".join(lines).rstrip() + "\n"


def has_digest_content(reports: Sequence[SourceReport]) -> bool:
    return any(report.body or report.roll_call for report in reports)


def build_failure_subject(now: datetime) -> str:
    return f"[site-trawler][ERROR] {now:%Y-%m-%d %H:%M}"


def build_failure_body(now: datetime, context_message: str) -> str:
    return (
        f"Run time: {now:%Y-%m-%d %H:%M:%S}\n"
        f"Problem running the script:\n{context_message}\n"
    )


def build_source_failures_message(failures: Sequence[SourceFailure]) -> str:
    return "\n".join(f"- {failure.source_id}: {failure.error}" for failure in failures)


def send_text_email(
    smtp_config: SmtpConfig,
    to_address: str,
    subject: str,
    body: str,
    max_attempts: int = 3,
    retry_wait_sec: float = 1.0,
) -> None:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    message = EmailMessage()
    message["From"] = smtp_config.from_address
    message["To"] = to_address
    message["Subject"] = subject
    message.set_content(body)

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            if smtp_config.use_ssl:
                with smtplib.SMTP_SSL(smtp_config.host, smtp_config.port, timeout=30) as smtp:
                    if smtp_config.user:
                        smtp.login(smtp_config.user, smtp_config.password)
                    smtp.send_message(message)
                return

            with smtplib.SMTP(smtp_config.host, smtp_config.port, timeout=30) as smtp:
                smtp.ehlo()
                if smtp_config.starttls:
                    smtp.starttls()
                    smtp.ehlo()
                if smtp_config.user:
                    smtp.login(smtp_config.user, smtp_config.password)
                smtp.send_message(message)
            return
        except (OSError, smtplib.SMTPException) as exc:
            last_error = exc
            if attempt >= max_attempts:
                break
            time.sleep(retry_wait_sec)
    if last_error is not None:
        raise last_error
