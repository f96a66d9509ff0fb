from datetime import datetime, timezone

from site_trawler.domain import RollCallEntry, SourceFailure
from site_trawler.mailer import (
    SmtpConfig,
    SourceReport,
    build_digest_body,
    build_source_failures_message,
    has_digest_content,
    send_text_email,
)


class _FlakySMTP:
    attempts = 0

    def __init__(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        return None

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):  # type: ignore[no-untyped-def]
        return False

    def ehlo(self) -> None:
        return None

    def starttls(self) -> None:
        return None

    def login(self, user: str, password: str) -> None:
        return None

    def send_message(self, message) -> None:  # type: ignore[no-untyped-def]
        _FlakySMTP.attempts += 1
        if _FlakySMTP.attempts == 1:
            raise OSError("temporary network error")


def test_send_text_email_retries_once(monkeypatch) -> None:
    _FlakySMTP.attempts = 0
    monkeypatch.setattr("site_trawler.mailer.smtplib.SMTP", _FlakySMTP)

    smtp_config = SmtpConfig(
        host="127.0.0.1",
        port=1025,
        user="",
        password="",
        from_address="noreply@example.local",
        starttls=False,
        use_ssl=False,
    )

    send_text_email(
        smtp_config=smtp_config,
        to_address="admin@example.local",
        subject="subject",
        body="body",
        max_attempts=3,
        retry_wait_sec=0,
    )

    assert _FlakySMTP.attempts == 2


def test_digest_body_skips_empty_sources_and_lists_roll_call() -> None:
    now = datetime(2026, 2, 16, tzinfo=timezone.utc)
    reports = [
        SourceReport(source_id="timeline", body="- cheap roundtrip"),
        SourceReport(source_id="listings", body=""),
        SourceReport(
            source_id="devices",
            body="",
            roll_call=(
                RollCallEntry(name="Door", present=True, fields={"id": "d1", "name": "Door", "battery": 80}),
                RollCallEntry(name="Window", present=False, fields={"name": "Window", "battery": None}),
            ),
        ),
    ]
    body = build_digest_body(now, reports)

    assert "[timeline]\n- cheap roundtrip" in body
    assert "[listings]" not in body
    assert "- Door (present): name=Door, battery=80" in body
    assert "- Window (absent): name=Window, battery=None" in body
    assert has_digest_content(reports) is True
    assert has_digest_content([SourceReport(source_id="x", body="")]) is False


def test_source_failures_message() -> None:
    message = build_source_failures_message([SourceFailure(source_id="timeline", error="(503)")])
    assert message == "- timeline: (503)"


def test_digest_body_lists_failed_sources_last() -> None:
    now = datetime(2026, 2, 16, tzinfo=timezone.utc)
    body = build_digest_body(
        now,
        [SourceReport(source_id="listings", body="- Loft, dogs welcome")],
        [SourceFailure(source_id="timeline", error="cycle timed out after 60.0s")],
    )

    assert body.endswith("Errors:\n- timeline: cycle timed out after 60.0s\n")
    assert body.index("[listings]") < body.index("Errors:")


def test_digest_body_without_failures_has_no_error_section() -> None:
    now = datetime(2026, 2, 16, tzinfo=timezone.utc)
    body = build_digest_body(now, [SourceReport(source_id="listings", body="- Loft")])
    assert "Errors:" not in body
