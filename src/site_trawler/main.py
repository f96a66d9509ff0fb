from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from site_trawler.config import ConfigError, load_sources_config
from site_trawler.mailer import (
    SmtpConfig,
    build_failure_body,
    build_failure_subject,
    build_source_failures_message,
    send_text_email,
)
from site_trawler.pipeline import run_pipeline
from site_trawler.sources import build_source
from site_trawler.storage import SQLiteStore

LOGGER = logging.getLogger("site_trawler")


@dataclass(frozen=True)
class RuntimeSettings:
    admin_email: str | None
    db_path: str
    smtp_config: SmtpConfig | None
    cycle_timeout_sec: float


def _parse_bool_env(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_positive_float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{key} must be a positive number") from exc
    if value <= 0:
        raise ConfigError(f"{key} must be a positive number")
    return value


def _resolve_db_path(db_path_override: str | None) -> str:
    return (db_path_override or os.getenv("DB_PATH") or "data/state.db").strip()


def load_runtime_settings(
    db_path_override: str | None,
    require_smtp: bool,
    require_admin: bool = True,
) -> RuntimeSettings:
    admin_email = (os.getenv("ADMIN_EMAIL") or "").strip()
    if require_admin and not admin_email:
        raise ConfigError("ADMIN_EMAIL is required")

    smtp_host = (os.getenv("SMTP_HOST") or "").strip()
    smtp_port_raw = (os.getenv("SMTP_PORT") or "").strip()
    smtp_user = (os.getenv("SMTP_USER") or "").strip()
    smtp_pass = (os.getenv("SMTP_PASS") or "").strip()
    smtp_from = (os.getenv("SMTP_FROM") or "").strip()

    smtp_config: SmtpConfig | None = None
    has_any_smtp = any([smtp_host, smtp_port_raw, smtp_user, smtp_pass, smtp_from])
    if has_any_smtp or require_smtp:
        missing = [key for key, value in {
            "SMTP_HOST": smtp_host,
            "SMTP_PORT": smtp_port_raw,
            "SMTP_FROM": smtp_from,
        }.items() if not value]
        if missing:
            raise ConfigError(f"Missing SMTP env: {', '.join(missing)}")
        try:
            smtp_port = int(smtp_port_raw)
        except ValueError as exc:
            raise ConfigError("SMTP_PORT must be integer") from exc
        smtp_config = SmtpConfig(
            host=smtp_host,
            port=smtp_port,
            user=smtp_user,
            password=smtp_pass,
            from_address=smtp_from,
            starttls=_parse_bool_env("SMTP_STARTTLS", True),
            use_ssl=_parse_bool_env("SMTP_USE_SSL", smtp_port == 465),
        )

    return RuntimeSettings(
        admin_email=admin_email or None,
        db_path=_resolve_db_path(db_path_override),
        smtp_config=smtp_config,
        cycle_timeout_sec=_parse_positive_float_env("CYCLE_TIMEOUT_SEC", 60.0),
    )


def configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def run_self_test(args: argparse.Namespace) -> int:
    for config in load_sources_config(args.sources):
        if config.enabled:
            build_source(config)
    settings = load_runtime_settings(
        db_path_override=args.db_path,
        require_smtp=not args.skip_smtp,
        require_admin=not args.skip_smtp,
    )
    store = SQLiteStore(settings.db_path)
    try:
        store.initialize()
    finally:
        store.close()
    print("self-test: ok")
    return 0


def _notify_failure(settings: RuntimeSettings, message: str) -> None:
    if not settings.admin_email:
        LOGGER.error("Cannot send failure notification: ADMIN_EMAIL is missing")
        return
    if settings.smtp_config is None:
        LOGGER.error("Cannot send failure notification: SMTP config is missing")
        return
    now = datetime.now(timezone.utc)
    send_text_email(
        smtp_config=settings.smtp_config,
        to_address=settings.admin_email,
        subject=build_failure_subject(now),
        body=build_failure_body(now, message),
    )


def run_job(args: argparse.Namespace) -> int:
    started = datetime.now(timezone.utc)
    LOGGER.info("Begin script")
    settings = load_runtime_settings(
        db_path_override=args.db_path,
        require_smtp=not args.dry_run,
        require_admin=not args.dry_run,
    )
    result = run_pipeline(
        sources_path=Path(args.sources),
        db_path=settings.db_path,
        admin_email=settings.admin_email,
        smtp_config=settings.smtp_config,
        dry_run=args.dry_run,
        timeout_sec=settings.cycle_timeout_sec,
    )
    LOGGER.info(
        "run complete: run_id=%s sources=%s results=%s failures=%s digest_sent=%s dry_run=%s",
        result.run_id,
        len(result.runs),
        result.result_count,
        len(result.failures),
        result.digest_sent,
        args.dry_run,
    )
    if args.dry_run:
        for run in result.runs:
            rendered = run.source.render(run.outcome.results)
            if rendered:
                print(f"[{run.source.id}]")
                print(rendered)

    if result.failures and not args.dry_run:
        LOGGER.error("%s runtime errors. Sending error notice...", len(result.failures))
        try:
            _notify_failure(settings, build_source_failures_message(result.failures))
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send source failure notice")
    LOGGER.info("Request served in %.3fs.", (datetime.now(timezone.utc) - started).total_seconds())
    return 0


def run_show_state(args: argparse.Namespace) -> int:
    store = SQLiteStore(_resolve_db_path(args.db_path))
    try:
        store.initialize()
        states = store.load_saved_states()
    finally:
        store.close()
    if args.source:
        states = {key: value for key, value in states.items() if key == args.source}
    payload = {source_id: state.to_dict() for source_id, state in sorted(states.items())}
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Poll sources, report new results, remember what was seen.")
    parser.add_argument("--log-level", default="INFO", help="DEBUG/INFO/WARNING/ERROR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one polling cycle for every enabled source.")
    run_parser.add_argument("--sources", default="data/sources.yaml")
    run_parser.add_argument("--db-path", default=None)
    run_parser.add_argument("--dry-run", action="store_true")
    run_parser.set_defaults(handler=run_job)

    self_test_parser = subparsers.add_parser("self-test", help="Validate config/env and DB init.")
    self_test_parser.add_argument("--sources", default="data/sources.yaml")
    self_test_parser.add_argument("--db-path", default=None)
    self_test_parser.add_argument("--skip-smtp", action="store_true")
    self_test_parser.set_defaults(handler=run_self_test)

    show_state_parser = subparsers.add_parser("show-state", help="Print saved state as JSON.")
    show_state_parser.add_argument("--db-path", default=None)
    show_state_parser.add_argument("--source", default=None)
    show_state_parser.set_defaults(handler=run_show_state)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        return args.handler(args)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Unhandled error: %s", exc)
        try:
            settings = load_runtime_settings(
                db_path_override=getattr(args, "db_path", None),
                require_smtp=False,
                require_admin=False,
            )
            _notify_failure(settings, traceback.format_exc())
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send failure notification")
        return 1


if __name__ == "__main__":
    sys.exit(main())
