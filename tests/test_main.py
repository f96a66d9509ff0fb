import json

from site_trawler.domain import SavedState
from site_trawler.main import load_runtime_settings, main
from site_trawler.storage import SQLiteStore

SMTP_KEYS = (
    "ADMIN_EMAIL",
    "DB_PATH",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "SMTP_FROM",
    "SMTP_STARTTLS",
    "SMTP_USE_SSL",
    "CYCLE_TIMEOUT_SEC",
)


def _clear_env(monkeypatch) -> None:
    for key in SMTP_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_self_test_without_smtp(tmp_path, monkeypatch, capsys) -> None:
    _clear_env(monkeypatch)
    code = main(["self-test", "--skip-smtp", "--db-path", str(tmp_path / "state.db")])

    assert code == 0
    assert "self-test: ok" in capsys.readouterr().out


def test_show_state_prints_one_source(tmp_path, monkeypatch, capsys) -> None:
    _clear_env(monkeypatch)
    db_path = str(tmp_path / "state.db")
    store = SQLiteStore(db_path)
    store.initialize()
    store.save_states(
        {
            "timeline": SavedState(highest_seen_id=7),
            "listings": SavedState(seen_ids=("a",)),
        }
    )
    store.close()

    code = main(["show-state", "--db-path", db_path, "--source", "timeline"])

    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"timeline": {"highestSeenId": 7}}


def test_runtime_settings_require_complete_smtp(monkeypatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("ADMIN_EMAIL", "admin@example.local")
    monkeypatch.setenv("SMTP_HOST", "127.0.0.1")
    monkeypatch.setenv("SMTP_PORT", "465")
    monkeypatch.setenv("SMTP_FROM", "noreply@example.local")
    monkeypatch.setenv("CYCLE_TIMEOUT_SEC", "15")

    settings = load_runtime_settings(db_path_override=None, require_smtp=True)

    assert settings.smtp_config is not None
    assert settings.smtp_config.use_ssl is True
    assert settings.cycle_timeout_sec == 15.0


def test_run_reports_config_errors_with_exit_code(tmp_path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    code = main(["run", "--dry-run", "--sources", str(tmp_path / "missing.yaml"), "--db-path", str(tmp_path / "state.db")])
    assert code == 1
