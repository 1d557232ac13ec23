from __future__ import annotations

import json

import pytest

from score_backfill import cli
from score_backfill.application.use_cases.backfill_use_case import RunSummary
from score_backfill.core.config import Settings, normalize_psycopg_dsn
from score_backfill.infrastructure.external.elastic_sync import es_client
from score_backfill.shared.exceptions.domain import ConfigurationError


def _settings(**overrides) -> Settings:
    base = {"LOG_FILE": "", "DATABASE_URL": "", "EXCLUDED_TENANT": None}
    base.update(overrides)
    return Settings(_env_file=None, **base)


@pytest.mark.parametrize(
    "dsn, expected",
    [
        ("postgresql+asyncpg://u:p@h:5432/db", "postgresql://u:p@h:5432/db"),
        ("postgres+psycopg://u:p@h/db", "postgres://u:p@h/db"),
        ("postgresql://u:p@h/db", "postgresql://u:p@h/db"),
        ("host=h dbname=db", "host=h dbname=db"),
    ],
)
def test_normalize_psycopg_dsn(dsn, expected) -> None:
    assert normalize_psycopg_dsn(dsn) == expected


def test_effective_database_url_from_components() -> None:
    s = _settings(DB_HOST="pg", DB_PORT=6543, DB_USERNAME="app", DB_PASSWORD="pw", DB_NAME="evals")

    assert s.effective_database_url == "postgresql://app:pw@pg:6543/evals"


def test_effective_database_url_prefers_full_url() -> None:
    s = _settings(DATABASE_URL="postgresql+asyncpg://a:b@c/d")

    assert s.effective_database_url == "postgresql://a:b@c/d"


@pytest.mark.parametrize("raw, expected", [(None, None), ("", None), ("   ", None), (" demo ", "demo")])
def test_excluded_tenant_blank_disables(raw, expected) -> None:
    assert _settings(EXCLUDED_TENANT=raw).excluded_tenant == expected


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"ROW_SOURCE_MODE": "cursor"}, "ROW_SOURCE_MODE"),
        ({"BATCH_SIZE": 0}, "BATCH_SIZE"),
        ({"STREAM_FETCH_SIZE": 0}, "STREAM_FETCH_SIZE"),
        ({"MAX_UNITS": 0}, "MAX_UNITS"),
    ],
)
def test_validate_backfill_rejects_bad_values(overrides, field) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        _settings(**overrides).validate_backfill()

    assert exc_info.value.details == {"field": field}
    assert exc_info.value.describe() == f"[CONFIGURATION_ERROR] {exc_info.value.message} (field={field})"


def test_defaults_are_valid() -> None:
    s = _settings()

    s.validate_backfill()
    assert s.BATCH_SIZE == 500
    assert s.INDEX_PREFIX == "contact_evaluation__"
    assert s.ROW_SOURCE_MODE == "point"


def test_cli_flags_override_settings() -> None:
    args = cli.build_parser().parse_args(
        ["--mode", "stream", "--batch-size", "50", "--max-units", "10",
         "--excluded-tenant", "demo", "--no-lock", "-v"]
    )

    s = cli.apply_overrides(_settings(), args)

    assert s.ROW_SOURCE_MODE == "stream"
    assert s.BATCH_SIZE == 50
    assert s.MAX_UNITS == 10
    assert s.excluded_tenant == "demo"
    assert s.USE_ADVISORY_LOCK is False
    assert s.LOG_LEVEL == "DEBUG"


def test_cli_without_flags_keeps_settings() -> None:
    original = _settings(BATCH_SIZE=42)

    s = cli.apply_overrides(original, cli.build_parser().parse_args([]))

    assert s is original


@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level, log_file: None)


def test_main_returns_error_on_invalid_config(quiet_logging) -> None:
    assert cli.main(["--batch-size", "0"], settings=_settings()) == 1


def test_main_prints_summary(monkeypatch, capsys, quiet_logging) -> None:
    seen = {}

    class _StubBackfill:
        def run(self):
            return RunSummary(success=3, skipped=1, total_discovered=4, processed=3)

    def _fake_build(settings, *, dry_run=False):
        seen["dry_run"] = dry_run
        seen["mode"] = settings.ROW_SOURCE_MODE
        return _StubBackfill()

    monkeypatch.setattr(cli, "build_backfill", _fake_build)

    code = cli.main(["--dry-run", "--mode", "stream"], settings=_settings())

    assert code == 0
    assert seen == {"dry_run": True, "mode": "stream"}
    printed = json.loads(capsys.readouterr().out)
    assert printed["success"] == 3
    assert printed["skipped"] == 1


def test_es_client_kwargs(monkeypatch) -> None:
    captured = {}

    def _fake_es(url, **kwargs):
        captured["url"] = url
        captured.update(kwargs)
        return object()

    monkeypatch.setattr(es_client, "Elasticsearch", _fake_es)

    es_client.build_es_client(
        _settings(ELASTIC_URL="https://es:9200", ELASTIC_USER="elastic", ELASTIC_PASS="x",
                  ELASTIC_VERIFY_CERTS=False)
    )

    assert captured == {
        "url": "https://es:9200",
        "request_timeout": 3600,
        "verify_certs": False,
        "basic_auth": ("elastic", "x"),
    }


def test_es_client_plain_http_has_no_tls_or_auth(monkeypatch) -> None:
    captured = {}
    monkeypatch.setattr(
        es_client, "Elasticsearch", lambda url, **kwargs: captured.update(kwargs) or object()
    )

    es_client.build_es_client(_settings(ELASTIC_URL="http://localhost:9200", ELASTIC_USER=""))

    assert captured == {"request_timeout": 3600}


def test_main_reports_malformed_env_without_traceback(monkeypatch, tmp_path, quiet_logging) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MAX_UNITS", "not-a-number")

    assert cli.main([]) == 1


def test_config_module_builds_no_settings_at_import() -> None:
    from score_backfill.core import config

    assert not hasattr(config, "settings")
