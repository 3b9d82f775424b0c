"""Tests for configuration helpers."""

from budget_engine.config import Settings, parse_comma_list


def test_parse_comma_list_defaults() -> None:
    assert parse_comma_list(None, ["a"]) == ["a"]


def test_parse_comma_list_accepts_list() -> None:
    assert parse_comma_list(["x", "y"], ["a"]) == ["x", "y"]


def test_parse_comma_list_splits_string() -> None:
    assert parse_comma_list("x, y, ,z", ["a"]) == ["x", "y", "z"]


def test_settings_read_engine_fallbacks_from_env(monkeypatch) -> None:
    monkeypatch.setenv("AUTO_REALIZE_PAST_DUE_ITEMS", "true")
    monkeypatch.setenv("PAST_DUE_LOOKBACK_DAYS", "45")
    monkeypatch.setenv("RECONCILIATION_PROFILE", "strict")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")

    configured = Settings(_env_file=None)

    assert configured.auto_realize_past_due_items is True
    assert configured.past_due_lookback_days == 45
    assert configured.reconciliation_profile == "strict"
    assert configured.cors_origins == ["http://a.test", "http://b.test"]


def test_environment_accepts_short_alias(monkeypatch) -> None:
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv("ENV", "production")
    assert Settings(_env_file=None).environment == "production"
