"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from bookmark_sync.config import (
    ConflictConfig,
    RateLimitDefaultsConfig,
    RetryPolicyConfig,
    RuntimeConfig,
    SchedulerConfig,
    load_config,
)

_ENV_VARS = (
    "RETRY_MAX_RETRIES",
    "RETRY_STRATEGY",
    "RETRY_USE_JITTER",
    "RATE_LIMIT_MAX_REQUESTS",
    "RATE_LIMIT_STRATEGY",
    "CONFLICT_DEFAULT_STRATEGY",
    "CONFLICT_DETECTION_ENABLED",
    "SYNC_ENABLED",
    "SYNC_INTERVAL_SECONDS",
    "LOG_LEVEL",
    "LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    cfg = load_config()

    assert cfg.retry.max_retries == 3
    assert cfg.retry.strategy == "exponential"
    assert cfg.retry.use_jitter is True
    assert cfg.rate_limit.max_requests == 60
    assert cfg.rate_limit.strategy == "token_bucket"
    assert cfg.conflicts.default_strategy == "remote_wins"
    assert cfg.conflicts.detection_enabled is True
    assert cfg.scheduler.interval_seconds == 60
    assert cfg.runtime.log_level == "INFO"


def test_environment_variables_populate_nested_models(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RETRY_MAX_RETRIES", "5")
    monkeypatch.setenv("RETRY_STRATEGY", "Linear")
    monkeypatch.setenv("RETRY_USE_JITTER", "false")
    monkeypatch.setenv("RATE_LIMIT_STRATEGY", "sliding_window")
    monkeypatch.setenv("CONFLICT_DEFAULT_STRATEGY", "newest-wins")
    monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "900")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    cfg = load_config()

    assert cfg.retry.max_retries == 5
    assert cfg.retry.strategy == "linear"
    assert cfg.retry.use_jitter is False
    assert cfg.rate_limit.strategy == "sliding_window"
    assert cfg.conflicts.default_strategy == "newest_wins"
    assert cfg.scheduler.interval_seconds == 900
    assert cfg.runtime.log_level == "DEBUG"


def test_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RETRY_MAX_RETRIES", "5")

    cfg = load_config(retry={"max_retries": 1})

    assert cfg.retry.max_retries == 1


def test_model_instance_override_is_kept(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SYNC_ENABLED", "true")

    cfg = load_config(scheduler=SchedulerConfig(enabled=False))

    assert cfg.scheduler.enabled is False


def test_invalid_value_raises_runtime_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_STRATEGY", "leaky_bucket")

    with pytest.raises(RuntimeError, match="Configuration validation failed"):
        load_config()


@pytest.mark.parametrize(
    ("model", "values"),
    [
        (RetryPolicyConfig, {"max_retries": 21}),
        (RetryPolicyConfig, {"max_retries": "many"}),
        (RetryPolicyConfig, {"initial_delay_seconds": -1}),
        (RetryPolicyConfig, {"strategy": "fibonacci"}),
        (RateLimitDefaultsConfig, {"max_requests": 0}),
        (RateLimitDefaultsConfig, {"window_seconds": 0}),
        (RateLimitDefaultsConfig, {"cleanup_interval_seconds": 1}),
        (ConflictConfig, {"default_strategy": "coin_flip"}),
        (SchedulerConfig, {"interval_seconds": 30}),
        (SchedulerConfig, {"max_provider_retries": -1}),
        (RuntimeConfig, {"log_level": "verbose"}),
    ],
)
def test_invalid_values_are_rejected(model, values) -> None:
    with pytest.raises(ValidationError):
        model(**values)


def test_blank_values_fall_back_to_defaults() -> None:
    retry = RetryPolicyConfig(max_retries="", strategy="", use_jitter="")

    assert retry.max_retries == 3
    assert retry.strategy == "exponential"
    assert retry.use_jitter is True
    assert RuntimeConfig(log_file="   ").log_file is None
