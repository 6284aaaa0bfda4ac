from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

_RETRY_STRATEGIES = {"constant", "linear", "exponential"}
_RATE_LIMIT_STRATEGIES = {"token_bucket", "sliding_window", "fixed_window"}
_CONFLICT_STRATEGIES = {"remote_wins", "local_wins", "newest_wins", "merge", "manual"}


def _parse_bool(value: Any, default: bool) -> bool:
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class RetryPolicyConfig(BaseModel):
    """Default retry policy applied to provider fetches and bookmark mutations."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_retries: int = Field(default=3, validation_alias="RETRY_MAX_RETRIES")
    initial_delay_seconds: float = Field(
        default=1.0, validation_alias="RETRY_INITIAL_DELAY_SECONDS"
    )
    max_delay_seconds: float = Field(default=30.0, validation_alias="RETRY_MAX_DELAY_SECONDS")
    strategy: str = Field(default="exponential", validation_alias="RETRY_STRATEGY")
    backoff_multiplier: float = Field(default=2.0, validation_alias="RETRY_BACKOFF_MULTIPLIER")
    use_jitter: bool = Field(default=True, validation_alias="RETRY_USE_JITTER")
    auth_max_retries: int = Field(
        default=1,
        validation_alias="RETRY_AUTH_MAX_RETRIES",
        description="Retries allowed for expired credentials before surfacing the failure",
    )

    @field_validator("max_retries", "auth_max_retries", mode="before")
    @classmethod
    def _validate_retry_count(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 0 or parsed > 20:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be between 0 and 20"
            raise ValueError(msg)
        return parsed

    @field_validator(
        "initial_delay_seconds", "max_delay_seconds", "backoff_multiplier", mode="before"
    )
    @classmethod
    def _validate_positive_float(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid number"
            raise ValueError(msg) from exc
        if parsed < 0:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} cannot be negative"
            raise ValueError(msg)
        if parsed > 3600:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} is too large (max 3600)"
            raise ValueError(msg)
        return parsed

    @field_validator("strategy", mode="before")
    @classmethod
    def _validate_strategy(cls, value: Any) -> str:
        strategy = str(value or "exponential").strip().lower()
        if strategy not in _RETRY_STRATEGIES:
            msg = f"Invalid retry strategy: {strategy}. Must be one of {sorted(_RETRY_STRATEGIES)}"
            raise ValueError(msg)
        return strategy

    @field_validator("use_jitter", mode="before")
    @classmethod
    def _validate_jitter(cls, value: Any) -> bool:
        return _parse_bool(value, default=True)


class RateLimitDefaultsConfig(BaseModel):
    """Rate limit applied to sources that were never configured explicitly."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_requests: int = Field(default=60, validation_alias="RATE_LIMIT_MAX_REQUESTS")
    window_seconds: float = Field(default=60.0, validation_alias="RATE_LIMIT_WINDOW_SECONDS")
    strategy: str = Field(default="token_bucket", validation_alias="RATE_LIMIT_STRATEGY")
    cleanup_interval_seconds: int = Field(
        default=60, validation_alias="RATE_LIMIT_CLEANUP_INTERVAL_SECONDS"
    )

    @field_validator("max_requests", mode="before")
    @classmethod
    def _validate_max_requests(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 60))
        except ValueError as exc:
            msg = "Rate limit max requests must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 1 or parsed > 100000:
            msg = "Rate limit max requests must be between 1 and 100000"
            raise ValueError(msg)
        return parsed

    @field_validator("window_seconds", mode="before")
    @classmethod
    def _validate_window(cls, value: Any) -> float:
        try:
            parsed = float(str(value if value not in (None, "") else 60.0))
        except ValueError as exc:
            msg = "Rate limit window must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 86400:
            msg = "Rate limit window must be between 0 and 86400 seconds"
            raise ValueError(msg)
        return parsed

    @field_validator("strategy", mode="before")
    @classmethod
    def _validate_strategy(cls, value: Any) -> str:
        strategy = str(value or "token_bucket").strip().lower()
        if strategy not in _RATE_LIMIT_STRATEGIES:
            msg = (
                f"Invalid rate limit strategy: {strategy}. "
                f"Must be one of {sorted(_RATE_LIMIT_STRATEGIES)}"
            )
            raise ValueError(msg)
        return strategy

    @field_validator("cleanup_interval_seconds", mode="before")
    @classmethod
    def _validate_cleanup_interval(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 60))
        except ValueError as exc:
            msg = "Rate limit cleanup interval must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 5 or parsed > 3600:
            msg = "Rate limit cleanup interval must be between 5 and 3600 seconds"
            raise ValueError(msg)
        return parsed


class ConflictConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    default_strategy: str = Field(
        default="remote_wins", validation_alias="CONFLICT_DEFAULT_STRATEGY"
    )
    detection_enabled: bool = Field(default=True, validation_alias="CONFLICT_DETECTION_ENABLED")

    @field_validator("default_strategy", mode="before")
    @classmethod
    def _validate_strategy(cls, value: Any) -> str:
        strategy = str(value or "remote_wins").strip().lower().replace("-", "_")
        if strategy not in _CONFLICT_STRATEGIES:
            msg = (
                f"Invalid conflict strategy: {strategy}. "
                f"Must be one of {sorted(_CONFLICT_STRATEGIES)}"
            )
            raise ValueError(msg)
        return strategy

    @field_validator("detection_enabled", mode="before")
    @classmethod
    def _validate_detection(cls, value: Any) -> bool:
        return _parse_bool(value, default=True)


class SchedulerConfig(BaseModel):
    """Periodic sync scheduling."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = Field(default=True, validation_alias="SYNC_ENABLED")
    interval_seconds: int = Field(default=60, validation_alias="SYNC_INTERVAL_SECONDS")
    sync_on_startup: bool = Field(default=True, validation_alias="SYNC_ON_STARTUP")
    retry_delay_seconds: int = Field(default=300, validation_alias="SYNC_RETRY_DELAY_SECONDS")
    max_provider_retries: int = Field(default=3, validation_alias="SYNC_MAX_PROVIDER_RETRIES")

    @field_validator("enabled", "sync_on_startup", mode="before")
    @classmethod
    def _validate_flags(cls, value: Any) -> bool:
        return _parse_bool(value, default=True)

    @field_validator("interval_seconds", mode="before")
    @classmethod
    def _validate_interval(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 60))
        except ValueError as exc:
            msg = "Sync interval must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 60 or parsed > 86400:
            msg = "Sync interval must be between 60 and 86400 seconds"
            raise ValueError(msg)
        return parsed

    @field_validator("retry_delay_seconds", "max_provider_retries", mode="before")
    @classmethod
    def _validate_non_negative(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 0:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} cannot be negative"
            raise ValueError(msg)
        return parsed
