from __future__ import annotations

from .settings import AppConfig, RuntimeConfig, Settings, load_config
from .sync import ConflictConfig, RateLimitDefaultsConfig, RetryPolicyConfig, SchedulerConfig

__all__ = [
    "AppConfig",
    "ConflictConfig",
    "RateLimitDefaultsConfig",
    "RetryPolicyConfig",
    "RuntimeConfig",
    "SchedulerConfig",
    "Settings",
    "load_config",
]
