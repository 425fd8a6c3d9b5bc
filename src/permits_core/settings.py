from __future__ import annotations

from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from permits_core.circuit_breaker import (
    CircuitBreakerConfig,
    FailureClassifier,
    count_all_failures,
)
from permits_core.retry import RetryBackoffPolicy

Environment = Literal["production", "development", "test"]


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class KeyValueSettings(BaseSettings):
    """Settings for the Redis-backed key/value store and its circuit breaker.

    Read from ``REDIS_*`` environment variables. With ``enabled`` false the
    store is backed by an in-memory fallback, except in production where it
    runs fully degraded instead.
    """

    model_config = prefixed_settings_config("REDIS_")

    enabled: bool = False
    host: str | None = None
    port: int = 6379
    password: str | None = None
    db: int = 0
    tls: bool = False
    key_prefix: str = "pd:"
    environment: Environment = "development"

    connect_timeout_ms: int = 10_000
    socket_timeout_ms: int | None = None
    connect_attempts: int = 10
    reconnect_backoff_min_ms: int = 1_000
    reconnect_backoff_max_ms: int = 5_000
    health_check_interval_ms: int = 30_000

    failure_threshold: int = 5
    reset_timeout_ms: int = 30_000
    half_open_success_threshold: int = 2
    failure_log_every: int = 10

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("host", "password", mode="before")
    @classmethod
    def _strip_optional_string(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        return normalized or None

    @model_validator(mode="after")
    def _validate_key_value_settings(self) -> KeyValueSettings:
        if self.enabled and not self.host:
            raise ValueError("host is required when enabled is true")
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")
        if self.db < 0:
            raise ValueError("db must be >= 0")
        if self.connect_timeout_ms <= 0:
            raise ValueError("connect_timeout_ms must be > 0")
        if self.socket_timeout_ms is not None and self.socket_timeout_ms <= 0:
            raise ValueError("socket_timeout_ms must be > 0 when provided")
        if self.connect_attempts < 1:
            raise ValueError("connect_attempts must be >= 1")
        if self.reconnect_backoff_min_ms < 0:
            raise ValueError("reconnect_backoff_min_ms must be >= 0")
        if self.reconnect_backoff_max_ms < self.reconnect_backoff_min_ms:
            raise ValueError(
                "reconnect_backoff_max_ms must be >= reconnect_backoff_min_ms"
            )
        if self.health_check_interval_ms <= 0:
            raise ValueError("health_check_interval_ms must be > 0")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be >= 0")
        if self.half_open_success_threshold < 1:
            raise ValueError("half_open_success_threshold must be >= 1")
        if self.failure_log_every < 1:
            raise ValueError("failure_log_every must be >= 1")
        return self

    def breaker_config(
        self,
        failure_classifier: FailureClassifier = count_all_failures,
    ) -> CircuitBreakerConfig:
        """Build the circuit breaker configuration for the store client."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout_ms=self.reset_timeout_ms,
            half_open_success_threshold=self.half_open_success_threshold,
            failure_classifier=failure_classifier,
        )

    def reconnect_policy(self) -> RetryBackoffPolicy:
        """Build the backoff policy used when (re)connecting."""
        return RetryBackoffPolicy(
            attempts=self.connect_attempts,
            min_seconds=self.reconnect_backoff_min_ms / 1000,
            max_seconds=self.reconnect_backoff_max_ms / 1000,
        )

    def redis_client_options(self) -> dict[str, str | int | float | bool | None]:
        """Build keyword arguments for ``redis.asyncio.Redis``."""
        options: dict[str, str | int | float | bool | None] = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "socket_connect_timeout": self.connect_timeout_ms / 1000,
            "decode_responses": True,
        }
        if self.password:
            options["password"] = self.password
        if self.socket_timeout_ms is not None:
            options["socket_timeout"] = self.socket_timeout_ms / 1000
        if self.tls:
            options["ssl"] = True
        return options
