"""Configuration management for the Redis failover operator."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RF_OPERATOR_",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "redis-failover-operator"
    version: str = "0.1.0"
    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file, in-cluster config is used when unset",
    )
    kube_context: Optional[str] = None
    watch_namespace: str = Field(
        default="",
        description="Namespace to watch, empty for all namespaces",
    )
    k8s_request_timeout_seconds: float = 10.0

    # Controller Settings
    resync_interval_seconds: int = 30
    watch_timeout_seconds: int = Field(
        default=10,
        description="Server side timeout of each watch request, bounds shutdown time",
    )
    concurrent_workers: int = 3

    # Redis Settings
    redis_socket_timeout_seconds: float = 5.0
    redis_connect_timeout_seconds: float = 3.0

    # Reconciliation Settings
    failover_grace_period_seconds: int = Field(
        default=120,
        description="Minimum redis uptime before the operator forces a new master",
    )
    pass_timeout_seconds: float = Field(
        default=120.0,
        description="Maximum duration of a single check-and-heal pass",
    )

    # Metrics Settings
    metrics_enabled: bool = True
    metrics_port: int = 9710
    metrics_prefix: str = "redis_operator"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
