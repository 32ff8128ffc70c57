"""Configuration management for the Redis failover operator."""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_FAILOVER_NAME = "redisfailovers.databases.spotahome.com/name"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_FAILOVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "redis-failover-operator"
    version: str = "0.1.0"
    log_level: str = "INFO"
    operator_name: str = "redis-operator"
    default_annotations: dict[str, str] = Field(
        default_factory=dict,
        description="Annotations added to every managed object",
    )

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file, in-cluster config when unset",
    )
    kube_context: Optional[str] = None
    watch_namespace: Optional[str] = Field(
        default=None,
        description="Namespace to watch, all namespaces when unset",
    )
    crd_group: str = "databases.spotahome.com"
    crd_version: str = "v1"
    crd_plural: str = "redisfailovers"

    # Reconciliation Settings
    resync_interval_seconds: int = 30

    # Redis / Sentinel Settings
    node_timeout_seconds: float = 5.0
    redis_port: int = 6379
    sentinel_port: int = 26379
    master_group_name: str = "mymaster"

    def operator_config(self) -> "OperatorConfig":
        """Build the immutable per-pass configuration threaded into the reconciler."""
        return OperatorConfig(
            operator_name=self.operator_name,
            default_labels={LABEL_MANAGED_BY: self.operator_name},
            default_annotations=dict(self.default_annotations),
            redis_port=self.redis_port,
            sentinel_port=self.sentinel_port,
            master_group_name=self.master_group_name,
        )


class OperatorConfig(BaseModel):
    """Static values shared by every pass, merged functionally per call."""

    model_config = ConfigDict(frozen=True)

    operator_name: str = "redis-operator"
    default_labels: dict[str, str] = Field(
        default_factory=lambda: {LABEL_MANAGED_BY: "redis-operator"}
    )
    default_annotations: dict[str, str] = Field(default_factory=dict)
    redis_port: int = 6379
    sentinel_port: int = 26379
    master_group_name: str = "mymaster"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
