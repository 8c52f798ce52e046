"""Application configuration using pydantic-settings."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator, SecretStr
from pydantic_settings import BaseSettings

from provisioner.domain.models.membership import ProbeConfig, ProbeProtocol


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class ProviderSettings(BaseSettings):
    """Target provider account and region."""

    name: str = Field(default="azure", alias="PROVIDER_NAME")
    region: str = Field(default="eastus", alias="PROVIDER_REGION")
    subscription_id: str = Field(default="", alias="PROVIDER_SUBSCRIPTION_ID")
    tenant_id: str = Field(default="", alias="PROVIDER_TENANT_ID")
    client_id: str = Field(default="", alias="PROVIDER_CLIENT_ID")
    client_secret: SecretStr = Field(default=SecretStr(""), alias="PROVIDER_CLIENT_SECRET")
    resource_group: str = Field(default="provisioner-rg", alias="PROVIDER_RESOURCE_GROUP")

    model_config = {"env_prefix": "PROVIDER_", "extra": "ignore", "populate_by_name": True}


class InstanceSettings(BaseSettings):
    """Default admin credentials injected into compute resources."""

    admin_username: str = Field(default="azureuser", alias="INSTANCE_ADMIN_USERNAME")
    admin_password: SecretStr = Field(default=SecretStr(""), alias="INSTANCE_ADMIN_PASSWORD")
    ssh_public_key: str = Field(default="", alias="INSTANCE_SSH_PUBLIC_KEY")

    model_config = {"env_prefix": "INSTANCE_", "extra": "ignore", "populate_by_name": True}


class ScaleSetSettings(BaseSettings):
    """Capacity bounds applied to instance sets."""

    min_instances: int = Field(default=1, ge=0, alias="SCALE_SET_MIN_INSTANCES")
    default_instances: int = Field(default=2, ge=0, alias="SCALE_SET_DEFAULT_INSTANCES")
    max_instances: int = Field(default=4, ge=1, alias="SCALE_SET_MAX_INSTANCES")

    @model_validator(mode="after")
    def _check_bounds(self) -> ScaleSetSettings:
        if not self.min_instances <= self.default_instances <= self.max_instances:
            raise ValueError(
                "Scale set bounds must satisfy min <= default <= max, got "
                f"{self.min_instances} / {self.default_instances} / {self.max_instances}"
            )
        return self

    model_config = {"env_prefix": "SCALE_SET_", "extra": "ignore", "populate_by_name": True}


class HealthProbeSettings(BaseSettings):
    """Probe parameters shared by the load balancer and the membership manager."""

    protocol: ProbeProtocol = Field(default=ProbeProtocol.HTTP, alias="PROBE_PROTOCOL")
    port: int = Field(default=80, ge=1, le=65535, alias="PROBE_PORT")
    path: str = Field(default="/", alias="PROBE_PATH")
    interval_seconds: float = Field(default=5.0, ge=0, alias="PROBE_INTERVAL_SECONDS")
    healthy_threshold: int = Field(default=2, ge=1, alias="PROBE_HEALTHY_THRESHOLD")
    unhealthy_threshold: int = Field(default=3, ge=1, alias="PROBE_UNHEALTHY_THRESHOLD")
    max_probes: int = Field(default=60, ge=1, alias="PROBE_MAX_PROBES")

    @model_validator(mode="after")
    def _check_path(self) -> HealthProbeSettings:
        if self.protocol != ProbeProtocol.TCP and not self.path.startswith("/"):
            raise ValueError(f"Probe path must start with '/', got {self.path!r}")
        if self.max_probes < self.healthy_threshold:
            raise ValueError("max_probes must allow at least healthy_threshold probes")
        return self

    def to_probe_config(self) -> ProbeConfig:
        return ProbeConfig(
            protocol=self.protocol,
            port=self.port,
            path=self.path,
            interval_seconds=self.interval_seconds,
            healthy_threshold=self.healthy_threshold,
            unhealthy_threshold=self.unhealthy_threshold,
            max_probes=self.max_probes,
        )

    model_config = {"env_prefix": "PROBE_", "extra": "ignore", "populate_by_name": True}


class ArtifactSettings(BaseSettings):
    """Bootstrap artifact grant lifetime."""

    ttl_seconds: int = Field(default=3600, ge=1, alias="ARTIFACT_TTL_SECONDS")
    boot_timeout_seconds: int = Field(default=900, ge=0, alias="ARTIFACT_BOOT_TIMEOUT_SECONDS")

    @model_validator(mode="after")
    def _ttl_outlives_boot(self) -> ArtifactSettings:
        if self.ttl_seconds <= self.boot_timeout_seconds:
            raise ValueError(
                f"Artifact TTL ({self.ttl_seconds}s) must outlive the instance "
                f"boot timeout ({self.boot_timeout_seconds}s)"
            )
        return self

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds)

    model_config = {"env_prefix": "ARTIFACT_", "extra": "ignore", "populate_by_name": True}


class ExecutorSettings(BaseSettings):
    """Concurrency and retry budget for provider calls."""

    max_concurrency: int = Field(default=4, ge=1, alias="EXECUTOR_MAX_CONCURRENCY")
    max_attempts: int = Field(default=4, ge=1, le=10, alias="EXECUTOR_MAX_ATTEMPTS")
    backoff_base_seconds: float = Field(default=1.0, ge=0, alias="EXECUTOR_BACKOFF_BASE_SECONDS")
    backoff_max_seconds: float = Field(default=30.0, ge=0, alias="EXECUTOR_BACKOFF_MAX_SECONDS")
    call_timeout_seconds: float = Field(default=600.0, gt=0, alias="EXECUTOR_CALL_TIMEOUT_SECONDS")

    model_config = {"env_prefix": "EXECUTOR_", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    service_name: str = Field(default="provisioner", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, alias="ENVIRONMENT")

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    instance: InstanceSettings = Field(default_factory=InstanceSettings)
    scale_set: ScaleSetSettings = Field(default_factory=ScaleSetSettings)
    probe: HealthProbeSettings = Field(default_factory=HealthProbeSettings)
    artifacts: ArtifactSettings = Field(default_factory=ArtifactSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
