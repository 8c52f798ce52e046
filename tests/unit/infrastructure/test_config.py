"""Unit tests for application configuration."""

from __future__ import annotations

from datetime import timedelta

import pytest
from opentelemetry import trace
from pydantic import ValidationError

from provisioner.config import (
    ArtifactSettings,
    Environment,
    ExecutorSettings,
    HealthProbeSettings,
    InstanceSettings,
    ObservabilitySettings,
    ProviderSettings,
    ScaleSetSettings,
    Settings,
)
from provisioner.domain.models.membership import ProbeProtocol
from provisioner.infrastructure.observability.tracing import setup_tracing


class TestProviderSettings:
    def test_defaults(self) -> None:
        settings = ProviderSettings()
        assert settings.name == "azure"
        assert settings.resource_group == "provisioner-rg"

    def test_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROVIDER_REGION", "westeurope")
        monkeypatch.setenv("PROVIDER_CLIENT_SECRET", "hunter2")
        settings = ProviderSettings()
        assert settings.region == "westeurope"
        assert settings.client_secret.get_secret_value() == "hunter2"
        assert "hunter2" not in repr(settings)


class TestInstanceSettings:
    def test_defaults(self) -> None:
        settings = InstanceSettings()
        assert settings.admin_username == "azureuser"
        assert settings.admin_password.get_secret_value() == ""


class TestScaleSetSettings:
    def test_defaults(self) -> None:
        settings = ScaleSetSettings()
        assert (settings.min_instances, settings.default_instances, settings.max_instances) == (
            1, 2, 4,
        )

    def test_bounds_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError):
            ScaleSetSettings(min_instances=3, default_instances=2, max_instances=4)


class TestHealthProbeSettings:
    def test_path_must_be_absolute(self) -> None:
        with pytest.raises(ValidationError):
            HealthProbeSettings(path="healthz")

    def test_tcp_ignores_path(self) -> None:
        settings = HealthProbeSettings(protocol=ProbeProtocol.TCP, path="")
        assert settings.protocol == ProbeProtocol.TCP

    def test_budget_must_cover_threshold(self) -> None:
        with pytest.raises(ValidationError):
            HealthProbeSettings(healthy_threshold=5, max_probes=3)

    def test_to_probe_config(self) -> None:
        settings = HealthProbeSettings(port=8080, path="/healthz", healthy_threshold=3)
        probe = settings.to_probe_config()
        assert probe.port == 8080
        assert probe.path == "/healthz"
        assert probe.healthy_threshold == 3


class TestArtifactSettings:
    def test_ttl(self) -> None:
        assert ArtifactSettings().ttl == timedelta(hours=1)

    def test_ttl_must_outlive_boot(self) -> None:
        with pytest.raises(ValidationError):
            ArtifactSettings(ttl_seconds=600, boot_timeout_seconds=900)


class TestExecutorSettings:
    def test_defaults(self) -> None:
        settings = ExecutorSettings()
        assert settings.max_concurrency == 4
        assert settings.max_attempts == 4

    def test_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EXECUTOR_MAX_ATTEMPTS", "7")
        assert ExecutorSettings().max_attempts == 7

    def test_attempts_are_bounded(self) -> None:
        with pytest.raises(ValidationError):
            ExecutorSettings(max_attempts=0)


class TestObservabilitySettings:
    def test_defaults(self) -> None:
        settings = ObservabilitySettings()
        assert settings.log_level == "INFO"
        assert settings.tracing_enabled is False


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        settings = Settings()
        assert settings.environment == Environment.DEVELOPMENT

    def test_nested_settings(self) -> None:
        settings = Settings()
        assert isinstance(settings.provider, ProviderSettings)
        assert isinstance(settings.probe, HealthProbeSettings)
        assert isinstance(settings.executor, ExecutorSettings)


class TestEnvironment:
    def test_values(self) -> None:
        assert Environment.DEVELOPMENT == "development"
        assert Environment.PRODUCTION == "production"
        assert Environment.TESTING == "testing"
        assert Environment.STAGING == "staging"


class TestObservabilityWiring:
    def test_every_field_has_a_consumer(self) -> None:
        assert set(ObservabilitySettings.model_fields) == {
            "service_name",
            "log_level",
            "tracing_enabled",
        }

    def test_tracing_disabled_keeps_global_provider(self) -> None:
        before = trace.get_tracer_provider()
        setup_tracing(ObservabilitySettings(tracing_enabled=False))
        assert trace.get_tracer_provider() is before
