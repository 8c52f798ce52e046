"""Prometheus metrics configuration."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Info,
)


# Application info
APP_INFO = Info("provisioner", "Deployment provisioner application info")
APP_INFO.info({
    "version": "0.1.0",
    "service": "provisioner",
})

# Deployment metrics
DEPLOYMENTS_TOTAL = Counter(
    "provisioner_deployments_total",
    "Total number of deployment runs",
    ["outcome"],
)

DEPLOYMENT_DURATION = Histogram(
    "provisioner_deployment_duration_seconds",
    "Wall time of a deployment run",
    ["outcome"],
    buckets=[10, 30, 60, 120, 300, 600, 1800, 3600],
)

# Resource metrics
RESOURCES_TOTAL = Counter(
    "provisioner_resources_total",
    "Resources realized by the executor",
    ["kind", "result"],  # result: created, adopted, failed
)

RESOURCE_CREATE_DURATION = Histogram(
    "provisioner_resource_create_duration_seconds",
    "Time taken to realize a single resource",
    ["kind"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600],
)

PROVIDER_RETRIES = Counter(
    "provisioner_provider_retries_total",
    "Provider calls retried after a transient error",
    ["operation"],
)

# Rollback metrics
ROLLBACK_DELETES_TOTAL = Counter(
    "provisioner_rollback_deletes_total",
    "Deletes attempted during rollback",
    ["result"],  # deleted, failed, skipped
)

# Health and membership metrics
HEALTH_PROBES_TOTAL = Counter(
    "provisioner_health_probes_total",
    "Health probes sent to instances",
    ["result"],  # success, failure, error
)

POOL_REGISTRATIONS_TOTAL = Counter(
    "provisioner_pool_registrations_total",
    "Backend pool registration attempts",
    ["result"],  # registered, failed
)

# Artifact metrics
ARTIFACTS_PUBLISHED_TOTAL = Counter(
    "provisioner_artifacts_published_total",
    "Bootstrap payloads written to the content store",
)

GRANTS_ISSUED_TOTAL = Counter(
    "provisioner_artifact_grants_issued_total",
    "Signed URL grants minted for bootstrap payloads",
)
