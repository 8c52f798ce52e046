"""Command-line entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys

import structlog

from provisioner.config import get_settings, Settings
from provisioner.domain.ports.services import UnknownArtifactError
from provisioner.domain.services.deployment_service import DeploymentService
from provisioner.domain.services.planner import PlanningError
from provisioner.infrastructure.manifest.loader import load_manifest, ManifestError
from provisioner.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from provisioner.infrastructure.observability.logging import setup_logging
from provisioner.infrastructure.observability.tracing import setup_tracing
from provisioner.infrastructure.provider.simulated import SimulatedProviderAdapter
from provisioner.infrastructure.storage.content_store import InMemoryContentStore


logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provisioner",
        description="Drive a set of dependent cloud resources to a running state.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Plan and apply a deployment manifest")
    deploy_parser.add_argument("manifest", help="Path to a JSON deployment manifest")
    deploy_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the tiered plan and exit without calling the provider",
    )
    deploy_parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser


async def run_deploy(args: argparse.Namespace, settings: Settings) -> int:
    descriptors, artifacts = load_manifest(args.manifest)

    content_store = InMemoryContentStore()
    provider = SimulatedProviderAdapter(
        resource_group=settings.provider.resource_group,
        content_store=content_store,
    )
    service = DeploymentService(
        settings, provider, content_store, event_publisher=InMemoryEventPublisher()
    )

    if args.dry_run:
        plan = service.plan(descriptors, artifacts)
        print(json.dumps({"plan_id": plan.plan_id, "tiers": plan.describe()}, indent=2))
        return EXIT_OK

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except NotImplementedError:
            # Not available on every platform's event loop.
            pass

    result = await service.deploy(descriptors, artifacts, cancel_event)
    print(json.dumps(result.failure_report(), indent=2))
    return result.exit_code


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return its exit status."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level or settings.observability.log_level)
    setup_tracing(settings.observability)

    try:
        return asyncio.run(run_deploy(args, settings))
    except (ManifestError, PlanningError, UnknownArtifactError) as e:
        logger.error("deployment_rejected", error=str(e))
        print(json.dumps({"outcome": "invalid", "error": str(e)}, indent=2))
        return EXIT_INVALID


if __name__ == "__main__":
    sys.exit(main())
