"""Unit tests for deployment result."""

from __future__ import annotations

from provisioner.domain.models.membership import BackendPoolMembership
from provisioner.domain.models.resource import ProviderHandle, ResourceKind, ResourceState
from provisioner.domain.models.result import DeploymentOutcome, DeploymentResult


def _result() -> DeploymentResult:
    ok = ResourceState(descriptor_id="net", kind=ResourceKind.NETWORK)
    ok.start()
    ok.mark_created(ProviderHandle(resource_id="r-net"))
    bad = ResourceState(descriptor_id="vm", kind=ResourceKind.COMPUTE_INSTANCE)
    bad.start()
    bad.fail("quota exceeded")
    return DeploymentResult(plan_id="p-1", states={"net": ok, "vm": bad})


class TestDeploymentResult:
    def test_pending_is_not_success(self) -> None:
        result = _result()
        assert result.outcome == DeploymentOutcome.PENDING
        assert not result.success
        assert result.exit_code == 1

    def test_succeeded_exit_code(self) -> None:
        result = DeploymentResult(plan_id="p-1")
        result.finish(DeploymentOutcome.SUCCEEDED)
        assert result.success
        assert result.exit_code == 0

    def test_failures_list_first_reason(self) -> None:
        assert _result().failures == {"vm": "quota exceeded"}

    def test_unhealthy_member_is_a_failure(self) -> None:
        result = DeploymentResult(plan_id="p-1")
        member = BackendPoolMembership(pool_id="pool", member_address="10.0.0.4", instance_id="vm")
        member.await_health()
        member.mark_unhealthy("not healthy after 10 probes")
        result.memberships.append(member)
        assert result.failures == {"vm@10.0.0.4": "not healthy after 10 probes"}

    def test_failure_report_shape(self) -> None:
        result = _result()
        result.finish(DeploymentOutcome.FAILED)
        report = result.failure_report()
        assert report["outcome"] == "failed"
        assert report["resources"]["net"]["status"] == "created"
        assert report["failures"] == [{"id": "vm", "reason": "quota exceeded"}]
