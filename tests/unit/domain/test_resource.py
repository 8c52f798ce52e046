"""Unit tests for resource descriptor and state models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from provisioner.domain.models.resource import (
    InvalidStateTransitionError,
    ProviderHandle,
    ResourceDescriptor,
    ResourceKind,
    ResourceState,
    ResourceStatus,
    VALID_TRANSITIONS,
)


class TestResourceDescriptor:
    def test_depends_on_accepts_list(self) -> None:
        descriptor = ResourceDescriptor(
            id="subnet", kind=ResourceKind.SUBNET, depends_on=["net", "net"]
        )
        assert descriptor.depends_on == frozenset({"net"})

    def test_self_dependency_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ResourceDescriptor(id="a", kind=ResourceKind.NETWORK, depends_on=["a"])

    def test_empty_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ResourceDescriptor(id="", kind=ResourceKind.NETWORK)

    def test_kind_from_string(self) -> None:
        descriptor = ResourceDescriptor.model_validate({"id": "lb", "kind": "load-balancer"})
        assert descriptor.kind == ResourceKind.LOAD_BALANCER

    def test_is_immutable(self) -> None:
        descriptor = ResourceDescriptor(id="a", kind=ResourceKind.NETWORK)
        with pytest.raises(ValidationError):
            descriptor.id = "b"  # type: ignore[misc]

    def test_compute_kinds(self) -> None:
        assert ResourceKind.COMPUTE_INSTANCE.is_compute
        assert ResourceKind.INSTANCE_SET.is_compute
        assert not ResourceKind.LOAD_BALANCER.is_compute

    def test_backend_pool(self) -> None:
        descriptor = ResourceDescriptor(
            id="vm", kind=ResourceKind.COMPUTE_INSTANCE, config={"backend_pool": "pool"}
        )
        assert descriptor.backend_pool == "pool"
        assert ResourceDescriptor(id="n", kind=ResourceKind.NETWORK).backend_pool is None

    def test_artifact_references_nested(self) -> None:
        descriptor = ResourceDescriptor(
            id="vm",
            kind=ResourceKind.COMPUTE_INSTANCE,
            config={
                "custom_data": "curl ${artifact:scripts/boot.sh} | sh",
                "extensions": [{"fileUris": ["${artifact:scripts/web.conf}"]}],
            },
        )
        assert descriptor.artifact_references == {"scripts/boot.sh", "scripts/web.conf"}

    def test_matches_ignores_extra_provider_keys(self) -> None:
        descriptor = ResourceDescriptor(
            id="net", kind=ResourceKind.NETWORK, config={"address_space": "10.0.0.0/16"}
        )
        assert descriptor.matches({"address_space": "10.0.0.0/16", "etag": "abc"})

    def test_matches_detects_drift(self) -> None:
        descriptor = ResourceDescriptor(
            id="net", kind=ResourceKind.NETWORK, config={"address_space": "10.0.0.0/16"}
        )
        assert not descriptor.matches({"address_space": "10.1.0.0/16"})
        assert not descriptor.matches({})

    def test_matches_skips_artifact_values(self) -> None:
        descriptor = ResourceDescriptor(
            id="vm",
            kind=ResourceKind.COMPUTE_INSTANCE,
            config={"size": "B1s", "custom_data": "${artifact:scripts/boot.sh}"},
        )
        assert descriptor.matches({"size": "B1s", "custom_data": "https://old-signed-url"})

    def test_with_config_keeps_identity(self) -> None:
        descriptor = ResourceDescriptor(
            id="vm", kind=ResourceKind.COMPUTE_INSTANCE, depends_on=["subnet"]
        )
        copy = descriptor.with_config({"size": "B2s"})
        assert copy.id == "vm"
        assert copy.depends_on == frozenset({"subnet"})
        assert copy.config == {"size": "B2s"}
        assert descriptor.config == {}


class TestResourceState:
    def _state(self) -> ResourceState:
        return ResourceState(descriptor_id="vm", kind=ResourceKind.COMPUTE_INSTANCE)

    def test_initial_status_is_pending(self) -> None:
        assert self._state().status == ResourceStatus.PENDING

    def test_created_lifecycle(self) -> None:
        state = self._state()
        state.start()
        state.mark_created(ProviderHandle(resource_id="r-1"))
        assert state.status == ResourceStatus.CREATED
        assert state.provider_handle is not None
        assert state.needs_teardown

    def test_adopted_resources_are_not_torn_down(self) -> None:
        state = self._state()
        state.start()
        state.mark_created(ProviderHandle(resource_id="r-1"), adopted=True)
        assert not state.needs_teardown

    def test_in_progress_needs_teardown(self) -> None:
        state = self._state()
        state.start()
        assert state.needs_teardown

    def test_fail_records_error(self) -> None:
        state = self._state()
        state.start()
        state.fail("quota exceeded")
        assert state.status == ResourceStatus.FAILED
        assert state.last_error == "quota exceeded"
        assert not state.needs_teardown

    def test_cannot_create_from_pending(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            self._state().mark_created(ProviderHandle(resource_id="r-1"))

    def test_rolled_back_is_terminal(self) -> None:
        state = self._state()
        state.start()
        state.mark_created(ProviderHandle(resource_id="r-1"))
        state.roll_back()
        with pytest.raises(InvalidStateTransitionError):
            state.start()

    def test_transition_bumps_version(self) -> None:
        state = self._state()
        state.start()
        assert state.version == 2

    def test_transition_table_is_forward_only(self) -> None:
        assert ResourceStatus.PENDING not in VALID_TRANSITIONS[ResourceStatus.CREATED]
        assert VALID_TRANSITIONS[ResourceStatus.ROLLED_BACK] == set()
