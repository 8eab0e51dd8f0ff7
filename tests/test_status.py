"""Tests for the readiness evaluator."""

import pytest

from app.core.errors import ClusterUnknown
from app.services.cluster import WorkloadStatus
from app.services.status import (
    ClusterStatus,
    evaluate_workloads,
    is_workload_ready,
    observe_store_status,
)


def _deploy(desired, ready, name="web") -> WorkloadStatus:
    return WorkloadStatus(kind="Deployment", name=name, desired_replicas=desired, ready_replicas=ready)


def test_no_workloads_is_provisioning():
    assert evaluate_workloads([]) == ClusterStatus.PROVISIONING


def test_all_ready_is_ready():
    workloads = [
        _deploy(1, 1),
        WorkloadStatus(kind="StatefulSet", name="mysql", desired_replicas=1, ready_replicas=1),
    ]
    assert evaluate_workloads(workloads) == ClusterStatus.READY


def test_one_lagging_workload_is_provisioning():
    workloads = [_deploy(1, 1), _deploy(3, 2, name="worker")]
    assert evaluate_workloads(workloads) == ClusterStatus.PROVISIONING


def test_more_ready_than_desired_counts_as_ready():
    # Surge during a rollout
    assert evaluate_workloads([_deploy(2, 3)]) == ClusterStatus.READY


def test_desired_defaults_to_one():
    assert is_workload_ready(_deploy(None, 1))
    assert not is_workload_ready(_deploy(None, None))


def test_missing_ready_count_means_zero():
    assert not is_workload_ready(_deploy(1, None))


def test_evaluator_accepts_generators():
    assert evaluate_workloads(_deploy(1, 1) for _ in range(3)) == ClusterStatus.READY


@pytest.mark.asyncio
async def test_observe_reports_unknown_when_query_fails(gateway):
    gateway.workload_errors["abc123"] = ClusterUnknown("list pods failed: connection refused")
    assert await observe_store_status(gateway, "abc123") == ClusterStatus.UNKNOWN


@pytest.mark.asyncio
async def test_observe_evaluates_listed_workloads(gateway):
    gateway.workloads["abc123"] = [_deploy(1, 1)]
    assert await observe_store_status(gateway, "abc123") == ClusterStatus.READY
    assert await observe_store_status(gateway, "empty1") == ClusterStatus.PROVISIONING
