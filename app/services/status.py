"""Status evaluator — coarse readiness verdict from a namespace's workloads."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import StrEnum
from typing import TYPE_CHECKING

from app.core.errors import ClusterError
from app.services.cluster import WorkloadStatus

if TYPE_CHECKING:
    from app.services.cluster import ClusterGateway

logger = logging.getLogger(__name__)


class ClusterStatus(StrEnum):
    PROVISIONING = "Provisioning"
    READY = "Ready"
    UNKNOWN = "Unknown"


def is_workload_ready(workload: WorkloadStatus) -> bool:
    desired = 1 if workload.desired_replicas is None else workload.desired_replicas
    ready = workload.ready_replicas or 0
    return ready >= desired


def evaluate_workloads(workloads: Iterable[WorkloadStatus]) -> ClusterStatus:
    """Ready only if there is at least one workload and all of them are ready."""
    items = list(workloads)
    if not items:
        return ClusterStatus.PROVISIONING
    if all(is_workload_ready(w) for w in items):
        return ClusterStatus.READY
    return ClusterStatus.PROVISIONING


async def observe_store_status(gateway: ClusterGateway, store_id: str) -> ClusterStatus:
    """Query the store namespace and evaluate it; UNKNOWN if the query fails."""
    try:
        workloads = await gateway.list_workloads(store_id)
    except ClusterError as exc:
        logger.warning("Status check failed for store %s: %s", store_id, exc)
        return ClusterStatus.UNKNOWN
    return evaluate_workloads(workloads)
