"""Cluster gateway — Kubernetes API and Helm CLI behind one async interface.

Design principles:
  - Idempotent: namespace create / delete and chart uninstall report
    "already there" / "already gone" as outcomes, not errors
  - Non-blocking: kubernetes client calls run in worker threads,
    Helm runs as an asyncio subprocess
  - Normalised errors: every failure surfaces as one of ClusterNotFound,
    ClusterConflict, ClusterTimeout or ClusterUnknown
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException

from app.core.config import Settings
from app.core.errors import (
    ClusterConflict,
    ClusterError,
    ClusterNotFound,
    ClusterTimeout,
    ClusterUnknown,
)

logger = logging.getLogger(__name__)

_TIMEOUT_MARKERS = ("timed out", "context deadline exceeded")
# Helm's wording when the release itself is missing
_RELEASE_ABSENT_MARKER = "release: not found"


def namespace_for(store_id: str) -> str:
    return f"store-{store_id}"


def release_for(store_id: str) -> str:
    return f"store-{store_id}"


class ClusterOutcome(StrEnum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    INITIATED = "initiated"
    NOT_FOUND = "not_found"
    REMOVED = "removed"
    ALREADY_ABSENT = "already_absent"


@dataclass(frozen=True)
class WorkloadStatus:
    kind: str
    name: str
    desired_replicas: int | None = None
    ready_replicas: int | None = None


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def classify_api_error(exc: ApiException, action: str) -> ClusterError:
    """Map a kubernetes ApiException onto the gateway's error classes."""
    detail = exc.body if isinstance(exc.body, str) else str(exc.reason or "")
    if exc.status == 404:
        return ClusterNotFound(f"{action}: not found", detail)
    if exc.status == 409:
        return ClusterConflict(f"{action}: already exists", detail)
    if exc.status in (408, 504):
        return ClusterTimeout(f"{action}: timed out", detail)
    return ClusterUnknown(f"{action} failed ({exc.status}): {exc.reason}", detail)


def is_release_absent(output: str) -> bool:
    return _RELEASE_ABSENT_MARKER in output.lower()


def classify_helm_failure(action: str, returncode: int, output: str) -> ClusterError:
    """Map a failed Helm invocation onto the gateway's error classes.

    Anything that is not a timeout keeps Helm's own output in the message.
    """
    text = output.strip()
    lowered = text.lower()
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return ClusterTimeout(f"{action} timed out: {text[:500]}", text)
    return ClusterUnknown(f"{action} failed (rc={returncode}): {text[:500]}", text)


def _redact(args: list[str]) -> list[str]:
    """Hide credential values passed as --set key=value."""
    redacted = []
    for arg in args:
        key, sep, _ = arg.partition("=")
        if sep and "password" in key.lower():
            arg = f"{key}=***"
        redacted.append(arg)
    return redacted


# ---------------------------------------------------------------------------
# Workload conversion
# ---------------------------------------------------------------------------

def _replica_status(kind: str, obj: Any) -> WorkloadStatus:
    spec = getattr(obj, "spec", None)
    status = getattr(obj, "status", None)
    return WorkloadStatus(
        kind=kind,
        name=obj.metadata.name,
        desired_replicas=getattr(spec, "replicas", None),
        ready_replicas=getattr(status, "ready_replicas", None),
    )


def _pod_status(pod: Any) -> WorkloadStatus:
    status = pod.status
    containers = (status.container_statuses or []) if status else []
    running = status is not None and status.phase == "Running"
    ready = running and bool(containers) and all(c.ready for c in containers)
    return WorkloadStatus(
        kind="Pod",
        name=pod.metadata.name,
        desired_replicas=1,
        ready_replicas=1 if ready else 0,
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class ClusterGateway:
    """Async adapter over the Kubernetes API and the Helm CLI."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._core: client.CoreV1Api | None = None
        self._apps: client.AppsV1Api | None = None

    # ── Kubernetes plumbing ──────────────────────────────────

    def _load(self) -> None:
        """Load kube config exactly once."""
        if self.settings.in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=self.settings.kubeconfig or None)
        self._core = client.CoreV1Api()
        self._apps = client.AppsV1Api()

    @property
    def core(self) -> client.CoreV1Api:
        if self._core is None:
            self._load()
        return self._core  # type: ignore[return-value]

    @property
    def apps(self) -> client.AppsV1Api:
        if self._apps is None:
            self._load()
        return self._apps  # type: ignore[return-value]

    async def _call(self, action: str, fn: Callable[[], Any]) -> Any:
        """Run a blocking client call in a thread and normalise its errors."""
        try:
            return await asyncio.to_thread(fn)
        except ClusterError:
            raise
        except ApiException as exc:
            raise classify_api_error(exc, action) from exc
        except Exception as exc:
            if isinstance(exc, TimeoutError) or "timed out" in str(exc).lower():
                raise ClusterTimeout(f"{action}: timed out", str(exc)) from exc
            raise ClusterUnknown(f"{action} failed: {exc}", str(exc)) from exc

    @property
    def _request_timeout(self) -> float:
        return self.settings.cluster_request_timeout_seconds

    # ── Namespaces ───────────────────────────────────────────

    async def create_namespace(
        self,
        store_id: str,
        labels: dict[str, str],
        annotations: dict[str, str],
    ) -> ClusterOutcome:
        name = namespace_for(store_id)
        body = client.V1Namespace(
            metadata=client.V1ObjectMeta(name=name, labels=labels, annotations=annotations)
        )
        try:
            await self._call(
                f"create namespace {name}",
                lambda: self.core.create_namespace(body=body, _request_timeout=self._request_timeout),
            )
        except ClusterConflict:
            logger.info("Namespace %s already exists", name)
            return ClusterOutcome.ALREADY_EXISTS
        logger.info("Namespace %s created", name)
        return ClusterOutcome.CREATED

    async def delete_namespace(self, store_id: str) -> ClusterOutcome:
        """Initiate namespace deletion; the cluster finishes it asynchronously."""
        name = namespace_for(store_id)
        try:
            await self._call(
                f"delete namespace {name}",
                lambda: self.core.delete_namespace(name=name, _request_timeout=self._request_timeout),
            )
        except ClusterNotFound:
            logger.info("Namespace %s already gone", name)
            return ClusterOutcome.NOT_FOUND
        logger.info("Namespace %s deletion initiated", name)
        return ClusterOutcome.INITIATED

    # ── Workloads & secrets ──────────────────────────────────

    async def list_workloads(self, store_id: str) -> list[WorkloadStatus]:
        """Deployments, stateful sets and unowned pods in the store namespace."""
        ns = namespace_for(store_id)
        timeout = self._request_timeout
        deployments = await self._call(
            f"list deployments in {ns}",
            lambda: self.apps.list_namespaced_deployment(ns, _request_timeout=timeout),
        )
        stateful_sets = await self._call(
            f"list stateful sets in {ns}",
            lambda: self.apps.list_namespaced_stateful_set(ns, _request_timeout=timeout),
        )
        pods = await self._call(
            f"list pods in {ns}",
            lambda: self.core.list_namespaced_pod(ns, _request_timeout=timeout),
        )

        workloads = [_replica_status("Deployment", d) for d in deployments.items]
        workloads += [_replica_status("StatefulSet", s) for s in stateful_sets.items]
        # Controller-owned pods are already represented by their workload
        workloads += [
            _pod_status(p) for p in pods.items if not p.metadata.owner_references
        ]
        return workloads

    async def read_secret(self, store_id: str, name: str) -> dict[str, str]:
        """Return a secret's data, base64-decoded. Raises ClusterNotFound."""
        ns = namespace_for(store_id)
        secret = await self._call(
            f"read secret {ns}/{name}",
            lambda: self.core.read_namespaced_secret(name, ns, _request_timeout=self._request_timeout),
        )
        return {
            key: base64.b64decode(value).decode("utf-8")
            for key, value in (secret.data or {}).items()
        }

    async def ping(self) -> str:
        """Return the cluster's version string."""

        def _version() -> str:
            if self._core is None:
                self._load()
            info = client.VersionApi().get_code(_request_timeout=self._request_timeout)
            return getattr(info, "git_version", "unknown")

        return await self._call("cluster version", _version)

    # ── Helm ─────────────────────────────────────────────────

    async def _helm(self, *args: str) -> tuple[int, str, str]:
        cmd = [self.settings.helm_binary, *args]
        logger.info("helm> %s", " ".join(_redact(cmd)))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ClusterUnknown(f"Could not run {cmd[0]}: {exc}", str(exc)) from exc
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Caller gave up (timeout); reap the child
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
            logger.warning("helm %s cancelled, child process killed", args[0] if args else "")
            raise
        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if err:
            logger.debug("helm stderr: %s", err[:800])
        return proc.returncode or 0, out, err

    async def install_or_upgrade_chart(
        self,
        store_id: str,
        engine: str,
        values: dict[str, str],
        timeout: float,
    ) -> None:
        """``helm upgrade --install`` the engine chart and wait for it."""
        release = release_for(store_id)
        chart = str(Path(self.settings.chart_dir) / engine)
        args = ["upgrade", "--install", release, chart, "--namespace", namespace_for(store_id)]
        for key, value in values.items():
            args += ["--set", f"{key}={value}"]
        args += ["--wait", "--timeout", f"{max(1, int(timeout))}s"]

        returncode, out, err = await self._helm(*args)
        if returncode != 0:
            raise classify_helm_failure("Chart install", returncode, err or out)
        logger.info("Helm release %s installed", release)

    async def release_exists(self, store_id: str) -> bool:
        release = release_for(store_id)
        returncode, out, err = await self._helm(
            "status", release, "--namespace", namespace_for(store_id)
        )
        if returncode == 0:
            return True
        if is_release_absent(err or out):
            return False
        raise classify_helm_failure("Release status", returncode, err or out)

    async def uninstall_chart(self, store_id: str) -> ClusterOutcome:
        release = release_for(store_id)
        returncode, out, err = await self._helm(
            "uninstall", release, "--namespace", namespace_for(store_id)
        )
        if returncode == 0:
            logger.info("Helm release %s uninstalled", release)
            return ClusterOutcome.REMOVED
        if is_release_absent(err or out):
            logger.info("Helm release %s not found, nothing to uninstall", release)
            return ClusterOutcome.ALREADY_ABSENT
        raise classify_helm_failure("Chart uninstall", returncode, err or out)
