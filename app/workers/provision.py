"""Provisioning worker — turns an accepted Store into cluster objects."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from app.core.concurrency import ProvisionSlots, run_with_timeout
from app.core.config import Settings
from app.core.errors import (
    ClusterError,
    ClusterTimeout,
    InvalidTransition,
    ProvisioningBusy,
)
from app.models.store import Store, StoreStatus
from app.models.store_event import EventType
from app.services.charts import chart_values, resolve_credentials, store_url
from app.services.cluster import ClusterGateway, ClusterOutcome
from app.services.events import emit_event
from app.services.stores import transition

logger = logging.getLogger(__name__)

NAMESPACE_LABELS = {
    "type": "store-tenant",
    "managedBy": "store-provisioner",
}


def namespace_metadata(store: Store) -> tuple[dict[str, str], dict[str, str]]:
    """Isolation labels and descriptive annotations for a store namespace."""
    labels = {**NAMESPACE_LABELS, "store-id": store.id}
    annotations = {
        "store-name": store.name,
        "store-engine": str(store.engine),
        "created-at": store.created_at.isoformat() + "Z",
    }
    return labels, annotations


def describe_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds:g} seconds"


@dataclass(frozen=True)
class TeardownResult:
    """How each teardown step ended: a ClusterOutcome value, "timeout" or "failed"."""

    release: str
    namespace: str


class Provisioner:
    """Drives one store at a time through namespace + chart installation.

    At most ``settings.max_concurrent_provisions`` stores are provisioned at
    once; anything beyond that is failed immediately as "server busy".
    The provisioner never marks a store Ready, that is left to reconciliation.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        session_factory: sessionmaker,
        settings: Settings,
    ) -> None:
        self.gateway = gateway
        self.session_factory = session_factory
        self.settings = settings
        self.slots = ProvisionSlots(settings.max_concurrent_provisions)

    async def provision(self, store_id: str) -> StoreStatus | None:
        """Provision a store. Never raises; failures land in the store record.

        Returns the store's status afterwards, or None if the store is gone.
        """
        try:
            async with self.slots.claim():
                logger.info(
                    "Provisioning store %s (%d/%d slots in use)",
                    store_id, self.slots.in_use, self.slots.limit,
                )
                return await self._provision(store_id)
        except ProvisioningBusy as exc:
            await emit_event(self.session_factory, store_id, EventType.WARNING, str(exc))
            return await self._fail(store_id, str(exc))
        except ClusterError as exc:
            reason = str(exc) if isinstance(exc, ClusterTimeout) else f"Provisioning failed: {exc}"
            message = reason
            if exc.detail and exc.detail not in reason:
                message = f"{reason}\n{exc.detail}"
        except Exception as exc:
            logger.exception("Provisioning crashed for store %s", store_id)
            reason = message = f"Provisioning failed: {exc}"

        await emit_event(self.session_factory, store_id, EventType.ERROR, message[:4000])
        return await self._fail(store_id, reason[:2000])

    async def _provision(self, store_id: str) -> StoreStatus | None:
        async with self.session_factory() as session:
            store = await session.get(Store, store_id)
            if store is None:
                logger.warning("Store %s no longer exists, skipping provisioning", store_id)
                return None
            if store.status != StoreStatus.PROVISIONING:
                logger.info("Store %s is %s, skipping provisioning", store_id, store.status)
                return store.status
            engine = str(store.engine)
            labels, annotations = namespace_metadata(store)

        # 1. Namespace
        outcome = await run_with_timeout(
            self.gateway.create_namespace(store_id, labels, annotations),
            self.settings.cluster_request_timeout_seconds,
            "Namespace creation timed out",
        )
        if outcome == ClusterOutcome.ALREADY_EXISTS:
            await self._event(store_id, EventType.INFO, "Namespace already exists, reusing it")
        else:
            await self._event(store_id, EventType.INFO, "Namespace created with isolation labels")

        # 2. Credentials (reused across re-provisioning)
        credentials = await resolve_credentials(self.gateway, store_id)
        values = chart_values(engine, store_id, self.settings.ingress_domain_suffix, credentials)

        # 3. Chart install
        timeout = self.settings.provision_timeout_seconds
        await self._event(store_id, EventType.INFO, f"Starting chart install for {engine}...")
        await run_with_timeout(
            self.gateway.install_or_upgrade_chart(store_id, engine, values, timeout),
            timeout,
            f"Provisioning timed out after {describe_duration(timeout)}",
        )

        # 4. URL (readiness is confirmed later by reconciliation)
        url = store_url(store_id, self.settings.ingress_domain_suffix)
        async with self.session_factory() as session:
            store = await session.get(Store, store_id)
            if store is None:
                logger.warning("Store %s was deleted during provisioning", store_id)
                return None
            store.url = url
            session.add(store)
            await session.commit()
            status = store.status

        await self._event(store_id, EventType.INFO, f"Chart installation completed, store URL is {url}")
        return status

    async def _fail(self, store_id: str, reason: str) -> StoreStatus | None:
        try:
            async with self.session_factory() as session:
                store = await session.get(Store, store_id)
                if store is None:
                    return None
                try:
                    changed = transition(store, StoreStatus.FAILED, reason)
                except InvalidTransition:
                    logger.warning(
                        "Store %s is already %s, not marking it failed: %s",
                        store_id, store.status, reason,
                    )
                    return store.status
                if changed:
                    session.add(store)
                    await session.commit()
                return store.status
        except Exception:
            logger.exception("Failed to mark store %s as failed", store_id)
            return None

    async def _event(self, store_id: str, event_type: EventType, message: str) -> None:
        await emit_event(self.session_factory, store_id, event_type, message)

    async def teardown(self, store_id: str) -> TeardownResult:
        """Uninstall the chart and delete the namespace. Best effort, never raises.

        Namespace deletion continues in the cluster after the bounded wait;
        a timeout is reported as a warning, not a failure.
        """
        await self._event(store_id, EventType.INFO, "Deleting store resources...")

        try:
            released = await run_with_timeout(
                self.gateway.uninstall_chart(store_id),
                self.settings.chart_uninstall_timeout_seconds,
                "Chart uninstall timed out",
            )
        except ClusterError as exc:
            release = "timeout" if isinstance(exc, ClusterTimeout) else "failed"
            await self._event(store_id, EventType.WARNING, f"Chart uninstall failed: {exc}")
        else:
            release = str(released)
            if released == ClusterOutcome.REMOVED:
                await self._event(store_id, EventType.INFO, "Chart release uninstalled")
            else:
                await self._event(store_id, EventType.INFO, "No chart release to uninstall")

        timeout = self.settings.namespace_delete_timeout_seconds
        await self._event(
            store_id, EventType.INFO, "Deleting namespace (this may take 30-60 seconds)..."
        )
        try:
            deleted = await run_with_timeout(
                self.gateway.delete_namespace(store_id),
                timeout,
                f"Namespace deletion timed out after {describe_duration(timeout)}",
            )
        except ClusterTimeout:
            namespace = "timeout"
            await self._event(
                store_id,
                EventType.WARNING,
                "Namespace deletion initiated but may take time to complete",
            )
        except ClusterError as exc:
            namespace = "failed"
            await self._event(store_id, EventType.ERROR, f"Error deleting namespace: {exc}")
        else:
            namespace = str(deleted)
            if deleted == ClusterOutcome.NOT_FOUND:
                await self._event(store_id, EventType.INFO, "Namespace already deleted")
            else:
                await self._event(store_id, EventType.INFO, "Namespace deletion initiated")

        return TeardownResult(release=release, namespace=namespace)


async def provision_store(ctx: dict, store_id: str) -> dict:
    """ARQ task: provision one store with the worker's shared Provisioner."""
    provisioner: Provisioner = ctx["provisioner"]
    status = await provisioner.provision(store_id)
    return {"store_id": store_id, "status": str(status) if status else None}
