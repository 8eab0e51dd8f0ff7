"""Periodic job — re-derive store readiness from the cluster and repair drift."""

from __future__ import annotations

import logging

from sqlalchemy.orm import sessionmaker

from app.core.concurrency import run_with_timeout
from app.core.config import Settings
from app.models.store import Store, StoreStatus
from app.models.store_event import EventType
from app.services.charts import chart_values, resolve_credentials
from app.services.cluster import ClusterGateway
from app.services.events import emit_event
from app.services.status import ClusterStatus, observe_store_status
from app.services.stores import list_active_stores, transition

logger = logging.getLogger(__name__)


class Reconciler:
    """One sweep = every non-failed store, checked one after another.

    Only promotes Provisioning -> Ready. A Ready store whose workloads stop
    being ready is left Ready so that transient restarts do not flap.
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

    async def sweep(self) -> dict:
        async with self.session_factory() as session:
            stores = await list_active_stores(session)

        counts = {"checked": 0, "promoted": 0, "reinstalled": 0, "errors": 0}
        for store in stores:
            counts["checked"] += 1
            try:
                promoted, reinstalled = await self._reconcile_store(store)
            except Exception:
                logger.exception("Reconciliation failed for store %s", store.id)
                counts["errors"] += 1
                continue
            counts["promoted"] += int(promoted)
            counts["reinstalled"] += int(reinstalled)

        logger.info(
            "Reconciliation sweep: checked=%d promoted=%d reinstalled=%d errors=%d",
            counts["checked"], counts["promoted"], counts["reinstalled"], counts["errors"],
        )
        return counts

    async def _reconcile_store(self, store: Store) -> tuple[bool, bool]:
        observed = await observe_store_status(self.gateway, store.id)

        promoted = False
        if store.status == StoreStatus.PROVISIONING and observed == ClusterStatus.READY:
            promoted = await self._promote(store.id)
        elif store.status == StoreStatus.READY and observed != ClusterStatus.READY:
            logger.debug("Store %s is Ready but cluster reports %s", store.id, observed)

        reinstalled = False
        # Only stores whose first install completed can have lost their release
        if self.settings.reconcile_ensure_releases and store.url:
            reinstalled = await self._ensure_release(store)
        return promoted, reinstalled

    async def _promote(self, store_id: str) -> bool:
        async with self.session_factory() as session:
            store = await session.get(Store, store_id)
            # Deleted or failed since the sweep started
            if store is None or store.status != StoreStatus.PROVISIONING:
                return False
            transition(store, StoreStatus.READY)
            session.add(store)
            await session.commit()

        await emit_event(self.session_factory, store_id, EventType.SUCCESS, "Store is now Ready")
        return True

    async def _ensure_release(self, store: Store) -> bool:
        """Re-run the idempotent install if the release vanished out of band."""
        present = await run_with_timeout(
            self.gateway.release_exists(store.id),
            self.settings.cluster_request_timeout_seconds,
            "Release status check timed out",
        )
        if present:
            return False

        await emit_event(
            self.session_factory, store.id, EventType.WARNING,
            "Chart release missing from cluster, reinstalling",
        )
        engine = str(store.engine)
        credentials = await resolve_credentials(self.gateway, store.id)
        values = chart_values(engine, store.id, self.settings.ingress_domain_suffix, credentials)
        timeout = self.settings.provision_timeout_seconds
        try:
            await run_with_timeout(
                self.gateway.install_or_upgrade_chart(store.id, engine, values, timeout),
                timeout,
                "Chart reinstall timed out",
            )
        except Exception as exc:
            await emit_event(
                self.session_factory, store.id, EventType.ERROR, f"Chart reinstall failed: {exc}"
            )
            raise

        await emit_event(self.session_factory, store.id, EventType.INFO, "Chart release reinstalled")
        return True


async def reconcile_stores(ctx: dict) -> dict:
    """ARQ cron job: run one reconciliation sweep."""
    reconciler: Reconciler = ctx["reconciler"]
    return await reconciler.sweep()
