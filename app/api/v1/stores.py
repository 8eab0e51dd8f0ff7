"""Store lifecycle endpoints — create, inspect, delete, event log."""

import logging

from arq.connections import ArqRedis, create_pool
from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from app.api.deps import AppSettings, ProvisionerDep, Session
from app.models.store import Store, StoreCreate, StoreRead, StoreStatus
from app.models.store_event import EventType, StoreEvent, StoreEventRead
from app.services import stores as store_service
from app.services.events import DEFAULT_EVENT_LIMIT, list_events, log_event
from app.workers.main import _redis_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stores", tags=["stores"])

QUEUE_UNAVAILABLE = "Provisioning queue unavailable. Please retry later."


class DeleteStoreResponse(BaseModel):
    message: str
    release: str
    namespace: str


# ── Helpers ───────────────────────────────────────────────────


def _to_read(store: Store) -> StoreRead:
    return StoreRead(
        id=store.id,
        name=store.name,
        engine=store.engine,
        status=store.status,
        error_reason=store.error_reason,
        url=store.url,
        owner_id=store.owner_id,
        created_at=store.created_at,
        updated_at=store.updated_at,
    )


def _event_to_read(event: StoreEvent) -> StoreEventRead:
    return StoreEventRead(
        id=event.id,  # type: ignore[arg-type]
        store_id=event.store_id,
        type=event.type,
        message=event.message,
        created_at=event.created_at,
    )


async def _get_or_404(store_id: str, session) -> Store:
    store = await store_service.get_store(session, store_id)
    if store is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store


async def _enqueue_provision(store_id: str) -> None:
    """Hand the store to the worker's provisioning queue."""
    redis: ArqRedis = await create_pool(_redis_settings())
    try:
        await redis.enqueue_job(
            "provision_store",
            store_id=store_id,
            _job_id=f"provision:{store_id}",
        )
    finally:
        await redis.aclose()


# ── Endpoints ─────────────────────────────────────────────────


@router.post("", response_model=StoreRead, status_code=status.HTTP_201_CREATED)
async def create_store(
    body: StoreCreate,
    session: Session,
    settings: AppSettings,
) -> StoreRead:
    """Accept a store: persist it as Provisioning and queue the cluster work."""
    if body.owner_id is not None:
        owned = await store_service.count_owner_stores(session, body.owner_id)
        if owned >= settings.max_stores_per_owner:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"You have reached your limit of {settings.max_stores_per_owner} stores.",
            )

    store = await store_service.create_store(session, body.name, body.engine, body.owner_id)
    await log_event(
        session, store.id, EventType.INFO,
        f"Store creation initiated for {store.name} using {store.engine}",
    )

    try:
        await _enqueue_provision(store.id)
    except Exception as exc:
        logger.exception("Could not enqueue provisioning for store %s", store.id)
        store_service.transition(store, StoreStatus.FAILED, QUEUE_UNAVAILABLE)
        session.add(store)
        await session.commit()
        await session.refresh(store)
        await log_event(session, store.id, EventType.ERROR, f"{QUEUE_UNAVAILABLE} ({exc})")

    return _to_read(store)


@router.get("", response_model=list[StoreRead])
async def list_stores(
    session: Session,
    owner_id: str | None = None,
) -> list[StoreRead]:
    stores = await store_service.list_stores(session, owner_id=owner_id)
    return [_to_read(s) for s in stores]


@router.get("/{store_id}", response_model=StoreRead)
async def get_store(store_id: str, session: Session) -> StoreRead:
    return _to_read(await _get_or_404(store_id, session))


@router.delete("/{store_id}", response_model=DeleteStoreResponse)
async def delete_store(
    store_id: str,
    session: Session,
    provisioner: ProvisionerDep,
) -> DeleteStoreResponse:
    """Tear down cluster resources, then remove the record.

    Teardown problems are recorded as events; the record is removed
    regardless.
    """
    store = await _get_or_404(store_id, session)
    result = await provisioner.teardown(store.id)

    await session.delete(store)
    await session.commit()

    return DeleteStoreResponse(
        message="Store deleted successfully",
        release=result.release,
        namespace=result.namespace,
    )


@router.get("/{store_id}/events", response_model=list[StoreEventRead])
async def get_store_events(
    store_id: str,
    session: Session,
    limit: int = Query(default=DEFAULT_EVENT_LIMIT, ge=1, le=1000),
) -> list[StoreEventRead]:
    """Store events, newest first."""
    await _get_or_404(store_id, session)
    events = await list_events(session, store_id, limit=limit)
    return [_event_to_read(e) for e in events]
