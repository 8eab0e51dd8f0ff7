"""Store records — queries and the status state machine."""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import InvalidTransition
from app.models.store import Store, StoreEngine, StoreStatus

# Provisioning is the only non-terminal state
_TRANSITIONS: dict[StoreStatus, set[StoreStatus]] = {
    StoreStatus.PROVISIONING: {StoreStatus.READY, StoreStatus.FAILED},
    StoreStatus.READY: set(),
    StoreStatus.FAILED: set(),
}


def transition(store: Store, status: StoreStatus, error_reason: str | None = None) -> bool:
    """Move ``store`` to ``status``, keeping error_reason in step.

    Returns False when the store is already in ``status``. Raises
    InvalidTransition for anything the lifecycle does not allow.
    """
    if status == StoreStatus.FAILED and not error_reason:
        raise ValueError("A failed store needs an error reason")
    if store.status == status:
        return False
    if status not in _TRANSITIONS[store.status]:
        raise InvalidTransition(f"Store {store.id}: {store.status} -> {status} is not allowed")

    store.status = status
    store.error_reason = error_reason if status == StoreStatus.FAILED else None
    return True


async def create_store(
    session: AsyncSession,
    name: str,
    engine: StoreEngine,
    owner_id: str | None = None,
) -> Store:
    store = Store(name=name, engine=engine, owner_id=owner_id)
    session.add(store)
    await session.commit()
    await session.refresh(store)
    return store


async def get_store(session: AsyncSession, store_id: str) -> Store | None:
    # Workers write through their own sessions; never serve a stale copy
    return await session.get(Store, store_id, populate_existing=True)


async def list_stores(session: AsyncSession, owner_id: str | None = None) -> list[Store]:
    stmt = select(Store)
    if owner_id is not None:
        stmt = stmt.where(Store.owner_id == owner_id)
    stmt = stmt.order_by(Store.created_at.desc()).execution_options(  # type: ignore[union-attr]
        populate_existing=True,
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_active_stores(session: AsyncSession) -> list[Store]:
    """Every store reconciliation still cares about, oldest first."""
    stmt = (
        select(Store)
        .where(Store.status != StoreStatus.FAILED)
        .order_by(Store.created_at.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_owner_stores(session: AsyncSession, owner_id: str) -> int:
    stmt = select(func.count()).select_from(Store).where(Store.owner_id == owner_id)
    return (await session.execute(stmt)).scalar_one()
