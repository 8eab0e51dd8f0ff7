"""Store event log — append, mirror to the process log, list newest first."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from app.models.store_event import EventType, StoreEvent

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    EventType.INFO: logging.INFO,
    EventType.SUCCESS: logging.INFO,
    EventType.WARNING: logging.WARNING,
    EventType.ERROR: logging.ERROR,
}

DEFAULT_EVENT_LIMIT = 100


async def log_event(
    session: AsyncSession,
    store_id: str,
    event_type: EventType,
    message: str,
) -> StoreEvent | None:
    """Append an event and commit. A failed write is logged, never raised."""
    logger.log(_LOG_LEVELS[event_type], "[store %s] %s: %s", store_id, event_type, message)
    event = StoreEvent(store_id=store_id, type=event_type, message=message)
    try:
        session.add(event)
        await session.commit()
    except SQLAlchemyError:
        logger.exception("Failed to record event for store %s", store_id)
        await session.rollback()
        return None
    return event


async def list_events(
    session: AsyncSession,
    store_id: str,
    limit: int = DEFAULT_EVENT_LIMIT,
) -> list[StoreEvent]:
    stmt = (
        select(StoreEvent)
        .where(StoreEvent.store_id == store_id)
        .order_by(StoreEvent.created_at.desc(), StoreEvent.id.desc())  # type: ignore[union-attr]
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def emit_event(
    session_factory: sessionmaker,
    store_id: str,
    event_type: EventType,
    message: str,
) -> None:
    """Record an event in a short-lived session of its own."""
    async with session_factory() as session:
        await log_event(session, store_id, event_type, message)
