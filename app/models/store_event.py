"""StoreEvent model — append-only lifecycle log per store."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import utcnow


class EventType(StrEnum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"


class StoreEvent(SQLModel, table=True):
    __tablename__ = "store_events"

    id: int | None = Field(default=None, primary_key=True)
    # Plain reference: events outlive their store until purged
    store_id: str = Field(max_length=16, nullable=False, index=True)
    type: EventType = Field(default=EventType.INFO, nullable=False)
    message: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class StoreEventRead(SQLModel):
    id: int
    store_id: str
    type: EventType
    message: str
    created_at: datetime
