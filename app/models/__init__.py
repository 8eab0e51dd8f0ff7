"""Import all models so SQLModel.metadata picks them up."""

from app.models.store import Store, StoreCreate, StoreEngine, StoreRead, StoreStatus
from app.models.store_event import EventType, StoreEvent, StoreEventRead

__all__ = [
    "EventType",
    "Store",
    "StoreCreate",
    "StoreEngine",
    "StoreEvent",
    "StoreEventRead",
    "StoreRead",
    "StoreStatus",
]
