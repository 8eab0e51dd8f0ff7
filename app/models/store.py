"""Store model — one isolated tenant environment, 1:1 with a namespace."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel
from pydantic import Field as PydanticField
from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, new_store_id


class StoreEngine(StrEnum):
    WOOCOMMERCE = "woocommerce"
    MEDUSA = "medusa"


class StoreStatus(StrEnum):
    PROVISIONING = "Provisioning"
    READY = "Ready"
    FAILED = "Failed"


class Store(TimestampMixin, SQLModel, table=True):
    __tablename__ = "stores"

    id: str = Field(default_factory=new_store_id, primary_key=True, max_length=16)
    name: str = Field(max_length=255, nullable=False)
    engine: StoreEngine = Field(nullable=False)
    status: StoreStatus = Field(default=StoreStatus.PROVISIONING, index=True)

    # Set iff status == Failed
    error_reason: str | None = Field(default=None, sa_column=Column(Text))
    # Set once the chart install returns; does not imply readiness
    url: str | None = Field(default=None, max_length=500)

    owner_id: str | None = Field(default=None, max_length=255, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class StoreCreate(BaseModel):
    name: str = PydanticField(min_length=3, max_length=30, pattern=r"^[A-Za-z0-9][A-Za-z0-9 _-]*$")
    engine: StoreEngine = StoreEngine.WOOCOMMERCE
    owner_id: str | None = PydanticField(default=None, max_length=255)


class StoreRead(SQLModel):
    id: str
    name: str
    engine: StoreEngine
    status: StoreStatus
    error_reason: str | None
    url: str | None
    owner_id: str | None
    created_at: datetime
    updated_at: datetime
