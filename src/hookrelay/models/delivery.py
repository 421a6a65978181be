"""Pydantic models for the DeliveryRecord entity and dispatch results."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.models.enums import DeliveryStatus


class DeliveryRecord(BaseModel):
    """Durable audit record of one webhook delivery attempt."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str = Field(..., pattern=r"^dlv_[A-Za-z0-9_-]+$")
    provider: str
    topic: str
    payload: Any = None
    headers: dict[str, str] = Field(default_factory=dict)
    signature: str | None = None
    status: DeliveryStatus
    retry_count: int = Field(0, ge=0)
    last_error: str | None = None
    retry_of: str | None = None
    created_at: datetime
    updated_at: datetime


class DispatchOutcome(BaseModel):
    """Result of a single dispatch attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    record_id: str
    provider: str
    topic: str
    status: DeliveryStatus
    error: str | None = None

    @property
    def processed(self) -> bool:
        return self.status == DeliveryStatus.PROCESSED
