"""Order aggregate and finalization schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.schema.kinds import OrderStatus


class OrderRead(BaseModel):
    """Serialized order aggregate."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    external_id: str | None = None
    status: OrderStatus
    record_count: int
    model_name: str
    prompt_version: str
    extracted_data: dict[str, Any]
    created_at: datetime


class FinalizeSessionRead(BaseModel):
    """Outcome of one finalization attempt."""

    session_id: str
    outcome: str
    reason: str | None = None
