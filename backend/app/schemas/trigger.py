"""Trigger boundary schemas."""

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from app.schema.kinds import MutationKind


class MutationEvent(BaseModel):
    """Validated "something changed" notification for one session."""

    session_id: str = Field(min_length=1)
    record_id: str | None = None
    mutation: MutationKind

    @model_validator(mode="after")
    def _require_record_id_for_record_mutations(self) -> "MutationEvent":
        if self.mutation.targets_record and not self.record_id:
            raise ValueError("record mutations must name a record_id")
        return self


class TriggerMessage(BaseModel):
    """One transport message; the body is decoded at the boundary."""

    message_id: str = Field(min_length=1)
    body: str | dict[str, Any]


class TriggerBatchRequest(BaseModel):
    """Batch of transport messages to dispatch independently."""

    messages: list[TriggerMessage] = Field(default_factory=list, min_length=1)


TriggerItemStatus = Literal[
    "created",
    "already_exists",
    "not_ready",
    "failed",
    "analyzed",
    "skipped",
    "summarized",
]


class TriggerItemResult(BaseModel):
    """Per-message dispatch outcome."""

    message_id: str
    status: TriggerItemStatus
    session_id: str | None = None
    record_id: str | None = None
    reason: str | None = None
    retry: bool = False


class TriggerBatchResult(BaseModel):
    """Batch outcome with the message ids the transport should redeliver."""

    items: list[TriggerItemResult] = Field(default_factory=list)
    batch_item_failures: list[str] = Field(default_factory=list)
