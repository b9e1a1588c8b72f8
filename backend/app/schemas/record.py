"""Session record request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.schema.kinds import RecordKind


class RecordCreate(BaseModel):
    """Payload for inserting one processed record into a session."""

    record_id: str = Field(min_length=1, max_length=255)
    kind: RecordKind
    parent_record_id: str | None = None
    declared_child_count: int | None = Field(default=None, ge=0)
    external_id: str | None = None
    file_name: str | None = None
    subject: str | None = None
    sender: str | None = None
    body_text: str | None = None
    extracted_text: str | None = None
    derived_summary: str | None = None

    @model_validator(mode="after")
    def _check_kind_specific_fields(self) -> "RecordCreate":
        if self.kind == RecordKind.DOCUMENT and self.declared_child_count is not None:
            raise ValueError("declared_child_count is only valid for email records")
        if self.kind == RecordKind.EMAIL and self.parent_record_id is not None:
            raise ValueError("parent_record_id is only valid for document records")
        return self


class RecordEnrichment(BaseModel):
    """Fields filled in after creation. Empty values are ignored."""

    extracted_text: str | None = None
    derived_summary: str | None = None
    external_id: str | None = None


class RecordRead(BaseModel):
    """Serialized session record."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    record_id: str
    kind: RecordKind
    parent_record_id: str | None = None
    declared_child_count: int | None = None
    external_id: str | None = None
    file_name: str | None = None
    subject: str | None = None
    sender: str | None = None
    body_text: str | None = None
    extracted_text: str | None = None
    derived_summary: str | None = None
    created_at: datetime
    updated_at: datetime


class SessionCompletionRead(BaseModel):
    """Completion verdict for a session with its record breakdown."""

    session_id: str
    complete: bool
    email_records: int
    document_records: int
