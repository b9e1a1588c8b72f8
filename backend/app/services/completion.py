"""Session completion detection.

Decides from the records currently stored for a session whether every
expected part has arrived and been processed. The verdict is a pure
function of the record set: it never performs I/O and never raises for
shapes it does not recognize.

Records are append-only (fields get filled in, never cleared), so for a
fixed set of record ids a complete verdict stays complete. Adding a new,
unprocessed record can still make a session incomplete again.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from app.models.record import SessionRecord
from app.schema.kinds import RecordKind

SessionShape = Literal["empty", "document_only", "email_only", "mixed"]


@dataclass(slots=True)
class CompletionAssessment:
    """Detector verdict with the facts it was derived from."""

    shape: SessionShape
    email_count: int
    document_count: int
    emails_summarized: bool
    documents_extracted: bool
    child_counts_match: bool
    complete: bool
    stale_override: bool = False


def record_kind(record: SessionRecord) -> str:
    """Return the plain string kind of a record (ORM rows or enum-valued instances)."""

    return str(getattr(record.kind, "value", record.kind))


def partition_records(
    records: Iterable[SessionRecord],
) -> tuple[list[SessionRecord], list[SessionRecord]]:
    """Split records into (email records, document records); unknown kinds are dropped."""

    emails: list[SessionRecord] = []
    documents: list[SessionRecord] = []
    for record in records:
        kind = record_kind(record)
        if kind == RecordKind.EMAIL.value:
            emails.append(record)
        elif kind == RecordKind.DOCUMENT.value:
            documents.append(record)
    return emails, documents


def assess_session(
    records: Iterable[SessionRecord],
    *,
    stale_after: timedelta | None = None,
    now: datetime | None = None,
) -> CompletionAssessment:
    """Evaluate the completion rules against a session's records.

    ``stale_after`` enables an opt-in escape hatch: when everything present is
    processed and the only unmet condition is a missing expected document, the
    session is released once its newest record is older than ``stale_after``.
    """

    record_list = list(records)
    emails, documents = partition_records(record_list)
    emails_summarized = all(bool(email.derived_summary) for email in emails)
    documents_extracted = all(bool(document.extracted_text) for document in documents)

    if not emails and documents:
        shape: SessionShape = "document_only"
        child_counts_match = True
        complete = documents_extracted
    elif emails and not documents:
        shape = "email_only"
        child_counts_match = all(not email.declared_child_count for email in emails)
        complete = emails_summarized and child_counts_match
    elif emails and documents:
        shape = "mixed"
        child_counts_match = _child_counts_match(emails, documents)
        complete = emails_summarized and documents_extracted and child_counts_match
    else:
        return CompletionAssessment(
            shape="empty",
            email_count=0,
            document_count=0,
            emails_summarized=False,
            documents_extracted=False,
            child_counts_match=False,
            complete=False,
        )

    stale_override = False
    if (
        not complete
        and stale_after is not None
        and emails_summarized
        and documents_extracted
        and not child_counts_match
        and _is_stale(record_list, stale_after, now)
    ):
        complete = True
        stale_override = True

    return CompletionAssessment(
        shape=shape,
        email_count=len(emails),
        document_count=len(documents),
        emails_summarized=emails_summarized,
        documents_extracted=documents_extracted,
        child_counts_match=child_counts_match,
        complete=complete,
        stale_override=stale_override,
    )


def is_session_complete(
    records: Iterable[SessionRecord],
    *,
    stale_after: timedelta | None = None,
    now: datetime | None = None,
) -> bool:
    """Return whether the session's record set is ready for aggregation."""

    return assess_session(records, stale_after=stale_after, now=now).complete


def _child_counts_match(emails: list[SessionRecord], documents: list[SessionRecord]) -> bool:
    children_per_parent = Counter(
        document.parent_record_id for document in documents if document.parent_record_id
    )
    for email in emails:
        declared = email.declared_child_count or 0
        if declared > 0 and children_per_parent.get(email.record_id, 0) != declared:
            return False
    return True


def _is_stale(records: list[SessionRecord], stale_after: timedelta, now: datetime | None) -> bool:
    timestamps = [
        _as_utc(record.updated_at or record.created_at)
        for record in records
        if (record.updated_at or record.created_at) is not None
    ]
    if not timestamps:
        return False
    reference = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return reference - max(timestamps) >= stale_after


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
