"""Compile a session's records into one labeled document for extraction."""

from __future__ import annotations

from collections.abc import Iterable

from app.models.record import SessionRecord
from app.services.completion import record_kind

_SEGMENT_FIELDS: tuple[tuple[str, str], ...] = (
    ("subject", "Subject"),
    ("derived_summary", "Email Summary"),
    ("body_text", "Email Body"),
    ("extracted_text", "Document Content"),
)


def order_records(records: Iterable[SessionRecord]) -> list[SessionRecord]:
    """Stable compile order: record id ascending, ties broken by kind."""

    return sorted(records, key=lambda record: (record.record_id, record_kind(record)))


def compile_session_content(records: Iterable[SessionRecord]) -> str:
    """Return the labeled document for a record set, or ``""`` if nothing has content.

    The output depends only on the set of records, not on their input order,
    so repeated compilation of a session is byte-identical.
    """

    segments: list[str] = []
    for record in order_records(records):
        parts: list[str] = []
        for field_name, label in _SEGMENT_FIELDS:
            value = getattr(record, field_name, None)
            if isinstance(value, str) and value.strip():
                parts.append(f"{label}:\n{value.strip()}")
        if not parts:
            continue
        header = f"=== {record_kind(record)} record {record.record_id}"
        if record.file_name:
            header += f" ({record.file_name})"
        segments.append(f"{header} ===\n" + "\n\n".join(parts))
    return "\n\n".join(segments)


def resolve_external_id(records: Iterable[SessionRecord]) -> str | None:
    """Return the first external shipment id found in compile order."""

    for record in order_records(records):
        if record.external_id and record.external_id.strip():
            return record.external_id.strip()
    return None
