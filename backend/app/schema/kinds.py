"""Controlled vocabularies for records, orders and mutation triggers."""

from __future__ import annotations

from enum import Enum


class RecordKind(str, Enum):
    EMAIL = "email"
    DOCUMENT = "document"


class OrderStatus(str, Enum):
    COMPLETED = "completed"


class MutationKind(str, Enum):
    RECORD_INSERTED = "record_inserted"
    RECORD_ENRICHED = "record_enriched"
    ORDER_CREATED = "order_created"
    ORDER_MODIFIED = "order_modified"

    @property
    def targets_record(self) -> bool:
        return self in (MutationKind.RECORD_INSERTED, MutationKind.RECORD_ENRICHED)


RECORD_KIND_VALUES: tuple[str, ...] = tuple(kind.value for kind in RecordKind)

_RECORD_KIND_SYNONYMS: dict[str, RecordKind] = {
    "email": RecordKind.EMAIL,
    "eml": RecordKind.EMAIL,
    "mail": RecordKind.EMAIL,
    "message": RecordKind.EMAIL,
    "document": RecordKind.DOCUMENT,
    "doc": RecordKind.DOCUMENT,
    "pdf": RecordKind.DOCUMENT,
    "attachment": RecordKind.DOCUMENT,
}


def normalize_record_kind(raw_kind: str | None) -> RecordKind | None:
    """Map a producer-supplied file type onto a known record kind.

    Returns ``None`` for shapes the engine does not recognize.
    """

    if not raw_kind:
        return None
    cleaned = " ".join(raw_kind.strip().split()).lower()
    return _RECORD_KIND_SYNONYMS.get(cleaned)
