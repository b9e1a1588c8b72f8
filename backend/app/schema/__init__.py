"""Controlled vocabularies shared by models, schemas and services."""

from app.schema.kinds import (
    RECORD_KIND_VALUES,
    MutationKind,
    OrderStatus,
    RecordKind,
    normalize_record_kind,
)

__all__ = [
    "RECORD_KIND_VALUES",
    "MutationKind",
    "OrderStatus",
    "RecordKind",
    "normalize_record_kind",
]
