"""Record store services: insert, enrich and query session records."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.record import SessionRecord
from app.schemas.record import RecordCreate, RecordEnrichment

logger = logging.getLogger(__name__)


class RecordStoreError(RuntimeError):
    """Raised when the backing store fails; callers should let the transport redeliver."""


def put_record(db: Session, session_id: str, record_input: RecordCreate) -> tuple[SessionRecord, bool]:
    """Insert a record unless it already exists.

    Returns the stored row and whether this call created it. Re-inserting an
    existing ``(session_id, record_id)`` leaves the stored row untouched.
    """

    existing = get_record(db, session_id, record_input.record_id)
    if existing is not None:
        logger.info(
            "records.duplicate_insert session_id=%s record_id=%s",
            session_id,
            record_input.record_id,
        )
        return existing, False

    record = SessionRecord(
        session_id=session_id,
        **record_input.model_dump(exclude={"kind"}),
        kind=record_input.kind.value,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        # A concurrent producer inserted the same key between our read and write.
        existing = get_record(db, session_id, record_input.record_id)
        if existing is None:
            raise RecordStoreError(f"Failed to insert record {record_input.record_id}") from exc
        return existing, False
    except SQLAlchemyError as exc:
        db.rollback()
        raise RecordStoreError(f"Failed to insert record {record_input.record_id}") from exc
    db.refresh(record)
    logger.info(
        "records.inserted session_id=%s record_id=%s kind=%s",
        session_id,
        record.record_id,
        record.kind,
    )
    return record, True


def enrich_record(
    db: Session,
    session_id: str,
    record_id: str,
    enrichment: RecordEnrichment,
) -> SessionRecord | None:
    """Fill in enrichment fields on an existing record.

    Only non-empty values are applied so a field, once present, is never
    cleared. Returns ``None`` when the record does not exist.
    """

    record = get_record(db, session_id, record_id)
    if record is None:
        return None

    changed_fields: list[str] = []
    for field_name, value in enrichment.model_dump(exclude_none=True).items():
        if isinstance(value, str) and not value.strip():
            continue
        if getattr(record, field_name) == value:
            continue
        setattr(record, field_name, value)
        changed_fields.append(field_name)

    if not changed_fields:
        return record
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise RecordStoreError(f"Failed to enrich record {record_id}") from exc
    db.refresh(record)
    logger.info(
        "records.enriched session_id=%s record_id=%s fields=%s",
        session_id,
        record_id,
        ",".join(sorted(changed_fields)),
    )
    return record


def get_record(db: Session, session_id: str, record_id: str) -> SessionRecord | None:
    """Point lookup by composite key."""

    try:
        return db.get(SessionRecord, (session_id, record_id))
    except SQLAlchemyError as exc:
        raise RecordStoreError(f"Failed to load record {record_id}") from exc


def list_session_records(db: Session, session_id: str) -> list[SessionRecord]:
    """Return every record currently stored for a session."""

    stmt = (
        select(SessionRecord)
        .where(SessionRecord.session_id == session_id)
        .order_by(SessionRecord.record_id.asc(), SessionRecord.kind.asc())
    )
    try:
        return list(db.scalars(stmt).all())
    except SQLAlchemyError as exc:
        raise RecordStoreError(f"Failed to query records for session {session_id}") from exc
