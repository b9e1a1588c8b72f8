"""Session record ingestion, enrichment and inspection routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from app.db.dependencies import get_db
from app.schema.kinds import MutationKind
from app.schemas.common import ApiResponse
from app.schemas.record import RecordCreate, RecordEnrichment, RecordRead, SessionCompletionRead
from app.schemas.trigger import MutationEvent
from app.services.completion import assess_session
from app.services.records import RecordStoreError, enrich_record, get_record, list_session_records, put_record
from app.services.workers import get_stale_after, run_mutation_trigger

router = APIRouter(prefix="/sessions/{session_id}")


@router.post("/records", response_model=ApiResponse[RecordRead], status_code=201)
def ingest_record(
    payload: RecordCreate,
    background_tasks: BackgroundTasks,
    session_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[RecordRead]:
    """Store one processed record and fire its mutation trigger."""

    try:
        record, created = put_record(db, session_id, payload)
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if created:
        background_tasks.add_task(
            run_mutation_trigger,
            MutationEvent(session_id=session_id, record_id=record.record_id, mutation=MutationKind.RECORD_INSERTED),
        )
    return ApiResponse(data=RecordRead.model_validate(record))


@router.patch("/records/{record_id}", response_model=ApiResponse[RecordRead])
def patch_record(
    payload: RecordEnrichment,
    background_tasks: BackgroundTasks,
    session_id: str = Path(..., min_length=1),
    record_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[RecordRead]:
    """Fill in enrichment fields and fire the record's mutation trigger."""

    try:
        record = enrich_record(db, session_id, record_id, payload)
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    background_tasks.add_task(
        run_mutation_trigger,
        MutationEvent(session_id=session_id, record_id=record_id, mutation=MutationKind.RECORD_ENRICHED),
    )
    return ApiResponse(data=RecordRead.model_validate(record))


@router.get("/records", response_model=ApiResponse[list[RecordRead]])
def get_records(
    session_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[list[RecordRead]]:
    """List every record of a session."""

    try:
        records = list_session_records(db, session_id)
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=[RecordRead.model_validate(record) for record in records])


@router.get("/records/{record_id}", response_model=ApiResponse[RecordRead])
def get_one_record(
    session_id: str = Path(..., min_length=1),
    record_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[RecordRead]:
    try:
        record = get_record(db, session_id, record_id)
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return ApiResponse(data=RecordRead.model_validate(record))


@router.get("/completion", response_model=ApiResponse[SessionCompletionRead])
def get_session_completion(
    session_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[SessionCompletionRead]:
    """Report the completion verdict for a session's current records."""

    try:
        records = list_session_records(db, session_id)
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    assessment = assess_session(records, stale_after=get_stale_after())
    return ApiResponse(
        data=SessionCompletionRead(
            session_id=session_id,
            complete=assessment.complete,
            email_records=assessment.email_count,
            document_records=assessment.document_count,
        )
    )
