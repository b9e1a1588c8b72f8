"""Order finalization and inspection routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from app.db.dependencies import get_db
from app.extraction.llm_client import LLMExtractionError
from app.schema.kinds import MutationKind
from app.schemas.changes import ChangeReport
from app.schemas.common import ApiResponse
from app.schemas.order import FinalizeSessionRead, OrderRead
from app.schemas.trigger import MutationEvent
from app.services.aggregation import FinalizeOutcome, try_finalize_session
from app.services.orders import get_order, list_orders
from app.services.records import RecordStoreError
from app.services.workers import build_order_change_monitor, get_stale_after, run_mutation_trigger

router = APIRouter()


@router.post("/sessions/{session_id}/finalize", response_model=ApiResponse[FinalizeSessionRead])
def finalize_session(
    background_tasks: BackgroundTasks,
    session_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[FinalizeSessionRead]:
    """Run one finalization attempt for a session."""

    try:
        result = try_finalize_session(db, session_id, stale_after=get_stale_after())
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if result.outcome == FinalizeOutcome.CREATED:
        background_tasks.add_task(
            run_mutation_trigger,
            MutationEvent(session_id=session_id, mutation=MutationKind.ORDER_CREATED),
        )
    return ApiResponse(
        data=FinalizeSessionRead(session_id=session_id, outcome=result.outcome.value, reason=result.reason)
    )


@router.get("/orders", response_model=ApiResponse[list[OrderRead]])
def get_orders(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> ApiResponse[list[OrderRead]]:
    try:
        orders = list_orders(db, limit=limit, offset=offset)
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=[OrderRead.model_validate(order) for order in orders])


@router.get("/orders/{session_id}", response_model=ApiResponse[OrderRead])
def get_one_order(
    session_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[OrderRead]:
    try:
        order = get_order(db, session_id)
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return ApiResponse(data=OrderRead.model_validate(order))


@router.post("/orders/{session_id}/changes", response_model=ApiResponse[ChangeReport])
def analyze_changes(session_id: str = Path(..., min_length=1)) -> ApiResponse[ChangeReport]:
    """Compare an order with its external snapshot and return the change report."""

    try:
        report = build_order_change_monitor().analyze(session_id)
    except LLMExtractionError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except RecordStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if report is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return ApiResponse(data=report)
