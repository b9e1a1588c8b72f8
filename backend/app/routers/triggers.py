"""Queue consumer route for batched mutation triggers."""

from fastapi import APIRouter

from app.schemas.common import ApiResponse
from app.schemas.trigger import TriggerBatchRequest, TriggerBatchResult
from app.services.workers import run_trigger_batch

router = APIRouter()


@router.post("/triggers", response_model=ApiResponse[TriggerBatchResult])
def dispatch_triggers(payload: TriggerBatchRequest) -> ApiResponse[TriggerBatchResult]:
    """Dispatch a batch; ``batch_item_failures`` lists messages to redeliver."""

    return ApiResponse(data=run_trigger_batch(payload.messages))
