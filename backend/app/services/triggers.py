"""Trigger boundary: decode transport messages and dispatch them one by one.

A message is either a flat mutation event::

    {"session_id": "...", "record_id": "...", "mutation": "record_enriched"}

or a table stream envelope as forwarded by the event bus, where the changed
row arrives as a typed attribute map under ``detail.dynamodb.NewImage``.
Rows carrying ``id``/``fileType`` are session records; rows carrying only
``sessionId`` are orders.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from app.extraction.llm_client import LLMExtractionError
from app.schema.kinds import MutationKind, normalize_record_kind
from app.schemas.changes import ChangeReport
from app.schemas.trigger import MutationEvent, TriggerBatchResult, TriggerItemResult, TriggerMessage
from app.services.aggregation import FinalizeOutcome, FinalizeResult
from app.services.records import RecordStoreError

logger = logging.getLogger(__name__)

FinalizeHandler = Callable[[str], FinalizeResult]
ChangeHandler = Callable[[str], ChangeReport | None]
SummarizeHandler = Callable[[str, str], bool]

_RECORD_STREAM_EVENTS: dict[str, MutationKind] = {
    "INSERT": MutationKind.RECORD_INSERTED,
    "MODIFY": MutationKind.RECORD_ENRICHED,
}
_ORDER_STREAM_EVENTS: dict[str, MutationKind] = {
    "INSERT": MutationKind.ORDER_CREATED,
    "MODIFY": MutationKind.ORDER_MODIFIED,
}


class MalformedEventError(ValueError):
    """Raised when a transport message cannot be decoded into a mutation event."""


def decode_mutation_event(body: str | bytes | Mapping[str, Any]) -> MutationEvent:
    """Validate a transport message body into a ``MutationEvent``."""

    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except RecursionError as exc:
            raise MalformedEventError("Message body is nested too deeply") from exc
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError (undecodable bytes) are both ValueErrors.
            raise MalformedEventError(f"Message body is not JSON: {exc}") from exc
    if not isinstance(body, Mapping):
        raise MalformedEventError("Message body must be a JSON object")

    if "detail" in body:
        return _decode_stream_envelope(body["detail"])
    try:
        return MutationEvent.model_validate(dict(body))
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid mutation event: {exc.error_count()} validation error(s)") from exc


def _decode_stream_envelope(detail: Any) -> MutationEvent:
    if not isinstance(detail, Mapping):
        raise MalformedEventError("Stream envelope detail must be an object")
    stream_record = detail.get("dynamodb")
    image = stream_record.get("NewImage") if isinstance(stream_record, Mapping) else None
    if not isinstance(image, Mapping):
        raise MalformedEventError("Stream envelope has no NewImage")

    event_name = str(detail.get("eventName") or "").upper()
    session_id = _attribute_value(image, "sessionId")
    record_id = _attribute_value(image, "id")
    file_type = _attribute_value(image, "fileType")

    if record_id is not None or file_type is not None:
        kind = normalize_record_kind(file_type)
        mutation = _RECORD_STREAM_EVENTS.get(event_name)
        if not (session_id and record_id and kind):
            raise MalformedEventError(
                f"Record image missing required fields: session_id={session_id!r} "
                f"record_id={record_id!r} file_type={file_type!r}"
            )
    else:
        mutation = _ORDER_STREAM_EVENTS.get(event_name)
    if mutation is None:
        raise MalformedEventError(f"Unsupported stream event: {event_name or 'missing'}")

    try:
        return MutationEvent(session_id=session_id or "", record_id=record_id, mutation=mutation)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid stream event: {exc.error_count()} validation error(s)") from exc


def _attribute_value(image: Mapping[str, Any], name: str) -> str | None:
    value = image.get(name)
    if isinstance(value, Mapping):
        for type_key in ("S", "N"):
            if type_key in value and value[type_key] is not None:
                return str(value[type_key])
        return None
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    return None



def dispatch_trigger(
    message: TriggerMessage,
    *,
    finalize: FinalizeHandler,
    analyze_changes: ChangeHandler,
    summarize_email: SummarizeHandler | None = None,
) -> TriggerItemResult:
    """Handle one message; never raises, so sibling messages are unaffected."""

    try:
        event = decode_mutation_event(message.body)
    except MalformedEventError as exc:
        logger.warning("triggers.malformed message_id=%s detail=%s", message.message_id, exc)
        return TriggerItemResult(message_id=message.message_id, status="skipped", reason=str(exc))
    except Exception as exc:
        logger.exception("triggers.undecodable message_id=%s", message.message_id)
        return TriggerItemResult(
            message_id=message.message_id,
            status="skipped",
            reason=f"{type(exc).__name__}: {exc}",
        )

    try:
        if (
            event.mutation == MutationKind.RECORD_INSERTED
            and summarize_email is not None
            and event.record_id
            and summarize_email(event.session_id, event.record_id)
        ):
            return TriggerItemResult(
                message_id=message.message_id,
                session_id=event.session_id,
                record_id=event.record_id,
                status="summarized",
            )

        if event.mutation.targets_record:
            result = finalize(event.session_id)
            return TriggerItemResult(
                message_id=message.message_id,
                session_id=event.session_id,
                record_id=event.record_id,
                status=result.outcome.value,
                reason=result.reason,
                retry=result.outcome == FinalizeOutcome.FAILED and result.retryable,
            )

        report = analyze_changes(event.session_id)
        if report is None:
            return TriggerItemResult(
                message_id=message.message_id,
                session_id=event.session_id,
                status="skipped",
                reason="order not found",
            )
        return TriggerItemResult(
            message_id=message.message_id,
            session_id=event.session_id,
            status="analyzed",
            reason=report.error,
        )
    except (RecordStoreError, LLMExtractionError) as exc:
        logger.exception(
            "triggers.failed message_id=%s session_id=%s mutation=%s",
            message.message_id,
            event.session_id,
            event.mutation.value,
        )
        return TriggerItemResult(
            message_id=message.message_id,
            session_id=event.session_id,
            record_id=event.record_id,
            status="failed",
            reason=str(exc),
            retry=True,
        )
    except Exception as exc:
        logger.exception(
            "triggers.unexpected_failure message_id=%s session_id=%s",
            message.message_id,
            event.session_id,
        )
        return TriggerItemResult(
            message_id=message.message_id,
            session_id=event.session_id,
            record_id=event.record_id,
            status="failed",
            reason=f"{type(exc).__name__}: {exc}",
            retry=True,
        )


def follow_up_events(item: TriggerItemResult) -> list[MutationEvent]:
    """Mutations caused by handling ``item`` that must be triggered in turn.

    A written email summary is a record enrichment; a created order is an
    order creation that feeds change analysis.
    """

    if item.session_id is None:
        return []
    if item.status == "summarized" and item.record_id:
        return [
            MutationEvent(
                session_id=item.session_id,
                record_id=item.record_id,
                mutation=MutationKind.RECORD_ENRICHED,
            )
        ]
    if item.status == FinalizeOutcome.CREATED.value:
        return [MutationEvent(session_id=item.session_id, mutation=MutationKind.ORDER_CREATED)]
    return []


def dispatch_with_follow_ups(
    message: TriggerMessage,
    *,
    finalize: FinalizeHandler,
    analyze_changes: ChangeHandler,
    summarize_email: SummarizeHandler | None = None,
) -> list[TriggerItemResult]:
    """Dispatch ``message`` and then every mutation it causes, in order."""

    items: list[TriggerItemResult] = []
    pending: deque[TriggerMessage] = deque([message])
    while pending:
        current = pending.popleft()
        item = dispatch_trigger(
            current,
            finalize=finalize,
            analyze_changes=analyze_changes,
            summarize_email=summarize_email,
        )
        items.append(item)
        for event in follow_up_events(item):
            logger.info(
                "triggers.follow_up parent=%s session_id=%s mutation=%s",
                current.message_id,
                event.session_id,
                event.mutation.value,
            )
            pending.append(
                TriggerMessage(
                    message_id=f"{message.message_id}/{event.mutation.value}",
                    body=event.model_dump(mode="json"),
                )
            )
    return items


def dispatch_trigger_batch(
    messages: Iterable[TriggerMessage],
    *,
    finalize: FinalizeHandler,
    analyze_changes: ChangeHandler,
    summarize_email: SummarizeHandler | None = None,
) -> TriggerBatchResult:
    """Dispatch every message independently and collect the ones to redeliver.

    Follow-up items are reported alongside their message; a failed follow-up
    marks the originating message for redelivery.
    """

    batch = TriggerBatchResult()
    message_count = 0
    for message in messages:
        message_count += 1
        items = dispatch_with_follow_ups(
            message,
            finalize=finalize,
            analyze_changes=analyze_changes,
            summarize_email=summarize_email,
        )
        batch.items.extend(items)
        if any(item.retry for item in items):
            batch.batch_item_failures.append(message.message_id)
    logger.info(
        "triggers.batch_done messages=%d items=%d redeliver=%d",
        message_count,
        len(batch.items),
        len(batch.batch_item_failures),
    )
    return batch
