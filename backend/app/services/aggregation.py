"""Session finalization: detect readiness, extract, and create the order once.

Every record mutation triggers an independent call to
``try_finalize_session``. Calls for the same session routinely overlap, so
the only synchronization is the conditional insert in
``create_order_if_absent``: whichever call commits first wins and every
other call reports ``already_exists``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from time import perf_counter

from sqlalchemy.orm import Session

from app.config import get_settings
from app.extraction.extractor_interface import ExtractorInterface
from app.extraction.llm_client import LLMExtractionError, OpenAIChatCompletionsClient
from app.extraction.order_extractor import OrderExtractor
from app.models.order import Order
from app.schema.kinds import OrderStatus
from app.services.compilation import compile_session_content, resolve_external_id
from app.services.completion import assess_session
from app.services.orders import create_order_if_absent, get_order
from app.services.records import list_session_records

logger = logging.getLogger(__name__)


class FinalizeOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    NOT_READY = "not_ready"
    FAILED = "failed"


@dataclass(slots=True)
class FinalizeResult:
    """Outcome of one finalization attempt."""

    session_id: str
    outcome: FinalizeOutcome
    reason: str | None = None
    retryable: bool = False


def get_default_extractor() -> ExtractorInterface:
    """Return the LLM order extractor configured from settings."""

    settings = get_settings()
    if not settings.openai_api_key:
        raise LLMExtractionError(
            "OPENAI_API_KEY is not configured. Set it in backend/.env before running extraction."
        )
    return OrderExtractor(
        OpenAIChatCompletionsClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
        ),
        max_tokens=settings.extraction_max_tokens,
    )


def try_finalize_session(
    db: Session,
    session_id: str,
    extractor: ExtractorInterface | None = None,
    *,
    stale_after: timedelta | None = None,
    now: datetime | None = None,
) -> FinalizeResult:
    """Create the session's order if the session is complete and has no order yet.

    Store failures propagate as ``RecordStoreError``; extraction failures
    become a ``failed`` result and nothing is written.
    """

    total_started = perf_counter()

    if get_order(db, session_id) is not None:
        logger.info("aggregation.already_exists session_id=%s stage=precheck", session_id)
        return FinalizeResult(session_id=session_id, outcome=FinalizeOutcome.ALREADY_EXISTS)

    records = list_session_records(db, session_id)
    assessment = assess_session(records, stale_after=stale_after, now=now)
    if not assessment.complete:
        logger.info(
            (
                "aggregation.not_ready session_id=%s shape=%s emails=%d documents=%d "
                "emails_summarized=%s documents_extracted=%s child_counts_match=%s"
            ),
            session_id,
            assessment.shape,
            assessment.email_count,
            assessment.document_count,
            assessment.emails_summarized,
            assessment.documents_extracted,
            assessment.child_counts_match,
        )
        return FinalizeResult(session_id=session_id, outcome=FinalizeOutcome.NOT_READY)
    if assessment.stale_override:
        logger.warning(
            "aggregation.stale_override session_id=%s emails=%d documents=%d",
            session_id,
            assessment.email_count,
            assessment.document_count,
        )
    logger.info(
        "aggregation.ready session_id=%s shape=%s records=%d",
        session_id,
        assessment.shape,
        len(records),
    )

    content = compile_session_content(records)
    if not content:
        logger.warning("aggregation.failed session_id=%s reason=no_content", session_id)
        return FinalizeResult(session_id=session_id, outcome=FinalizeOutcome.FAILED, reason="no content")

    started = perf_counter()
    try:
        active_extractor = extractor or get_default_extractor()
        extraction = active_extractor.extract(content)
    except LLMExtractionError as exc:
        logger.warning(
            "aggregation.failed session_id=%s reason=extraction_error elapsed_ms=%.2f detail=%s",
            session_id,
            (perf_counter() - started) * 1000.0,
            exc,
        )
        return FinalizeResult(
            session_id=session_id,
            outcome=FinalizeOutcome.FAILED,
            reason=str(exc),
            retryable=True,
        )
    llm_extract_ms = (perf_counter() - started) * 1000.0

    order = Order(
        session_id=session_id,
        external_id=resolve_external_id(records),
        status=OrderStatus.COMPLETED.value,
        record_count=len(records),
        model_name=extraction.model_name,
        prompt_version=extraction.prompt_version,
        extracted_data=dict(extraction.data),
    )
    if not create_order_if_absent(db, order):
        logger.info(
            "aggregation.already_exists session_id=%s stage=conditional_create llm_extract_ms=%.2f",
            session_id,
            llm_extract_ms,
        )
        return FinalizeResult(session_id=session_id, outcome=FinalizeOutcome.ALREADY_EXISTS)

    logger.info(
        "aggregation.created session_id=%s external_id=%s records=%d llm_extract_ms=%.2f total_ms=%.2f",
        session_id,
        order.external_id,
        len(records),
        llm_extract_ms,
        (perf_counter() - total_started) * 1000.0,
    )
    return FinalizeResult(session_id=session_id, outcome=FinalizeOutcome.CREATED)


class OrderAggregator:
    """Worker-facing finalizer with explicitly injected dependencies.

    Each call opens its own database session, so one instance can serve any
    number of concurrent invocations.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        extractor: ExtractorInterface | None = None,
        *,
        stale_after: timedelta | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._extractor = extractor
        self._stale_after = stale_after

    def try_finalize_session(self, session_id: str) -> FinalizeResult:
        db = self._session_factory()
        try:
            return try_finalize_session(
                db,
                session_id,
                self._extractor,
                stale_after=self._stale_after,
            )
        finally:
            db.close()
