"""Worker entry points wiring the engine to settings and the database."""

from __future__ import annotations

import logging
from datetime import timedelta
from time import perf_counter

from app.config import get_settings
from app.db.session import SessionLocal
from app.extraction.llm_client import LLMExtractionError, OpenAIChatCompletionsClient
from app.schemas.changes import ChangeReport
from app.schemas.trigger import MutationEvent, TriggerBatchResult, TriggerMessage
from app.services.aggregation import FinalizeResult, OrderAggregator
from app.services.change_analysis import ChangeAnalyzer, HttpOrderSnapshotSource, OrderChangeMonitor
from app.services.summarization import EmailSummarizer, EmailSummaryWorker
from app.services.triggers import dispatch_trigger_batch, dispatch_with_follow_ups

logger = logging.getLogger(__name__)


def get_stale_after() -> timedelta | None:
    """Return the configured staleness override window, if enabled."""

    seconds = get_settings().stale_session_override_seconds
    return timedelta(seconds=seconds) if seconds else None


def build_order_aggregator() -> OrderAggregator:
    return OrderAggregator(SessionLocal, stale_after=get_stale_after())


def build_order_change_monitor() -> OrderChangeMonitor:
    """Construct the change monitor from settings; raises if OpenAI is not configured."""

    settings = get_settings()
    if not settings.openai_api_key:
        raise LLMExtractionError(
            "OPENAI_API_KEY is not configured. Set it in backend/.env before running change analysis."
        )
    analyzer = ChangeAnalyzer(
        OpenAIChatCompletionsClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
        ),
        max_tokens=settings.change_analysis_max_tokens,
    )
    snapshot_source = None
    if settings.order_snapshot_url:
        snapshot_source = HttpOrderSnapshotSource(
            url=settings.order_snapshot_url,
            token=settings.order_snapshot_token,
            timeout_seconds=settings.order_snapshot_timeout_seconds,
        )
    return OrderChangeMonitor(SessionLocal, analyzer, snapshot_source)


def run_finalize_session_job(session_id: str) -> FinalizeResult:
    total_started = perf_counter()
    result = build_order_aggregator().try_finalize_session(session_id)
    logger.info(
        "workers.finalize_timing session_id=%s outcome=%s total_ms=%.2f",
        session_id,
        result.outcome.value,
        (perf_counter() - total_started) * 1000.0,
    )
    return result


def run_change_analysis_job(session_id: str) -> ChangeReport | None:
    total_started = perf_counter()
    report = build_order_change_monitor().analyze(session_id)
    logger.info(
        "workers.change_analysis_timing session_id=%s total_ms=%.2f",
        session_id,
        (perf_counter() - total_started) * 1000.0,
    )
    return report


def build_email_summary_worker() -> EmailSummaryWorker | None:
    """Construct the email summarizer, or ``None`` when OpenAI is not configured."""

    settings = get_settings()
    if not settings.openai_api_key:
        return None
    summarizer = EmailSummarizer(
        OpenAIChatCompletionsClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
            temperature=settings.email_summary_temperature,
        ),
        max_tokens=settings.email_summary_max_tokens,
    )
    return EmailSummaryWorker(SessionLocal, summarizer)


def run_email_summary_job(session_id: str, record_id: str) -> bool:
    worker = build_email_summary_worker()
    if worker is None:
        logger.warning(
            "workers.summary_skipped session_id=%s record_id=%s reason=openai_not_configured",
            session_id,
            record_id,
        )
        return False
    return worker.summarize(session_id, record_id)


def run_trigger_batch(messages: list[TriggerMessage]) -> TriggerBatchResult:
    """Process a transport batch, isolating failures per message."""

    return dispatch_trigger_batch(
        messages,
        finalize=run_finalize_session_job,
        analyze_changes=run_change_analysis_job,
        summarize_email=run_email_summary_job,
    )


def run_mutation_trigger(event: MutationEvent) -> None:
    """Background task fired after an API-side record mutation."""

    message = TriggerMessage(
        message_id=f"{event.session_id}:{event.record_id or '-'}:{event.mutation.value}",
        body=event.model_dump(mode="json"),
    )
    items = dispatch_with_follow_ups(
        message,
        finalize=run_finalize_session_job,
        analyze_changes=run_change_analysis_job,
        summarize_email=run_email_summary_job,
    )
    for item in items:
        if item.retry:
            logger.warning(
                "workers.trigger_needs_retry message_id=%s session_id=%s status=%s reason=%s",
                item.message_id,
                event.session_id,
                item.status,
                item.reason,
            )
