"""Email summarization: fill ``derived_summary`` for newly inserted email records."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from time import perf_counter

from sqlalchemy.orm import Session

from app.extraction.llm_client import LLMClient, LLMExtractionError, load_prompt
from app.models.record import SessionRecord
from app.schema.kinds import RecordKind
from app.schemas.record import RecordEnrichment
from app.services.completion import record_kind
from app.services.records import enrich_record, get_record

logger = logging.getLogger(__name__)

EMAIL_SUMMARY_PROMPT_FILE = "email_summary_v1.txt"
_MARKUP_RE = re.compile(r"[*#`]+")


class EmailSummarizer:
    """Summarize one email record with the chat model."""

    def __init__(self, client: LLMClient, *, max_tokens: int = 200) -> None:
        self._client = client
        self._max_tokens = max_tokens

    def summarize(self, record: SessionRecord) -> str:
        """Return a plain-text summary; raises ``LLMExtractionError`` on failure."""

        prompt = (
            f"{load_prompt(EMAIL_SUMMARY_PROMPT_FILE)}\n\n"
            f"Email content:\n{email_content(record)}\n\n"
            "Summary:"
        )
        raw_text = self._client.complete([{"role": "user", "content": prompt}], max_tokens=self._max_tokens)
        summary = clean_summary(raw_text)
        if not summary:
            raise LLMExtractionError(f"Model returned an empty summary for record {record.record_id}")
        return summary


def email_content(record: SessionRecord) -> str:
    """Labeled email text sent to the summarizer; empty when the email has no content."""

    parts = [
        f"{label}: {value.strip()}"
        for label, value in (("From", record.sender), ("Subject", record.subject), ("Body", record.body_text))
        if value and value.strip()
    ]
    return "\n".join(parts)


def clean_summary(text: str | None) -> str:
    if not text:
        return ""
    return " ".join(_MARKUP_RE.sub("", text).split())


def summarize_email_record(
    db: Session,
    session_id: str,
    record_id: str,
    summarizer: EmailSummarizer,
) -> bool:
    """Write a summary for an unsummarized email record.

    Returns ``True`` when a summary was written, which is itself a record
    enrichment the caller must trigger. Documents, unknown records and
    emails that already carry a summary are left alone.
    """

    record = get_record(db, session_id, record_id)
    if record is None or record_kind(record) != RecordKind.EMAIL.value or record.derived_summary:
        return False

    started = perf_counter()
    if email_content(record):
        summary = summarizer.summarize(record)
    else:
        # Nothing to summarize; a fixed summary still lets the session complete.
        summary = f"Email from {record.sender or 'unknown sender'}: no content"
    enrich_record(db, session_id, record_id, RecordEnrichment(derived_summary=summary))
    logger.info(
        "summarization.written session_id=%s record_id=%s chars=%d elapsed_ms=%.2f",
        session_id,
        record_id,
        len(summary),
        (perf_counter() - started) * 1000.0,
    )
    return True


class EmailSummaryWorker:
    """Worker-facing summarizer; one database session per call."""

    def __init__(self, session_factory: Callable[[], Session], summarizer: EmailSummarizer) -> None:
        self._session_factory = session_factory
        self._summarizer = summarizer

    def summarize(self, session_id: str, record_id: str) -> bool:
        db = self._session_factory()
        try:
            return summarize_email_record(db, session_id, record_id, self._summarizer)
        finally:
            db.close()
