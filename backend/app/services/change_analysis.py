"""Order change analysis against the externally known order snapshot."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.extraction.llm_client import LLMClient, LLMExtractionError, load_prompt, parse_structured_response
from app.schemas.changes import ChangeReport
from app.services.orders import get_order

logger = logging.getLogger(__name__)

CHANGE_ANALYSIS_PROMPT_FILE = "change_analysis_v1.txt"
_SYSTEM_PROMPT = "You are a logistics data analysis expert. Analyze changes and return structured JSON only."
_ITEM_KEYS = frozenset(
    {"field", "fieldName", "field_name", "previous", "current", "oldValue", "newValue", "note", "description"}
)
_BUCKET_ALIASES: dict[str, str] = {
    "critical": "critical",
    "criticalchanges": "critical",
    "minor": "minor",
    "minorchanges": "minor",
    "new": "new_information",
    "newinfo": "new_information",
    "newinformation": "new_information",
    "conflict": "conflicts",
    "conflicts": "conflicts",
}


class OrderSnapshotSource(Protocol):
    """Source of the previously known external order state."""

    def fetch_snapshot(self, external_id: str) -> dict[str, Any] | None:
        """Return the known snapshot or ``None`` when unavailable."""


@dataclass(slots=True)
class HttpOrderSnapshotSource:
    """Fetch order snapshots from the external order API; failures yield ``None``."""

    url: str
    token: str | None = None
    timeout_seconds: int = 15

    def fetch_snapshot(self, external_id: str) -> dict[str, Any] | None:
        query = urllib_parse.urlencode({"csid": f"eq.{external_id}"})
        separator = "&" if "?" in self.url else "?"
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = self.token
        req = urllib_request.Request(url=f"{self.url}{separator}{query}", method="GET", headers=headers)

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            logger.warning("changes.snapshot_http_error external_id=%s status=%s", external_id, exc.code)
            return None
        except (urllib_error.URLError, TimeoutError) as exc:
            logger.warning("changes.snapshot_unavailable external_id=%s detail=%s", external_id, exc)
            return None

        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("changes.snapshot_invalid_json external_id=%s", external_id)
            return None
        if isinstance(decoded, list):
            decoded = decoded[0] if decoded else None
        return decoded if isinstance(decoded, dict) else None


class ChangeAnalyzer:
    """Delegate change categorization to the chat model and validate its answer."""

    def __init__(self, client: LLMClient, *, max_tokens: int = 1500) -> None:
        self._client = client
        self._max_tokens = max_tokens

    def analyze_changes(
        self,
        previous_snapshot: dict[str, Any] | None,
        new_extracted_data: dict[str, Any],
    ) -> ChangeReport:
        """Return a categorized report; failures produce an error-marked report."""

        try:
            prompt = (
                f"{load_prompt(CHANGE_ANALYSIS_PROMPT_FILE)}\n\n"
                f"Existing Record:\n{_dump(previous_snapshot)}\n\n"
                f"New Extracted Data:\n{_dump(new_extracted_data)}"
            )
            raw_text = self._client.complete(
                [
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self._max_tokens,
            )
            payload = parse_structured_response(raw_text)
            normalized = _normalize_report_payload(payload)
            if not normalized:
                raise LLMExtractionError(
                    f"Change report has none of the expected buckets: keys={sorted(map(str, payload))}"
                )
            return ChangeReport.model_validate(normalized)
        except (LLMExtractionError, ValidationError) as exc:
            logger.warning("changes.analysis_failed detail=%s", exc)
            return ChangeReport(error="Failed to analyze changes", details=str(exc))


def analyze_order_changes(
    db: Session,
    session_id: str,
    analyzer: ChangeAnalyzer,
    snapshot_source: OrderSnapshotSource | None = None,
) -> ChangeReport | None:
    """Compare a session's order with its external snapshot and emit the report.

    Returns ``None`` when the session has no order. Never mutates the order.
    """

    order = get_order(db, session_id)
    if order is None:
        logger.error("changes.order_missing session_id=%s", session_id)
        return None

    external_id = order.external_id or session_id
    previous_snapshot = snapshot_source.fetch_snapshot(external_id) if snapshot_source is not None else None
    report = analyzer.analyze_changes(previous_snapshot, dict(order.extracted_data or {}))
    emit_change_report(session_id, external_id, report, has_snapshot=previous_snapshot is not None)
    return report


def emit_change_report(
    session_id: str,
    external_id: str,
    report: ChangeReport,
    *,
    has_snapshot: bool,
) -> None:
    if report.failed:
        logger.warning(
            "changes.report_failed session_id=%s external_id=%s error=%s details=%s",
            session_id,
            external_id,
            report.error,
            report.details,
        )
        return
    logger.info(
        (
            "changes.report session_id=%s external_id=%s has_snapshot=%s "
            "critical=%d minor=%d new_information=%d conflicts=%d report=%s"
        ),
        session_id,
        external_id,
        has_snapshot,
        len(report.critical),
        len(report.minor),
        len(report.new_information),
        len(report.conflicts),
        json.dumps(report.model_dump(mode="json"), sort_keys=True),
    )


class OrderChangeMonitor:
    """Worker-facing change analysis with injected collaborators."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        analyzer: ChangeAnalyzer,
        snapshot_source: OrderSnapshotSource | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._analyzer = analyzer
        self._snapshot_source = snapshot_source

    def analyze(self, session_id: str) -> ChangeReport | None:
        db = self._session_factory()
        try:
            return analyze_order_changes(db, session_id, self._analyzer, self._snapshot_source)
        finally:
            db.close()


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def _normalize_report_payload(payload: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in payload.items():
        bucket = _BUCKET_ALIASES.get(re.sub(r"[^a-z]", "", str(key).lower()))
        if bucket is None:
            continue
        normalized[bucket] = [_normalize_item(item) for item in _as_list(value)]
    return normalized


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict) and _ITEM_KEYS.intersection(value):
        return [value]
    if isinstance(value, dict):
        # Some answers key changes by field name instead of listing them.
        return [
            (
                {**item, "field": item.get("field") or field_name}
                if isinstance(item, dict)
                else {"field": field_name, "note": str(item)}
            )
            for field_name, item in value.items()
        ]
    return [value]


def _normalize_item(item: Any) -> Any:
    if isinstance(item, str):
        return {"field": "", "note": item}
    return item
