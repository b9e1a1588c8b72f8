"""Run a real LLM order extraction against a small compiled session.

Usage (from repo root):
    python backend/scripts/smoke_order_extractor.py

Usage (from backend/):
    python scripts/smoke_order_extractor.py
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.models.record import SessionRecord
from app.schema.kinds import RecordKind
from app.services.aggregation import get_default_extractor
from app.services.compilation import compile_session_content


def _demo_records() -> list[SessionRecord]:
    return [
        SessionRecord(
            session_id="smoke-llm",
            record_id="eml-1",
            kind=RecordKind.EMAIL.value,
            declared_child_count=1,
            subject="Re: Booking 1198 / 03072025",
            derived_summary=(
                "Email from bookings@carrier.example: booking 1198 confirmed, vessel departs Rotterdam "
                "2026-03-07, arrival New York 2026-03-19."
            ),
        ),
        SessionRecord(
            session_id="smoke-llm",
            record_id="pdf-1",
            kind=RecordKind.DOCUMENT.value,
            parent_record_id="eml-1",
            file_name="commercial_invoice.pdf",
            extracted_text=(
                "COMMERCIAL INVOICE THE17194. Shipper: Delta Parts BV. Consignee: Hudson Industrial LLC. "
                "Container TGHU8812345. 18 pallets machine components."
            ),
        ),
    ]


def main() -> None:
    content = compile_session_content(_demo_records())
    extractor = get_default_extractor()
    result = extractor.extract(content)
    print(
        json.dumps(
            {
                "model_name": result.model_name,
                "prompt_version": result.prompt_version,
                "data": result.data,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
