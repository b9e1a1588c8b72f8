"""Seed a demo email-with-attachments session and try to finalize it.

Records arrive in the same staggered way the ingestion pipeline produces
them: the email and its documents are inserted first, enrichment follows,
and every mutation re-runs finalization. Re-running the script is safe;
duplicate inserts are ignored and the order is only created once.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Make `app` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.db.session import SessionLocal
from app.schema.kinds import RecordKind
from app.schemas.record import RecordCreate, RecordEnrichment
from app.services.aggregation import try_finalize_session
from app.services.records import enrich_record, put_record


DEFAULT_SESSION_ID = "session-demo-0001"
EMAIL_RECORD_ID = "eml-demo-0001"


def build_demo_records() -> list[RecordCreate]:
    """Return one email expecting two documents, plus those documents."""

    return [
        RecordCreate(
            record_id=EMAIL_RECORD_ID,
            kind=RecordKind.EMAIL,
            declared_child_count=2,
            external_id="CSID-6c61e850",
            subject="Booking confirmation BKG-884120 / Hamburg to Shanghai",
            sender="ops@example-forwarder.com",
            body_text="Please find attached the commercial invoice and the draft bill of lading.",
        ),
        RecordCreate(
            record_id="pdf-demo-0001",
            kind=RecordKind.DOCUMENT,
            parent_record_id=EMAIL_RECORD_ID,
            file_name="commercial_invoice.pdf",
        ),
        RecordCreate(
            record_id="pdf-demo-0002",
            kind=RecordKind.DOCUMENT,
            parent_record_id=EMAIL_RECORD_ID,
            file_name="draft_bill_of_lading.pdf",
        ),
    ]


def build_demo_enrichments() -> dict[str, RecordEnrichment]:
    return {
        EMAIL_RECORD_ID: RecordEnrichment(
            derived_summary=(
                "Email from ops@example-forwarder.com: booking BKG-884120 confirmed for two 40ft containers "
                "from Hamburg to Shanghai, ETD 2026-11-02."
            )
        ),
        "pdf-demo-0001": RecordEnrichment(
            extracted_text="Commercial Invoice. Shipper: Nordtech GmbH. Consignee: Lotus Trading Co. Ltd."
        ),
        "pdf-demo-0002": RecordEnrichment(
            extracted_text="Bill of Lading HLCU-BL-55120. Containers MSCU1234565, MSCU7654321. ETA 2026-12-04."
        ),
    }


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo session and run finalization.")
    parser.add_argument(
        "--session-id",
        default=DEFAULT_SESSION_ID,
        help=f"Session ID to seed (default: {DEFAULT_SESSION_ID})",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print the finalization outcome after every mutation."""

    args = parse_args()
    session_id: str = args.session_id

    with SessionLocal() as db:
        for record_input in build_demo_records():
            _, created = put_record(db, session_id, record_input)
            result = try_finalize_session(db, session_id)
            print(f"insert {record_input.record_id} created={created} -> {result.outcome.value}")
        for record_id, enrichment in build_demo_enrichments().items():
            enrich_record(db, session_id, record_id, enrichment)
            result = try_finalize_session(db, session_id)
            reason = f" ({result.reason})" if result.reason else ""
            print(f"enrich {record_id} -> {result.outcome.value}{reason}")

    print()
    print("Inspect:")
    print(f"  GET /sessions/{session_id}/records")
    print(f"  GET /sessions/{session_id}/completion")
    print(f"  GET /orders/{session_id}")


if __name__ == "__main__":
    main()
