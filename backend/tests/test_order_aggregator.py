"""Integration tests for one-time order creation from completed sessions."""

from __future__ import annotations

import json
import shutil
import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest import mock

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.extraction.extractor_interface import ExtractorInterface
from app.extraction.llm_client import LLMExtractionError
from app.extraction.order_extractor import OrderExtractor
from app.extraction.types import OrderExtractionResult
from app.models.base import Base
from app.models.order import Order
from app.models.record import SessionRecord
from app.schema.kinds import OrderStatus, RecordKind
from app.schemas.record import RecordCreate, RecordEnrichment
from app.services.aggregation import FinalizeOutcome, OrderAggregator, try_finalize_session
from app.services.compilation import compile_session_content
from app.services.records import RecordStoreError, enrich_record, list_session_records, put_record

EMAIL_ID = "eml-1"


class _StubExtractor(ExtractorInterface):
    model_name = "stub-model-v1"
    prompt_version = "prompt.test.v1"

    def __init__(self, *, error: str | None = None, barrier: threading.Barrier | None = None) -> None:
        self.error = error
        self.barrier = barrier
        self.documents: list[str] = []
        self._lock = threading.Lock()

    def extract(self, document: str) -> OrderExtractionResult:
        with self._lock:
            self.documents.append(document)
        if self.barrier is not None:
            self.barrier.wait(timeout=10)
        if self.error is not None:
            raise LLMExtractionError(self.error)
        return OrderExtractionResult(
            data={"booking_reference": "BKG-884120", "document_chars": len(document)},
            model_name=self.model_name,
            prompt_version=self.prompt_version,
        )


class _JsonReplyClient:
    model = "stub-chat"

    def __init__(self, reply: str) -> None:
        self.reply = reply

    def complete(self, messages, *, max_tokens):  # noqa: ANN001
        _ = messages, max_tokens
        return self.reply


def _seed_ready_session(db: Session, session_id: str, *, documents: int = 2) -> None:
    put_record(
        db,
        session_id,
        RecordCreate(
            record_id=EMAIL_ID,
            kind=RecordKind.EMAIL,
            declared_child_count=2,
            external_id="CSID-6c61e850",
            subject="Booking BKG-884120",
            derived_summary="Email from ops@example.com: booking confirmed",
        ),
    )
    for index in range(1, documents + 1):
        put_record(
            db,
            session_id,
            RecordCreate(
                record_id=f"pdf-{index}",
                kind=RecordKind.DOCUMENT,
                parent_record_id=EMAIL_ID,
                extracted_text=f"Document {index} text",
            ),
        )


class OrderAggregatorTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self.db.execute(delete(Order))
        self.db.execute(delete(SessionRecord))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _order_count(self, session_id: str) -> int:
        return self.db.scalar(select(func.count()).select_from(Order).where(Order.session_id == session_id))

    def test_email_with_two_documents_creates_exactly_one_order(self) -> None:
        session_id = "S1"
        _seed_ready_session(self.db, session_id)
        extractor = _StubExtractor()

        result = try_finalize_session(self.db, session_id, extractor)

        self.assertEqual(result.outcome, FinalizeOutcome.CREATED)
        self.assertEqual(self._order_count(session_id), 1)
        expected_document = compile_session_content(list_session_records(self.db, session_id))
        self.assertEqual(extractor.documents, [expected_document])
        for fragment in ("Booking BKG-884120", "Document 1 text", "Document 2 text"):
            self.assertIn(fragment, expected_document)

        order = self.db.get(Order, session_id)
        assert order is not None
        self.assertEqual(order.status, OrderStatus.COMPLETED.value)
        self.assertEqual(order.external_id, "CSID-6c61e850")
        self.assertEqual(order.record_count, 3)
        self.assertEqual(order.model_name, "stub-model-v1")
        self.assertEqual(order.prompt_version, "prompt.test.v1")
        self.assertEqual(
            order.extracted_data,
            {"booking_reference": "BKG-884120", "document_chars": len(expected_document)},
        )

    def test_missing_declared_document_is_not_ready(self) -> None:
        session_id = "S1-partial"
        _seed_ready_session(self.db, session_id, documents=1)
        extractor = _StubExtractor()

        result = try_finalize_session(self.db, session_id, extractor)

        self.assertEqual(result.outcome, FinalizeOutcome.NOT_READY)
        self.assertEqual(extractor.documents, [])
        self.assertEqual(self._order_count(session_id), 0)

    def test_unknown_session_is_not_ready(self) -> None:
        result = try_finalize_session(self.db, "no-such-session", _StubExtractor())
        self.assertEqual(result.outcome, FinalizeOutcome.NOT_READY)

    def test_finalizing_again_after_creation_reports_already_exists(self) -> None:
        session_id = "S-repeat"
        _seed_ready_session(self.db, session_id)
        extractor = _StubExtractor()

        outcomes = [try_finalize_session(self.db, session_id, extractor).outcome for _ in range(3)]

        self.assertEqual(
            outcomes,
            [FinalizeOutcome.CREATED, FinalizeOutcome.ALREADY_EXISTS, FinalizeOutcome.ALREADY_EXISTS],
        )
        self.assertEqual(len(extractor.documents), 1)
        self.assertEqual(self._order_count(session_id), 1)

    def test_session_becomes_ready_as_enrichment_arrives(self) -> None:
        session_id = "S-staggered"
        put_record(
            self.db,
            session_id,
            RecordCreate(record_id=EMAIL_ID, kind=RecordKind.EMAIL, declared_child_count=1, subject="Booking"),
        )
        put_record(
            self.db,
            session_id,
            RecordCreate(record_id="pdf-1", kind=RecordKind.DOCUMENT, parent_record_id=EMAIL_ID),
        )
        extractor = _StubExtractor()
        outcomes = [try_finalize_session(self.db, session_id, extractor).outcome]

        enrich_record(self.db, session_id, "pdf-1", RecordEnrichment(extracted_text="Invoice INV-7"))
        outcomes.append(try_finalize_session(self.db, session_id, extractor).outcome)
        enrich_record(self.db, session_id, EMAIL_ID, RecordEnrichment(derived_summary="Email from a@b.c: booking"))
        outcomes.append(try_finalize_session(self.db, session_id, extractor).outcome)

        self.assertEqual(
            outcomes,
            [FinalizeOutcome.NOT_READY, FinalizeOutcome.NOT_READY, FinalizeOutcome.CREATED],
        )

    def test_extraction_failure_writes_nothing_and_is_retryable(self) -> None:
        session_id = "S-llm-down"
        _seed_ready_session(self.db, session_id)

        result = try_finalize_session(self.db, session_id, _StubExtractor(error="OpenAI request timed out"))

        self.assertEqual(result.outcome, FinalizeOutcome.FAILED)
        self.assertTrue(result.retryable)
        self.assertIn("timed out", result.reason or "")
        self.assertEqual(self._order_count(session_id), 0)

        retried = try_finalize_session(self.db, session_id, _StubExtractor())
        self.assertEqual(retried.outcome, FinalizeOutcome.CREATED)

    def test_non_json_model_reply_is_an_extraction_failure(self) -> None:
        session_id = "S-non-json"
        _seed_ready_session(self.db, session_id)
        extractor = OrderExtractor(_JsonReplyClient("I could not find any order details."))

        result = try_finalize_session(self.db, session_id, extractor)

        self.assertEqual(result.outcome, FinalizeOutcome.FAILED)
        self.assertEqual(self._order_count(session_id), 0)

    def test_fenced_json_model_reply_creates_order(self) -> None:
        session_id = "S-fenced"
        _seed_ready_session(self.db, session_id)
        reply = "```json\n" + json.dumps({"bookingReference": "BKG-884120", "portOfLoading": "Hamburg"}) + "\n```"

        result = try_finalize_session(self.db, session_id, OrderExtractor(_JsonReplyClient(reply)))

        self.assertEqual(result.outcome, FinalizeOutcome.CREATED)
        order = self.db.get(Order, session_id)
        assert order is not None
        self.assertEqual(order.extracted_data["booking_reference"], "BKG-884120")
        self.assertEqual(order.extracted_data["port_of_loading"], "Hamburg")
        self.assertEqual(order.model_name, "stub-chat")

    def test_complete_session_without_content_fails_without_extracting(self) -> None:
        session_id = "S-blank"
        put_record(
            self.db,
            session_id,
            RecordCreate(record_id="pdf-1", kind=RecordKind.DOCUMENT, extracted_text="   "),
        )
        extractor = _StubExtractor()

        result = try_finalize_session(self.db, session_id, extractor)

        self.assertEqual(result.outcome, FinalizeOutcome.FAILED)
        self.assertEqual(result.reason, "no content")
        self.assertFalse(result.retryable)
        self.assertEqual(extractor.documents, [])

    def test_store_failures_propagate(self) -> None:
        with mock.patch(
            "app.services.aggregation.list_session_records",
            side_effect=RecordStoreError("connection reset"),
        ):
            with self.assertRaises(RecordStoreError):
                try_finalize_session(self.db, "S-store-down", _StubExtractor())


class ConcurrentFinalizationTests(unittest.TestCase):
    WORKERS = 6

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp(prefix="finalize-race-")
        self.engine = create_engine(
            f"sqlite+pysqlite:///{Path(self.tmpdir) / 'race.db'}",
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(self.engine)
        with self.SessionLocal() as db:
            _seed_ready_session(db, "S-concurrent")

    def tearDown(self) -> None:
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _stored_orders(self) -> int:
        with self.SessionLocal() as db:
            return db.scalar(select(func.count()).select_from(Order))

    def test_simultaneous_workers_create_exactly_one_order(self) -> None:
        # Every worker passes the existence check before any of them writes.
        extractor = _StubExtractor(barrier=threading.Barrier(self.WORKERS))
        aggregator = OrderAggregator(self.SessionLocal, extractor)

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            results = list(pool.map(aggregator.try_finalize_session, ["S-concurrent"] * self.WORKERS))

        outcomes = sorted(result.outcome.value for result in results)
        self.assertEqual(outcomes, ["already_exists"] * (self.WORKERS - 1) + ["created"])
        self.assertEqual(len(extractor.documents), self.WORKERS)
        self.assertEqual(len(set(extractor.documents)), 1)
        self.assertEqual(self._stored_orders(), 1)

    def test_losing_the_conditional_create_reports_already_exists(self) -> None:
        competitor = self.SessionLocal()
        self.addCleanup(competitor.close)

        class _CompetingExtractor(_StubExtractor):
            def extract(self, document: str) -> OrderExtractionResult:
                competitor.add(
                    Order(
                        session_id="S-concurrent",
                        model_name="competitor",
                        prompt_version="v0",
                        extracted_data={"winner": "competitor"},
                    )
                )
                competitor.commit()
                return super().extract(document)

        result = OrderAggregator(self.SessionLocal, _CompetingExtractor()).try_finalize_session("S-concurrent")

        self.assertEqual(result.outcome, FinalizeOutcome.ALREADY_EXISTS)
        self.assertEqual(self._stored_orders(), 1)
        with self.SessionLocal() as db:
            order = db.get(Order, "S-concurrent")
            assert order is not None
            self.assertEqual(order.extracted_data, {"winner": "competitor"})

    def test_sequential_workers_create_exactly_one_order(self) -> None:
        extractor = _StubExtractor()
        aggregator = OrderAggregator(self.SessionLocal, extractor)

        outcomes = [aggregator.try_finalize_session("S-concurrent").outcome for _ in range(self.WORKERS)]

        self.assertEqual(outcomes.count(FinalizeOutcome.CREATED), 1)
        self.assertEqual(outcomes.count(FinalizeOutcome.ALREADY_EXISTS), self.WORKERS - 1)
        self.assertEqual(outcomes[0], FinalizeOutcome.CREATED)
        self.assertEqual(self._stored_orders(), 1)


if __name__ == "__main__":
    unittest.main()
