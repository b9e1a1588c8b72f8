from __future__ import annotations

import unittest

from pydantic import ValidationError
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models.order import Order
from app.models.record import SessionRecord
from app.schema.kinds import RecordKind
from app.schemas.record import RecordCreate, RecordEnrichment, RecordRead
from app.services.orders import create_order_if_absent, get_order, list_orders
from app.services.records import enrich_record, get_record, list_session_records, put_record


class RecordServicesTests(unittest.TestCase):
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

    def test_duplicate_insert_returns_stored_row_unchanged(self) -> None:
        first, created = put_record(
            self.db,
            "S1",
            RecordCreate(record_id="pdf-1", kind=RecordKind.DOCUMENT, extracted_text="Original"),
        )
        again, created_again = put_record(
            self.db,
            "S1",
            RecordCreate(record_id="pdf-1", kind=RecordKind.DOCUMENT, extracted_text="Replayed"),
        )

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(again.extracted_text, "Original")
        self.assertEqual((first.session_id, first.record_id), (again.session_id, again.record_id))
        self.assertEqual(len(list_session_records(self.db, "S1")), 1)

    def test_same_record_id_in_other_session_is_independent(self) -> None:
        put_record(self.db, "S1", RecordCreate(record_id="pdf-1", kind=RecordKind.DOCUMENT))
        _, created = put_record(self.db, "S2", RecordCreate(record_id="pdf-1", kind=RecordKind.DOCUMENT))

        self.assertTrue(created)
        self.assertEqual(len(list_session_records(self.db, "S1")), 1)
        self.assertEqual(len(list_session_records(self.db, "S2")), 1)

    def test_enrichment_fills_fields_and_never_clears_them(self) -> None:
        put_record(
            self.db,
            "S1",
            RecordCreate(record_id="eml-1", kind=RecordKind.EMAIL, declared_child_count=1, subject="Booking"),
        )

        enriched = enrich_record(
            self.db,
            "S1",
            "eml-1",
            RecordEnrichment(derived_summary="Email from ops@example.com: booking", external_id="CSID-1"),
        )
        assert enriched is not None
        self.assertEqual(enriched.derived_summary, "Email from ops@example.com: booking")

        unchanged = enrich_record(
            self.db,
            "S1",
            "eml-1",
            RecordEnrichment(derived_summary="   ", external_id=None, extracted_text=""),
        )
        assert unchanged is not None
        self.assertEqual(unchanged.derived_summary, "Email from ops@example.com: booking")
        self.assertEqual(unchanged.external_id, "CSID-1")
        self.assertIsNone(unchanged.extracted_text)
        self.assertEqual(unchanged.kind, RecordKind.EMAIL.value)
        self.assertEqual(unchanged.declared_child_count, 1)
        self.assertEqual(unchanged.subject, "Booking")

    def test_enrichment_payload_cannot_touch_identity_or_child_count(self) -> None:
        enrichment = RecordEnrichment.model_validate(
            {"derived_summary": "x", "kind": "document", "record_id": "other", "declared_child_count": 5}
        )

        self.assertEqual(
            enrichment.model_dump(exclude_none=True),
            {"derived_summary": "x"},
        )

    def test_enriching_unknown_record_returns_none(self) -> None:
        self.assertIsNone(enrich_record(self.db, "S1", "missing", RecordEnrichment(extracted_text="x")))
        self.assertIsNone(get_record(self.db, "S1", "missing"))

    def test_session_records_are_listed_in_record_id_order(self) -> None:
        for record_id in ("pdf-2", "eml-1", "pdf-1"):
            kind = RecordKind.EMAIL if record_id.startswith("eml") else RecordKind.DOCUMENT
            put_record(self.db, "S1", RecordCreate(record_id=record_id, kind=kind))

        records = list_session_records(self.db, "S1")

        self.assertEqual([record.record_id for record in records], ["eml-1", "pdf-1", "pdf-2"])
        self.assertEqual(RecordRead.model_validate(records[0]).kind, RecordKind.EMAIL)

    def test_kind_specific_fields_are_validated(self) -> None:
        with self.assertRaises(ValidationError):
            RecordCreate(record_id="pdf-1", kind=RecordKind.DOCUMENT, declared_child_count=2)
        with self.assertRaises(ValidationError):
            RecordCreate(record_id="eml-1", kind=RecordKind.EMAIL, parent_record_id="eml-0")
        with self.assertRaises(ValidationError):
            RecordCreate(record_id="eml-1", kind=RecordKind.EMAIL, declared_child_count=-1)

    def test_conditional_order_create_accepts_first_writer_only(self) -> None:
        first = create_order_if_absent(
            self.db,
            Order(session_id="S1", model_name="m", prompt_version="v1", extracted_data={"n": 1}),
        )
        competitor = self.SessionLocal()
        self.addCleanup(competitor.close)
        second = create_order_if_absent(
            competitor,
            Order(session_id="S1", model_name="m", prompt_version="v1", extracted_data={"n": 2}),
        )

        self.assertTrue(first)
        self.assertFalse(second)
        order = get_order(self.db, "S1")
        assert order is not None
        self.assertEqual(order.extracted_data, {"n": 1})
        self.assertEqual([stored.session_id for stored in list_orders(self.db)], ["S1"])


if __name__ == "__main__":
    unittest.main()
