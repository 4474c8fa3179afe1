"""
Application pipeline: state machine outcomes, concurrency, resume and recovery.
Run from project root: python -m pytest tests/test_pipeline.py -v
"""
import asyncio
import tempfile
import unittest
from datetime import date, datetime, timezone
from io import BytesIO
from pathlib import Path
from unittest import mock

from pypdf import PdfReader

from schemas.application import ApplicantProfile, ApplicationRecord, ApplicationStatus, OfferStatus, OfferTerms
from schemas.forms import FieldSource
from services.errors import (
    ApplicationNotFound,
    ApplicationValidationError,
    ConcurrencyConflict,
    InvalidTransition,
    OfferNotFound,
)
from services.pipeline import build_form_input, owner_fields
from tests.fakes import BANK, FailingStorage, PipelineHarness, RecordingDispatcher, StubFallback, sample_intake

S = ApplicationStatus


class _HarnessTestCase(unittest.IsolatedAsyncioTestCase):
    with_templates = True
    dispatcher_fails = False

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dispatcher = RecordingDispatcher(fail=self.dispatcher_fails)
        self.harness = await PipelineHarness(
            Path(self._tmp.name), with_templates=self.with_templates, dispatcher=self.dispatcher
        ).start()
        self.pipeline = self.harness.pipeline

    async def asyncTearDown(self):
        await self.harness.close()
        self._tmp.cleanup()

    async def submit_and_drain(self, **overrides) -> ApplicationRecord:
        created = await self.pipeline.create_application(sample_intake(**overrides))
        await self.harness.drain()
        return await self.pipeline.get_application(created.application_id)


class TestHappyPath(_HarnessTestCase):
    async def test_intake_returns_submitted_immediately(self):
        created = await self.pipeline.create_application(sample_intake())
        self.assertEqual(created.application_id, "APP-TEST-1")
        self.assertEqual(created.status, S.SUBMITTED)
        self.assertTrue(self.pipeline.is_active("APP-TEST-1"))
        await self.harness.drain()
        self.assertFalse(self.pipeline.is_active("APP-TEST-1"))

    async def test_reaches_sent_to_bank(self):
        record = await self.submit_and_drain()

        self.assertEqual(record.status, S.SENT_TO_BANK)
        self.assertIsNotNone(record.email_sent_at)
        self.assertIsNotNone(record.archived_at)
        self.assertIsNone(record.last_error)
        self.assertEqual([b.bank for b in record.banks], [BANK])
        self.assertEqual([d.file_type for d in record.generated_documents], ["SBA_1919", "SBA_413"])
        self.assertEqual(
            record.generated_documents[0].storage_key, "applications/APP-TEST-1/APP-TEST-1_SBAForm1919.pdf"
        )

        sent = self.dispatcher.sent[0]
        self.assertEqual(sent["recipients"], [BANK])
        self.assertIn("APP-TEST-1", sent["subject"])
        self.assertEqual([a.filename for a in sent["attachments"]], [d.file_name for d in record.generated_documents])

    async def test_generated_pdf_holds_applicant_values(self):
        record = await self.submit_and_drain()
        doc = record.generated_documents[0]
        fields = PdfReader(BytesIO(await self.harness.storage.fetch(doc.storage_key))).get_fields()
        self.assertEqual(fields["applicantname"].get("/V"), "Jane Doe")
        self.assertEqual(fields["operatingnbusname"].get("/V"), "Acme LLC")
        self.assertEqual(fields["llc"].get("/V"), "/Yes")
        self.assertEqual(fields["ownTin1"].get("/V"), "123-45-6789")
        self.assertNotIn("applicantname", doc.unmapped_fields)
        self.assertIn("dba", doc.unmapped_fields)

    async def test_schedule_rows_fill_413_group(self):
        notes = [{"namesAndAddressesOfNoteholders": "First Bank, Austin TX", "currentBalance": "$10,000"}]
        record = await self.submit_and_drain(notesPayable=notes)
        self.assertEqual(record.status, S.SENT_TO_BANK)
        self.assertEqual(record.applicant.notes_payable, notes)
        self.assertEqual(record.applicant.additional_form_data, {"ownerSSN": "123-45-6789"})

        doc = record.generated_documents[1]
        self.assertEqual(doc.file_type, "SBA_413")
        self.assertNotIn("notesPayable", doc.unmapped_fields)
        self.assertIn("realEstateDetails", doc.unmapped_fields)
        fields = PdfReader(BytesIO(await self.harness.storage.fetch(doc.storage_key))).get_fields()
        self.assertEqual(fields["notesPayable_1_namesAndAddressesOfNoteholders"].get("/V"), "First Bank, Austin TX")
        self.assertEqual(fields["notesPayable_1_currentBalance"].get("/V"), "10000")

    async def test_generated_id_when_not_supplied(self):
        intake = sample_intake()
        intake.pop("applicationId")
        created = await self.pipeline.create_application(intake)
        self.assertTrue(created.application_id.startswith("APP-"))
        await self.harness.drain()

    async def test_express_program_generates_one_form(self):
        record = await self.submit_and_drain(programType="sba_express")
        self.assertEqual([d.file_type for d in record.generated_documents], ["SBA_1919"])


class TestIntakeValidation(_HarnessTestCase):
    async def test_missing_required_field(self):
        intake = sample_intake()
        intake.pop("businessName")
        with self.assertRaises(ApplicationValidationError) as ctx:
            await self.pipeline.create_application(intake)
        self.assertTrue(any("businessName" in p for p in ctx.exception.problems))
        _, total = await self.pipeline.list_applications()
        self.assertEqual(total, 0)
        self.assertFalse(self.pipeline.is_active("APP-TEST-1"))

    async def test_credit_score_out_of_range(self):
        with self.assertRaises(ApplicationValidationError):
            await self.pipeline.create_application(sample_intake(creditScore=900))

    async def test_unknown_program(self):
        with self.assertRaises(ApplicationValidationError):
            await self.pipeline.create_application(sample_intake(programType="microloan"))

    async def test_get_unknown(self):
        with self.assertRaises(ApplicationNotFound):
            await self.pipeline.get_application("nope")


class TestConcurrency(_HarnessTestCase):
    async def test_second_intake_while_active_rejected(self):
        await self.pipeline.create_application(sample_intake())
        with self.assertRaises(ConcurrencyConflict):
            await self.pipeline.create_application(sample_intake())
        await self.harness.drain()
        self.assertEqual(len(self.dispatcher.sent), 1)

    async def test_persisted_processing_record_counts_as_active(self):
        intake = sample_intake()
        intake.pop("applicationId")
        intake.pop("bankEmails")
        await self.harness.store.save(
            ApplicationRecord(
                id="APP-TEST-1",
                status=S.PROCESSING,
                program_type="sba_7a",
                applicant=ApplicantProfile.model_validate(intake),
            )
        )
        with self.assertRaises(ConcurrencyConflict):
            await self.pipeline.create_application(sample_intake())
        self.assertFalse(self.pipeline.is_active("APP-TEST-1"))

    async def test_finished_id_cannot_be_reused(self):
        await self.submit_and_drain()
        with self.assertRaises(ConcurrencyConflict):
            await self.pipeline.create_application(sample_intake())

    async def test_recover_interrupted_runs(self):
        intake = sample_intake()
        intake.pop("applicationId")
        intake.pop("bankEmails")
        await self.harness.store.save(
            ApplicationRecord(
                id="APP-CRASHED",
                status=S.PROCESSING,
                program_type="sba_7a",
                applicant=ApplicantProfile.model_validate(intake),
                recipients=[BANK],
            )
        )
        self.assertEqual(await self.pipeline.recover_interrupted(), ["APP-CRASHED"])
        await self.harness.drain()
        record = await self.pipeline.get_application("APP-CRASHED")
        self.assertEqual(record.status, S.SENT_TO_BANK)
        self.assertEqual(await self.pipeline.recover_interrupted(), [])


class TestFillerFailure(_HarnessTestCase):
    with_templates = False

    async def test_cancelled_and_never_documents_generated(self):
        record = await self.submit_and_drain()
        self.assertEqual(record.status, S.CANCELLED)
        self.assertEqual(record.generated_documents, [])
        self.assertIn("SBA_1919", record.last_error)
        self.assertIsNotNone(record.archived_at)
        self.assertEqual(self.dispatcher.sent, [])

    async def test_storage_failure_cancels(self):
        harness = PipelineHarness(Path(self._tmp.name) / "s3", storage=FailingStorage())
        await harness.start()
        try:
            await harness.pipeline.create_application(sample_intake())
            await harness.drain()
            record = await harness.pipeline.get_application("APP-TEST-1")
        finally:
            await harness.close()
        self.assertEqual(record.status, S.CANCELLED)
        self.assertIn("Failed to upload", record.last_error)


class TestDispatchFailure(_HarnessTestCase):
    dispatcher_fails = True

    async def test_stays_documents_generated(self):
        record = await self.submit_and_drain()
        self.assertEqual(record.status, S.DOCUMENTS_GENERATED)
        self.assertEqual(len(record.generated_documents), 2)
        self.assertTrue(record.last_error.startswith("Delivery failed"))
        self.assertIsNone(record.email_sent_at)
        self.assertIsNone(record.archived_at)

    async def test_resume_delivers(self):
        await self.submit_and_drain()
        self.dispatcher.fail = False
        await self.pipeline.resume_delivery("APP-TEST-1")
        with self.assertRaises(ConcurrencyConflict):
            await self.pipeline.resume_delivery("APP-TEST-1")
        await self.harness.drain()

        record = await self.pipeline.get_application("APP-TEST-1")
        self.assertEqual(record.status, S.SENT_TO_BANK)
        self.assertEqual(len(self.dispatcher.sent), 1)
        self.assertEqual(len(self.dispatcher.sent[0]["attachments"]), 2)

    async def test_resume_requires_documents_generated(self):
        await self.submit_and_drain()
        await self.pipeline.cancel_application("APP-TEST-1")
        with self.assertRaises(InvalidTransition):
            await self.pipeline.resume_delivery("APP-TEST-1")

    async def test_resume_blocked_while_cancel_saves(self):
        await self.submit_and_drain()
        self.dispatcher.fail = False
        save = self.harness.store.save
        entered, release = asyncio.Event(), asyncio.Event()

        async def slow_save(record):
            entered.set()
            await release.wait()
            return await save(record)

        with mock.patch.object(self.harness.store, "save", slow_save):
            cancelling = asyncio.create_task(self.pipeline.cancel_application("APP-TEST-1"))
            await entered.wait()
            with self.assertRaises(ConcurrencyConflict):
                await self.pipeline.resume_delivery("APP-TEST-1")
            release.set()
            record = await cancelling

        self.assertEqual(record.status, S.CANCELLED)
        self.assertFalse(self.pipeline.is_active("APP-TEST-1"))
        await self.harness.drain()
        self.assertEqual(self.dispatcher.sent, [])

    async def test_no_recipients_is_dispatch_failure(self):
        self.dispatcher.fail = False
        record = await self.submit_and_drain(bankEmails=[])
        self.assertEqual(record.status, S.DOCUMENTS_GENERATED)
        self.assertIn("No bank recipients", record.last_error)


class TestManualOperations(_HarnessTestCase):
    async def test_cancel_terminal_rejected(self):
        await self.submit_and_drain()
        with self.assertRaises(InvalidTransition):
            await self.pipeline.cancel_application("APP-TEST-1")

    async def test_cancel_while_active_rejected(self):
        await self.pipeline.create_application(sample_intake())
        with self.assertRaises(ConcurrencyConflict):
            await self.pipeline.cancel_application("APP-TEST-1")
        await self.harness.drain()

    async def test_offers(self):
        await self.submit_and_drain()
        terms = OfferTerms(
            repayment_term_months=84, annual_interest_rate=10.25, monthly_payment=1690.0, down_payment_required=0
        )
        offer = await self.pipeline.record_offer("APP-TEST-1", BANK, terms)
        self.assertEqual(offer.status, OfferStatus.PENDING)

        updated = await self.pipeline.set_offer_status("APP-TEST-1", offer.id, OfferStatus.ACCEPTED)
        self.assertEqual(updated.status, OfferStatus.ACCEPTED)
        record = await self.pipeline.get_application("APP-TEST-1")
        self.assertEqual(record.offers[0].status, OfferStatus.ACCEPTED)

        with self.assertRaises(OfferNotFound):
            await self.pipeline.set_offer_status("APP-TEST-1", "offer-missing", OfferStatus.DECLINED)


class TestGeneratedIds(unittest.IsolatedAsyncioTestCase):
    async def test_same_clock_tick_gets_distinct_ids(self):
        fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with tempfile.TemporaryDirectory() as tmp:
            harness = await PipelineHarness(Path(tmp), clock=lambda: fixed).start()
            try:
                ids = []
                for business in ("Acme LLC", "Globex Corp"):
                    intake = sample_intake(businessName=business)
                    intake.pop("applicationId")
                    ids.append((await harness.pipeline.create_application(intake)).application_id)
                await harness.drain()
                statuses = [(await harness.pipeline.get_application(i)).status for i in ids]
            finally:
                await harness.close()
        self.assertNotEqual(ids[0], ids[1])
        self.assertEqual(statuses, [S.SENT_TO_BANK, S.SENT_TO_BANK])


class TestQueries(_HarnessTestCase):
    async def test_status_counts(self):
        await self.submit_and_drain()
        counts = await self.pipeline.status_counts()
        self.assertEqual(counts[S.SENT_TO_BANK], 1)
        self.assertEqual(counts[S.SUBMITTED], 0)

    async def test_find_by_name_or_phone(self):
        await self.submit_and_drain()
        self.assertEqual((await self.pipeline.find_application("ACME llc")).id, "APP-TEST-1")
        self.assertEqual((await self.pipeline.find_application("Nobody Inc", "(555) 0100")).id, "APP-TEST-1")
        with self.assertRaises(ApplicationNotFound):
            await self.pipeline.find_application("Nobody Inc")
        with self.assertRaises(ApplicationValidationError):
            await self.pipeline.find_application(" ", None)


class TestStandaloneFill(_HarnessTestCase):
    async def test_deterministic_fill(self):
        data = {"businessName": "Acme LLC", "loans": [{"currentBalance": "5,000"}]}
        mapping, result = await self.pipeline.fill_form("SBA_413", data)
        self.assertTrue(result.success, result.error)
        self.assertTrue(result.output_key.startswith("forms/SBA_413/"))
        self.assertTrue(result.output_key.endswith("_SBAForm413.pdf"))
        self.assertEqual(mapping.fields["notesPayable"].source, FieldSource.HEURISTIC)

        fields = PdfReader(BytesIO(await self.harness.storage.fetch(result.output_key))).get_fields()
        self.assertEqual(fields["notesPayable_1_currentBalance"].get("/V"), "5000")
        _, total = await self.pipeline.list_applications()
        self.assertEqual(total, 0)

    async def test_output_name_kept_inside_form_folder(self):
        _, result = await self.pipeline.fill_form("SBA_1919", {"name": "Jane"}, output_file_name="../../jane")
        self.assertEqual(result.output_key, "forms/SBA_1919/jane.pdf")

    async def test_unknown_template(self):
        with self.assertRaises(KeyError):
            await self.pipeline.fill_form("NOPE", {})

    async def test_auto_fill_uses_fallback(self):
        fallback = StubFallback(values={"dba": "Acme Trading"})
        harness = await PipelineHarness(Path(self._tmp.name) / "auto", fallback=fallback).start()
        try:
            _, plain = await harness.pipeline.fill_form("SBA_1919", {"businessName": "Acme LLC"})
            self.assertEqual(fallback.calls, [])
            self.assertNotIn("dba", plain.written_fields)

            mapping, result = await harness.pipeline.fill_form(
                "SBA_1919", {"businessName": "Acme LLC"}, use_fallback=True
            )
        finally:
            await harness.close()
        self.assertEqual(len(fallback.calls), 1)
        self.assertEqual(mapping.fields["dba"].source, FieldSource.AI_ASSISTED)
        self.assertIn("dba", result.written_fields)


class TestBuildFormInput(unittest.TestCase):
    def _record(self, **overrides) -> ApplicationRecord:
        intake = sample_intake(**overrides)
        intake.pop("applicationId")
        intake.pop("bankEmails")
        return ApplicationRecord(id="APP-5", program_type="sba_7a", applicant=ApplicantProfile.model_validate(intake))

    def test_derived_values(self):
        data = build_form_input(self._record(), date(2026, 3, 1))
        self.assertEqual(data["businessName"], "Acme LLC")
        self.assertEqual(data["businessPhone"], "555-0100")
        self.assertEqual(data["ownerSSN"], "123-45-6789")
        self.assertEqual(data["monthlyRevenue"], "100000")
        self.assertEqual(data["yearsInBusiness"], 11)
        self.assertEqual(data["signatureDate"], "03/01/2026")
        self.assertIs(data["llc"], True)
        self.assertIs(data["businessTypeLLC"], True)
        self.assertEqual(data["applicationId"], "APP-5")
        self.assertNotIn("additionalFormData", data)

    def test_declared_monthly_revenue_kept(self):
        data = build_form_input(self._record(monthlyRevenue=95000), date(2026, 3, 1))
        self.assertEqual(data["monthlyRevenue"], "95000")

    def test_owners_flattened(self):
        owners = [
            {"name": "Jane Doe", "title": "CEO", "ownershipPercentage": "60"},
            {"Name": "John Roe", "SSN": "987-65-4321"},
        ]
        data = build_form_input(self._record(owners=owners), date(2026, 3, 1))
        self.assertEqual(data["ownName1"], "Jane Doe")
        self.assertEqual(data["ownPerc1"], "60")
        self.assertEqual(data["ownName2"], "John Roe")
        self.assertEqual(data["ownTin2"], "987-65-4321")
        self.assertEqual(len(data["owners"]), 2)

    def test_owner_fields_capped_at_five(self):
        owners = [{"name": f"Owner {i}"} for i in range(7)]
        self.assertNotIn("ownName6", owner_fields(owners))

    def test_schedules_passed_through(self):
        rows = [{"typeOfRealEstate": "Office", "presentMarketValue": 450000}]
        data = build_form_input(self._record(realEstateDetails=rows), date(2026, 3, 1))
        self.assertEqual(data["realEstateDetails"], rows)
        self.assertNotIn("notesPayable", data)


if __name__ == "__main__":
    unittest.main()
