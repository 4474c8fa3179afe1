"""
Application assembly pipeline: intake, document generation, delivery.

Intake persists a SUBMITTED record and enqueues a job; the worker drives the
record through PROCESSING -> DOCUMENTS_GENERATED -> SENT_TO_BANK, persisting after
every transition. A filler hard failure cancels the run. A delivery failure leaves
the record at DOCUMENTS_GENERATED so it can be resumed.

At most one run per application id: ids are claimed in an in-process set at
intake/resume and released when the job ends. A manual cancel holds the
claim until its save completes.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from pathlib import PurePath
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from schemas.application import (
    ApplicationCreate,
    ApplicationCreated,
    ApplicationRecord,
    ApplicationStatus,
    BankSubmission,
    GeneratedDocument,
    Offer,
    OfferStatus,
    OfferTerms,
)
from schemas.forms import FieldMapping, FillResult, FormTemplate
from services.application_store import SqlApplicationStore
from services.dispatcher import Attachment, DeliveryDispatcher, SubmissionEmailComposer
from services.errors import (
    ApplicationNotFound,
    ApplicationValidationError,
    ConcurrencyConflict,
    DispatchFailure,
    FillerFailure,
    InvalidTransition,
    OfferNotFound,
    StorageError,
)
from services.field_mapper import FieldMapper
from services.form_filler import FormFiller
from services.form_registry import FormRegistry, entity_type_checkboxes
from services.lifecycle import IN_FLIGHT, advance
from services.storage import ObjectStorage, storage_key
from services.worker import PipelineWorker, ProcessApplication, ResumeDelivery
from utils.case import index_keys
from utils.coerce import format_number

logger = logging.getLogger(__name__)

S = ApplicationStatus

# owner list entry key -> 1919 owner block prefix
_OWNER_KEYS = {
    "ownName": ("name", "ownername", "fullname"),
    "ownTitle": ("title", "ownertitle"),
    "ownPerc": ("percentage", "ownershippercentage", "ownership"),
    "ownTin": ("tin", "ssn", "ownerssn"),
    "ownHome": ("homeaddress", "address"),
}
MAX_OWNERS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe(error: dict[str, Any]) -> str:
    loc = ".".join(str(p) for p in error.get("loc", ()))
    return f"{loc}: {error.get('msg')}" if loc else str(error.get("msg"))


def owner_fields(owners: list[dict[str, Any]]) -> dict[str, Any]:
    """Flatten the owners list into the numbered owner keys (first five owners)."""
    out: dict[str, Any] = {}
    for i, owner in enumerate(owners[:MAX_OWNERS], start=1):
        index = index_keys(owner)
        for prefix, keys in _OWNER_KEYS.items():
            for key in keys:
                if index.get(key) not in (None, ""):
                    out[f"{prefix}{i}"] = index[key]
                    break
    return out


def build_form_input(record: ApplicationRecord, today: date) -> dict[str, Any]:
    """
    Mapper input for one application: camelCase applicant fields over the
    extension map, flattened owners, the schedule row lists, and derived values.
    """
    applicant = record.applicant
    declared = applicant.model_dump(by_alias=True, exclude={"additional_form_data", "owners"}, exclude_none=True)
    data: dict[str, Any] = {**applicant.additional_form_data, **declared}

    if applicant.owners:
        data["owners"] = applicant.owners
        for key, value in owner_fields(applicant.owners).items():
            data.setdefault(key, value)

    if applicant.monthly_revenue is None:
        data["monthlyRevenue"] = format_number(round(applicant.annual_revenue / 12))
    data["yearsInBusiness"] = max(0, today.year - applicant.year_founded)
    data.setdefault("applicationDate", today.strftime("%m/%d/%Y"))
    data.setdefault("signatureDate", today.strftime("%m/%d/%Y"))
    for key, checked in entity_type_checkboxes(applicant.entity_type).items():
        data.setdefault(key, checked)
    data["applicationId"] = record.id
    data["programType"] = record.program_type
    return data


class ApplicationPipeline:
    def __init__(
        self,
        store: SqlApplicationStore,
        registry: FormRegistry,
        mapper: FieldMapper,
        filler: FormFiller,
        storage: ObjectStorage,
        dispatcher: DeliveryDispatcher,
        composer: SubmissionEmailComposer,
        worker: PipelineWorker,
        default_recipients: Iterable[str] = (),
        default_program_type: str = "sba_7a",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._registry = registry
        self._mapper = mapper
        self._filler = filler
        self._storage = storage
        self._dispatcher = dispatcher
        self._composer = composer
        self._worker = worker
        self._default_recipients = list(default_recipients)
        self._default_program_type = default_program_type
        self._clock = clock
        self._active: set[str] = set()

        worker.register(ProcessApplication, self._handle_process)
        worker.register(ResumeDelivery, self._handle_resume)

    @property
    def worker(self) -> PipelineWorker:
        return self._worker

    @property
    def registry(self) -> FormRegistry:
        return self._registry

    @property
    def mapper(self) -> FieldMapper:
        return self._mapper

    @property
    def filler(self) -> FormFiller:
        return self._filler

    # Active-run registry

    def is_active(self, application_id: str) -> bool:
        return application_id in self._active

    def _claim(self, application_id: str) -> None:
        if application_id in self._active:
            raise ConcurrencyConflict(application_id)
        self._active.add(application_id)

    def _release(self, application_id: str) -> None:
        self._active.discard(application_id)

    # Intake and queries

    async def create_application(self, payload: Union[ApplicationCreate, dict[str, Any]]) -> ApplicationCreated:
        try:
            intake = payload if isinstance(payload, ApplicationCreate) else ApplicationCreate.model_validate(payload)
        except ValidationError as e:
            raise ApplicationValidationError([_describe(err) for err in e.errors()]) from e

        program_type = intake.program_type or self._default_program_type
        if program_type not in self._registry.programs():
            raise ApplicationValidationError([f"programType: unknown program {program_type!r}"])

        application_id = intake.application_id or f"APP-{uuid.uuid4().hex[:12].upper()}"
        self._claim(application_id)
        try:
            existing = await self._store.load(application_id)
            if existing is not None:
                if existing.status in IN_FLIGHT:
                    raise ConcurrencyConflict(application_id)
                raise ConcurrencyConflict(
                    application_id, f"Application {application_id} already exists ({existing.status.value})"
                )
            now = self._clock()
            record = ApplicationRecord(
                id=application_id,
                status=S.SUBMITTED,
                program_type=program_type,
                applicant=intake.to_profile(),
                recipients=intake.bank_emails or self._default_recipients,
                submitted_at=now,
                created_at=now,
            )
            await self._store.save(record)
            self._worker.enqueue(ProcessApplication(application_id))
        except BaseException:
            self._release(application_id)
            raise

        logger.info("Application %s submitted (%s)", application_id, program_type)
        return ApplicationCreated(
            application_id=application_id,
            status=S.SUBMITTED,
            message="Application submitted; documents are being generated",
        )

    async def get_application(self, application_id: str) -> ApplicationRecord:
        record = await self._store.load(application_id)
        if record is None:
            raise ApplicationNotFound(application_id)
        return record

    async def list_applications(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[ApplicationStatus] = None,
    ) -> tuple[list[ApplicationRecord], int]:
        return await self._store.list(page=page, limit=limit, status=status)

    async def status_counts(self) -> dict[ApplicationStatus, int]:
        return await self._store.count_by_status()

    async def find_application(
        self, business_name: Optional[str] = None, business_phone: Optional[str] = None
    ) -> ApplicationRecord:
        if not (business_name or "").strip() and not (business_phone or "").strip():
            raise ApplicationValidationError(["Business name or phone number is required"])
        record = await self._store.find_by_business(business_name, business_phone)
        if record is None:
            raise ApplicationNotFound(business_name or business_phone)
        return record

    # Standalone fill

    async def fill_form(
        self,
        template_name: str,
        data: dict[str, Any],
        use_fallback: bool = False,
        output_file_name: Optional[str] = None,
    ) -> tuple[FieldMapping, FillResult]:
        """
        Fill one template from an arbitrary record, outside any application run.
        ``use_fallback`` sends the fields the deterministic passes miss to the AI fallback.
        Raises KeyError for an unknown template.
        """
        template = self._registry.get(template_name)
        if use_fallback:
            mapping = await self._mapper.map(data, template)
        else:
            mapping = self._mapper.map_deterministic(data, template)

        file_name = PurePath(output_file_name).name if output_file_name else ""
        if not file_name:
            file_name = f"{uuid.uuid4().hex[:12]}_{template.filename}"
        elif not file_name.lower().endswith(".pdf"):
            file_name = f"{file_name}.pdf"
        result = await self._filler.fill(template, mapping, f"forms/{template.name}/{file_name}")
        return mapping, result

    # Run

    async def _transition(self, record: ApplicationRecord, target: ApplicationStatus) -> ApplicationRecord:
        previous = record.status
        advance(record, target)
        saved = await self._store.save(record)
        logger.info("Application %s: %s -> %s", record.id, previous.value, target.value)
        return saved

    async def _cancel(self, record: ApplicationRecord, reason: str) -> ApplicationRecord:
        record.last_error = reason
        return await self._transition(record, S.CANCELLED)

    async def _generate(
        self, record: ApplicationRecord, template: FormTemplate, form_input: dict[str, Any]
    ) -> GeneratedDocument:
        mapping = await self._mapper.map(form_input, template)
        file_name = f"{record.id}_{template.filename}"
        key = storage_key(record.id, file_name)
        result = await self._filler.fill(template, mapping, key)
        if not result.success:
            raise FillerFailure(template.name, result.error or "unknown error")
        return GeneratedDocument(
            file_type=template.name,
            file_name=file_name,
            storage_key=key,
            url=result.output_url,
            generated_at=self._clock(),
            unmapped_fields=result.unmapped_fields,
            written_field_count=len(result.written_fields),
        )

    async def run(self, application_id: str) -> ApplicationRecord:
        """Generate every required document, then deliver. Never raises for pipeline failures."""
        record = await self.get_application(application_id)
        if record.status == S.SUBMITTED:
            record = await self._transition(record, S.PROCESSING)
        elif record.status != S.PROCESSING:
            logger.info("Application %s is %s; nothing to generate", application_id, record.status.value)
            return record

        templates = self._registry.templates_for_program(record.program_type)
        form_input = build_form_input(record, self._clock().date())
        documents: list[GeneratedDocument] = []
        for template in templates:
            try:
                documents.append(await self._generate(record, template, form_input))
            except FillerFailure as e:
                logger.error("Application %s: %s", application_id, e)
                return await self._cancel(record, str(e))
            except Exception as e:
                logger.exception("Application %s: unexpected error generating %s", application_id, template.name)
                return await self._cancel(record, f"Failed to generate {template.name}: {e}")

        record.generated_documents = documents
        record.last_error = None
        record = await self._transition(record, S.DOCUMENTS_GENERATED)
        return await self.deliver(record)

    async def deliver(self, record: ApplicationRecord) -> ApplicationRecord:
        """Send the generated package; on failure the record stays at DOCUMENTS_GENERATED."""
        if record.status != S.DOCUMENTS_GENERATED:
            raise InvalidTransition(record.id, record.status.value, S.SENT_TO_BANK.value)

        recipients = list(record.recipients)
        try:
            if not recipients:
                raise DispatchFailure("No bank recipients configured")
            attachments = [
                Attachment(filename=doc.file_name, content=await self._storage.fetch(doc.storage_key))
                for doc in record.generated_documents
            ]
            subject, body = await self._composer.compose(
                record, recipients, [doc.file_type for doc in record.generated_documents], self._clock().year
            )
            await self._dispatcher.send(recipients, subject, body, attachments)
        except (DispatchFailure, StorageError) as e:
            logger.error("Application %s: delivery failed: %s", record.id, e)
            record.last_error = f"Delivery failed: {e}"
            return await self._store.save(record)
        except Exception as e:
            logger.exception("Application %s: delivery failed", record.id)
            record.last_error = f"Delivery failed: {e}"
            return await self._store.save(record)

        now = self._clock()
        already = {b.bank for b in record.banks}
        record.banks = record.banks + [BankSubmission(bank=r, submitted_at=now) for r in recipients if r not in already]
        record.email_sent_at = now
        record.last_error = None
        return await self._transition(record, S.SENT_TO_BANK)

    async def _handle_process(self, job: ProcessApplication) -> None:
        try:
            await self.run(job.application_id)
        finally:
            self._release(job.application_id)

    async def _handle_resume(self, job: ResumeDelivery) -> None:
        try:
            record = await self.get_application(job.application_id)
            await self.deliver(record)
        finally:
            self._release(job.application_id)

    # Manual operations

    async def resume_delivery(self, application_id: str) -> ApplicationRecord:
        if self.is_active(application_id):
            raise ConcurrencyConflict(application_id)
        record = await self.get_application(application_id)
        if record.status != S.DOCUMENTS_GENERATED:
            raise InvalidTransition(application_id, record.status.value, S.SENT_TO_BANK.value)
        self._claim(application_id)
        try:
            self._worker.enqueue(ResumeDelivery(application_id))
        except BaseException:
            self._release(application_id)
            raise
        logger.info("Application %s: delivery resumed", application_id)
        return record

    async def cancel_application(self, application_id: str, reason: str = "Cancelled on request") -> ApplicationRecord:
        # Held until the save so a concurrent resume cannot enqueue delivery in between
        self._claim(application_id)
        try:
            record = await self.get_application(application_id)
            if record.status in IN_FLIGHT:
                raise ConcurrencyConflict(application_id)
            return await self._cancel(record, reason)
        finally:
            self._release(application_id)

    async def record_offer(self, application_id: str, bank: str, terms: OfferTerms) -> Offer:
        record = await self.get_application(application_id)
        offer = Offer(bank=bank, terms=terms)
        record.offers = record.offers + [offer]
        await self._store.save(record)
        logger.info("Application %s: offer %s recorded from %s", application_id, offer.id, bank)
        return offer

    async def set_offer_status(self, application_id: str, offer_id: str, status: OfferStatus) -> Offer:
        record = await self.get_application(application_id)
        for offer in record.offers:
            if offer.id == offer_id:
                offer.status = status
                await self._store.save(record)
                logger.info("Application %s: offer %s -> %s", application_id, offer_id, status.value)
                return offer
        raise OfferNotFound(application_id, offer_id)

    async def recover_interrupted(self) -> list[str]:
        """Re-enqueue runs left in SUBMITTED/PROCESSING by a previous process."""
        recovered: list[str] = []
        for record in await self._store.list_by_status(IN_FLIGHT):
            if self.is_active(record.id):
                continue
            self._claim(record.id)
            self._worker.enqueue(ProcessApplication(record.id))
            recovered.append(record.id)
        if recovered:
            logger.info("Recovered %d interrupted application(s): %s", len(recovered), ", ".join(recovered))
        return recovered
