"""
Test doubles and builders shared by the test modules.
"""
import asyncio
from pathlib import Path
from typing import Any, Optional, Sequence

from database import init_db, make_engine, make_session_factory
from schemas.forms import FieldType, FormField, FormTemplate
from services.application_store import SqlApplicationStore
from services.dispatcher import Attachment, SubmissionEmailComposer
from services.errors import CompletionError, DispatchFailure, StorageError
from services.field_mapper import FallbackResult, FieldMapper
from services.form_filler import FormFiller
from services.form_registry import FormRegistry
from services.pipeline import ApplicationPipeline
from services.storage import LocalObjectStorage
from services.template_builder import build_template_pdf
from services.worker import PipelineWorker

BANK = "loans@bank.example"


def sample_intake(**overrides: Any) -> dict[str, Any]:
    data = {
        "applicationId": "APP-TEST-1",
        "name": "Jane Doe",
        "businessName": "Acme LLC",
        "businessPhone": "555-0100",
        "creditScore": 720,
        "annualRevenue": 1_200_000,
        "yearFounded": 2015,
        "taxId": "12-3456789",
        "email": "jane@acme.example",
        "businessAddress": "1 Main St, Austin TX 78701",
        "homeAddress": "9 Elm St, Austin TX 78702",
        "entityType": "LLC",
        "bankEmails": [BANK],
        "ownerSSN": "123-45-6789",
    }
    data.update(overrides)
    return data


def small_template(name: str = "SMALL", extra: Sequence[FormField] = ()) -> FormTemplate:
    return FormTemplate(
        name=name,
        title="Small Test Form",
        filename=f"{name}.pdf",
        fields=(
            FormField(name="businessName", type=FieldType.TEXT),
            FormField(name="creditScore", type=FieldType.NUMERIC),
            FormField(name="isOwner", type=FieldType.BOOLEAN),
            FormField(
                name="notes",
                type=FieldType.REPEATED_GROUP,
                row_count=2,
                columns=(
                    FormField(name="holder", type=FieldType.TEXT),
                    FormField(name="balance", type=FieldType.NUMERIC),
                ),
            ),
            *extra,
        ),
    )


def write_templates(directory: Path, templates: Sequence[FormTemplate]) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for template in templates:
        (directory / template.filename).write_bytes(build_template_pdf(template))


class StubFallback:
    def __init__(self, values: Optional[dict[str, Any]] = None, error: Optional[str] = None, raises: bool = False):
        self.values = values or {}
        self.error = error
        self.raises = raises
        self.calls: list[list[str]] = []

    async def resolve(self, template, record, unmapped):
        self.calls.append(list(unmapped))
        if self.raises:
            raise asyncio.TimeoutError()
        return FallbackResult(values=self.values, error=self.error)


class StubCompletion:
    def __init__(self, reply: str = "", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.reply


class FailingCompletion(StubCompletion):
    def __init__(self):
        super().__init__(error=CompletionError("all providers failed"))


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    async def send(self, recipients, subject, body, attachments: Sequence[Attachment]) -> None:
        if self.fail:
            raise DispatchFailure("SMTP delivery failed: connection refused")
        self.sent.append({"recipients": list(recipients), "subject": subject, "body": body, "attachments": list(attachments)})


class FailingStorage:
    async def store(self, data: bytes, key: str, content_type: str = "application/pdf") -> str:
        raise StorageError(f"Failed to upload {key}")

    async def fetch(self, key: str) -> bytes:
        raise StorageError(f"Failed to download {key}")


class PipelineHarness:
    """Pipeline over in-memory SQLite, local storage in ``root`` and real pypdf templates."""

    def __init__(
        self,
        root: Path,
        with_templates: bool = True,
        dispatcher: Optional[RecordingDispatcher] = None,
        fallback: Optional[StubFallback] = None,
        storage=None,
        clock=None,
    ):
        self.root = Path(root)
        self.templates_dir = self.root / "templates"
        self.registry = FormRegistry()
        if with_templates:
            write_templates(self.templates_dir, self.registry.templates())
        else:
            self.templates_dir.mkdir(parents=True, exist_ok=True)
        self.engine = make_engine("sqlite+aiosqlite:///:memory:")
        self.store = SqlApplicationStore(make_session_factory(self.engine))
        self.storage = storage or LocalObjectStorage(self.root / "generated")
        self.dispatcher = dispatcher or RecordingDispatcher()
        self.worker = PipelineWorker(concurrency=1)
        self.pipeline = ApplicationPipeline(
            store=self.store,
            registry=self.registry,
            mapper=FieldMapper(fallback),
            filler=FormFiller(self.templates_dir, self.storage),
            storage=self.storage,
            dispatcher=self.dispatcher,
            composer=SubmissionEmailComposer(),
            worker=self.worker,
            **({"clock": clock} if clock else {}),
        )

    async def start(self) -> "PipelineHarness":
        await init_db(self.engine)
        self.worker.start()
        return self

    async def drain(self) -> None:
        await asyncio.wait_for(self.worker.join(), timeout=30)

    async def close(self) -> None:
        await self.worker.stop()
        await self.engine.dispose()
