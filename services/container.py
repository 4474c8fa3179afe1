"""
Builds the pipeline and its collaborators once at process start.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings
from services.ai_mapping import AIFieldMappingFallback
from services.application_store import SqlApplicationStore
from services.dispatcher import SmtpDispatcher, SubmissionEmailComposer
from services.field_mapper import FieldMapper
from services.form_filler import FormFiller
from services.form_registry import FormRegistry
from services.llm import LLMCompletionClient
from services.pipeline import ApplicationPipeline
from services.storage import LocalObjectStorage, ObjectStorage, S3ObjectStorage
from services.worker import PipelineWorker

logger = logging.getLogger(__name__)


def build_storage(settings: Settings) -> ObjectStorage:
    backend = settings.storage_backend.strip().lower()
    if backend == "s3":
        return S3ObjectStorage(settings.s3_bucket or "", settings.aws_region, settings.storage_max_retries)
    if backend != "local":
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
    return LocalObjectStorage(settings.generated_dir)


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    worker: Optional[PipelineWorker] = None,
) -> ApplicationPipeline:
    registry = FormRegistry()
    storage = build_storage(settings)
    completion = LLMCompletionClient(settings)
    if not completion.available:
        logger.warning("No text-completion provider configured; AI mapping and email drafting disabled")

    fallback = None
    if settings.ai_mapping_enabled and completion.available:
        fallback = AIFieldMappingFallback(completion, settings.llm_max_input_chars)

    composer = SubmissionEmailComposer(
        completion if settings.ai_email_composition and completion.available else None
    )

    return ApplicationPipeline(
        store=SqlApplicationStore(session_factory),
        registry=registry,
        mapper=FieldMapper(fallback),
        filler=FormFiller(settings.templates_dir, storage),
        storage=storage,
        dispatcher=SmtpDispatcher.from_settings(settings),
        composer=composer,
        worker=worker or PipelineWorker(settings.worker_concurrency),
        default_recipients=settings.default_recipients,
        default_program_type=settings.default_program_type,
    )
