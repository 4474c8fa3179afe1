"""
Persistence for application records: one row per application, nested parts as JSON.
save() replaces the whole record in a single transaction.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.application import LoanApplication
from schemas.application import ApplicationRecord, ApplicationStatus

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def phone_digits(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def record_to_row(record: ApplicationRecord, row: LoanApplication) -> None:
    dump = record.model_dump(mode="json", by_alias=True)
    row.id = record.id
    row.status = record.status.value
    row.program_type = record.program_type
    row.applicant = dump["applicant"]
    row.business_name_key = record.applicant.business_name.strip().lower()
    row.business_phone_digits = phone_digits(record.applicant.business_phone)
    row.banks = dump["banks"]
    row.offers = dump["offers"]
    row.generated_documents = dump["generatedDocuments"]
    row.user_documents = dump["userDocuments"]
    row.signing = dump["signing"]
    row.recipients = dump["recipients"]
    row.last_error = record.last_error
    row.email_sent_at = record.email_sent_at
    row.submitted_at = record.submitted_at
    row.archived_at = record.archived_at


def row_to_record(row: LoanApplication) -> ApplicationRecord:
    return ApplicationRecord.model_validate(
        {
            "id": row.id,
            "status": row.status,
            "programType": row.program_type,
            "applicant": row.applicant,
            "banks": row.banks or [],
            "offers": row.offers or [],
            "generatedDocuments": row.generated_documents or [],
            "userDocuments": row.user_documents or [],
            "signing": row.signing or {},
            "recipients": row.recipients or [],
            "lastError": row.last_error,
            "emailSentAt": _aware(row.email_sent_at),
            "submittedAt": _aware(row.submitted_at),
            "archivedAt": _aware(row.archived_at),
            "createdAt": _aware(row.created_at),
            "updatedAt": _aware(row.updated_at),
        }
    )


class SqlApplicationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, application_id: str) -> Optional[ApplicationRecord]:
        async with self._session_factory() as session:
            row = await session.get(LoanApplication, application_id)
            return row_to_record(row) if row else None

    async def save(self, record: ApplicationRecord) -> ApplicationRecord:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(LoanApplication, record.id)
                if row is None:
                    row = LoanApplication(id=record.id, created_at=record.created_at or now)
                    session.add(row)
                record_to_row(record, row)
                row.updated_at = now
            await session.refresh(row)
            saved = row_to_record(row)
        logger.debug("Saved application %s (%s)", saved.id, saved.status.value)
        return saved

    async def list(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[ApplicationStatus] = None,
    ) -> tuple[list[ApplicationRecord], int]:
        page = max(1, page)
        limit = max(1, min(limit, 100))
        async with self._session_factory() as session:
            count_q = select(func.count()).select_from(LoanApplication)
            q = select(LoanApplication).order_by(LoanApplication.created_at.desc(), LoanApplication.id)
            if status is not None:
                count_q = count_q.where(LoanApplication.status == status.value)
                q = q.where(LoanApplication.status == status.value)
            total = (await session.execute(count_q)).scalar_one()
            result = await session.execute(q.offset((page - 1) * limit).limit(limit))
            rows = result.scalars().all()
        return [row_to_record(r) for r in rows], total

    async def count_by_status(self) -> dict[ApplicationStatus, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LoanApplication.status, func.count()).group_by(LoanApplication.status)
            )
            counted = {status: total for status, total in result.all()}
        return {s: counted.get(s.value, 0) for s in ApplicationStatus}

    async def find_by_business(
        self,
        business_name: Optional[str] = None,
        business_phone: Optional[str] = None,
    ) -> Optional[ApplicationRecord]:
        """
        Most recent application for a business. The name is matched case-insensitively;
        the phone number on its digits, and only when the name finds nothing.
        """
        lookups = []
        if business_name and business_name.strip():
            lookups.append(LoanApplication.business_name_key == business_name.strip().lower())
        digits = phone_digits(business_phone)
        if digits:
            lookups.append(LoanApplication.business_phone_digits == digits)

        async with self._session_factory() as session:
            for condition in lookups:
                q = (
                    select(LoanApplication)
                    .where(condition)
                    .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc())
                    .limit(1)
                )
                row = (await session.execute(q)).scalars().first()
                if row is not None:
                    return row_to_record(row)
        return None

    async def list_by_status(self, statuses: Iterable[ApplicationStatus]) -> list[ApplicationRecord]:
        values = [s.value for s in statuses]
        async with self._session_factory() as session:
            result = await session.execute(
                select(LoanApplication).where(LoanApplication.status.in_(values)).order_by(LoanApplication.created_at)
            )
            return [row_to_record(r) for r in result.scalars().all()]
