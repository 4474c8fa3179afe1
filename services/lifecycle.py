from __future__ import annotations

from datetime import datetime, timezone

from schemas.application import ApplicationRecord, ApplicationStatus
from services.errors import InvalidTransition

S = ApplicationStatus

TERMINAL = frozenset({S.SENT_TO_BANK, S.CANCELLED})

# Statuses in which a run is (or should be) in flight
IN_FLIGHT = frozenset({S.SUBMITTED, S.PROCESSING})

ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    S.SUBMITTED: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.DOCUMENTS_GENERATED, S.CANCELLED}),
    S.DOCUMENTS_GENERATED: frozenset({S.SENT_TO_BANK, S.CANCELLED}),
    S.SENT_TO_BANK: frozenset(),
    S.CANCELLED: frozenset(),
}


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def advance(record: ApplicationRecord, target: ApplicationStatus) -> ApplicationRecord:
    """Move ``record`` to ``target`` in place; terminal statuses stamp archived_at."""
    if not can_transition(record.status, target):
        raise InvalidTransition(record.id, record.status.value, target.value)
    record.status = target
    if target in TERMINAL:
        record.archived_at = datetime.now(timezone.utc)
    return record
