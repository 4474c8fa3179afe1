"""
Pipeline error taxonomy.

Mapping degradation is deliberately absent: a fallback that is unavailable or
only partially answers is recorded on the FieldMapping (schemas.forms.MappingDegradation),
not raised.
"""
from __future__ import annotations


class PipelineError(Exception):
    pass


class ApplicationValidationError(PipelineError):
    """Intake payload rejected before any state is created."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid application: " + "; ".join(problems))


class ApplicationNotFound(PipelineError):
    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Application {application_id} not found")


class ConcurrencyConflict(PipelineError):
    """A run is already active for this application id."""

    def __init__(self, application_id: str, detail: str | None = None):
        self.application_id = application_id
        super().__init__(detail or f"Application {application_id} is already being processed")


class InvalidTransition(PipelineError):
    def __init__(self, application_id: str, current: str, target: str):
        self.application_id = application_id
        self.current = current
        self.target = target
        super().__init__(f"Application {application_id}: cannot move from {current} to {target}")


class FillerFailure(PipelineError):
    """Template unreadable or artifact could not be produced; fatal for the run."""

    def __init__(self, template_name: str, reason: str):
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Failed to generate {template_name}: {reason}")


class DispatchFailure(PipelineError):
    """Delivery failed; documents exist, so the record stays resumable."""


class StorageError(PipelineError):
    pass


class CompletionError(Exception):
    """Every text-completion provider failed, timed out, or is unconfigured."""


class OfferNotFound(PipelineError):
    def __init__(self, application_id: str, offer_id: str):
        self.application_id = application_id
        self.offer_id = offer_id
        super().__init__(f"Offer {offer_id} not found on application {application_id}")
