from schemas.application import (
    ApplicantProfile,
    ApplicationCreate,
    ApplicationCreated,
    ApplicationRecord,
    ApplicationStatus,
    BankSubmission,
    BankSubmissionStatus,
    GeneratedDocument,
    Offer,
    OfferCreate,
    OfferStatus,
    OfferStatusUpdate,
    OfferTerms,
    SigningMetadata,
    SigningStatus,
    UserDocument,
)
from schemas.forms import (
    FieldMapping,
    FieldSource,
    FieldType,
    FillResult,
    FormField,
    FormTemplate,
    MappedField,
    MappingDegradation,
)

__all__ = [
    "ApplicantProfile",
    "ApplicationCreate",
    "ApplicationCreated",
    "ApplicationRecord",
    "ApplicationStatus",
    "BankSubmission",
    "BankSubmissionStatus",
    "GeneratedDocument",
    "Offer",
    "OfferCreate",
    "OfferStatus",
    "OfferStatusUpdate",
    "OfferTerms",
    "SigningMetadata",
    "SigningStatus",
    "UserDocument",
    "FieldMapping",
    "FieldSource",
    "FieldType",
    "FillResult",
    "FormField",
    "FormTemplate",
    "MappedField",
    "MappingDegradation",
]
