from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ExtensionValue = Optional[Union[bool, int, float, str]]


class CamelModel(BaseModel):
    """snake_case attributes, camelCase on the wire (aligned with frontend types)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApplicationStatus(str, Enum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    DOCUMENTS_GENERATED = "documents_generated"
    SENT_TO_BANK = "sent_to_bank"
    CANCELLED = "cancelled"


class BankSubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class SigningStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"


_FINANCIAL_TEXT_FIELDS = (
    "monthly_revenue",
    "monthly_expenses",
    "existing_debt_payment",
    "requested_loan_amount",
    "loan_purpose",
    "purchase_price",
    "available_cash",
    "business_cash_flow",
    "industry_experience",
)


class ApplicantProfile(CamelModel):
    """
    Applicant / business profile collected at intake.

    Keys the profile does not declare are collected into ``additional_form_data``
    (the open extension map) instead of being rejected, so fields gathered
    incrementally by other channels still reach the form mapper.
    """

    name: str = Field(..., min_length=1)
    business_name: str = Field(..., min_length=1)
    business_phone: str = Field(
        ...,
        min_length=1,
        alias="businessPhone",
        validation_alias=AliasChoices("businessPhone", "businessPhoneNumber", "business_phone"),
    )
    credit_score: int = Field(..., ge=300, le=850)
    annual_revenue: float = Field(..., ge=0)
    year_founded: int = Field(..., ge=1800, le=2100)

    tax_id: Optional[str] = None
    email: Optional[str] = None
    business_address: Optional[str] = None
    home_address: Optional[str] = None
    is_us_citizen: Optional[bool] = Field(None, alias="isUSCitizen")
    user_type: Optional[Literal["owner", "buyer"]] = None
    entity_type: Optional[str] = None

    monthly_revenue: Optional[str] = None
    monthly_expenses: Optional[str] = None
    existing_debt_payment: Optional[str] = None
    requested_loan_amount: Optional[str] = None
    loan_purpose: Optional[str] = None
    purchase_price: Optional[str] = None
    available_cash: Optional[str] = None
    business_cash_flow: Optional[str] = None
    industry_experience: Optional[str] = None

    owners: list[dict[str, Any]] = Field(default_factory=list)
    # Personal financial statement schedules, one row object per line item
    notes_payable: Optional[list[dict[str, ExtensionValue]]] = None
    stocks_and_bonds_details: Optional[list[dict[str, ExtensionValue]]] = None
    real_estate_details: Optional[list[dict[str, ExtensionValue]]] = None
    additional_form_data: dict[str, ExtensionValue] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_extension_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known: set[str] = set()
        for name, info in cls.model_fields.items():
            known.add(name)
            if info.alias:
                known.add(info.alias)
            if isinstance(info.validation_alias, AliasChoices):
                known.update(c for c in info.validation_alias.choices if isinstance(c, str))
        extra = {k: v for k, v in data.items() if k not in known}
        if not extra:
            return data
        out = {k: v for k, v in data.items() if k in known}
        merged = {
            **(out.pop("additional_form_data", None) or {}),
            **(out.pop("additionalFormData", None) or {}),
        }
        for k, v in extra.items():
            merged.setdefault(k, v)
        out["additionalFormData"] = merged
        return out

    @field_validator("name", "business_name", "business_phone", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator(*_FINANCIAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _stringify_amounts(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class ApplicationCreate(ApplicantProfile):
    """Intake body: the applicant profile plus routing options."""

    application_id: Optional[str] = Field(None, max_length=64)
    program_type: Optional[str] = None
    bank_emails: list[str] = Field(default_factory=list)

    def to_profile(self) -> ApplicantProfile:
        data = self.model_dump(exclude={"application_id", "program_type", "bank_emails"})
        return ApplicantProfile.model_validate(data)


class BankSubmission(CamelModel):
    bank: str
    status: BankSubmissionStatus = BankSubmissionStatus.SUBMITTED
    submitted_at: datetime


class OfferTerms(CamelModel):
    repayment_term_months: int = Field(..., gt=0)
    annual_interest_rate: float = Field(..., ge=0)
    monthly_payment: float = Field(..., ge=0)
    down_payment_required: float = Field(..., ge=0)


class Offer(CamelModel):
    id: str = Field(default_factory=lambda: f"offer-{uuid.uuid4().hex[:12]}")
    bank: str
    terms: OfferTerms
    status: OfferStatus = OfferStatus.PENDING


class GeneratedDocument(CamelModel):
    file_type: str
    file_name: str
    storage_key: str
    url: Optional[str] = None
    generated_at: datetime
    signed: bool = False
    unmapped_fields: list[str] = Field(default_factory=list)
    written_field_count: int = 0


class UserDocument(CamelModel):
    file_type: Literal["taxReturn", "L&P"]
    file_name: str
    storage_key: str
    url: Optional[str] = None
    uploaded_at: datetime


class SigningMetadata(CamelModel):
    provider: Optional[Literal["docusign", "hellosign", "adobe_sign", "manual"]] = None
    request_id: Optional[str] = None
    status: SigningStatus = SigningStatus.NOT_STARTED
    signed_by: Optional[str] = None
    signed_date: Optional[datetime] = None


class ApplicationRecord(CamelModel):
    id: str
    status: ApplicationStatus = ApplicationStatus.SUBMITTED
    program_type: str
    applicant: ApplicantProfile
    banks: list[BankSubmission] = Field(default_factory=list)
    offers: list[Offer] = Field(default_factory=list)
    generated_documents: list[GeneratedDocument] = Field(default_factory=list)
    user_documents: list[UserDocument] = Field(default_factory=list)
    signing: SigningMetadata = Field(default_factory=SigningMetadata)
    recipients: list[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    email_sent_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ApplicationCreated(CamelModel):
    application_id: str
    status: ApplicationStatus
    message: str


class OfferCreate(CamelModel):
    bank: str = Field(..., min_length=1)
    terms: OfferTerms


class OfferStatusUpdate(CamelModel):
    status: OfferStatus


class ApplicationLookup(CamelModel):
    business_name: Optional[str] = None
    business_phone: Optional[str] = Field(
        None, validation_alias=AliasChoices("businessPhone", "businessPhoneNumber", "business_phone")
    )


class FormFillRequest(CamelModel):
    data: dict[str, Any]
    output_file_name: Optional[str] = None
