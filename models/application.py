from sqlalchemy import JSON, Column, DateTime, String, Text, func

from database import Base


class LoanApplication(Base):
    __tablename__ = "loan_applications"

    id = Column(String(64), primary_key=True, index=True)
    status = Column(String(32), nullable=False, default="submitted", index=True)
    program_type = Column(String(32), nullable=False, default="sba_7a")
    # Applicant profile incl. the open additionalFormData extension map (camelCase keys)
    applicant = Column(JSON, nullable=False)
    # Lookup keys copied out of the applicant profile
    business_name_key = Column(String(255), nullable=True, index=True)
    business_phone_digits = Column(String(32), nullable=True, index=True)
    banks = Column(JSON, nullable=False, default=list)
    offers = Column(JSON, nullable=False, default=list)
    generated_documents = Column(JSON, nullable=False, default=list)
    user_documents = Column(JSON, nullable=False, default=list)
    signing = Column(JSON, nullable=False, default=dict)
    recipients = Column(JSON, nullable=False, default=list)
    last_error = Column(Text, nullable=True)
    email_sent_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
