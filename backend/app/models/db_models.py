"""
Claim Resolution Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Date
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class AuditStatus(str, Enum):
    """Lifecycle of one generated-estimate attempt."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ApprovalStatus(str, Enum):
    """Homeowner approval lifecycle. Everything but PENDING is terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"


class EscalationStatus(str, Enum):
    """Denormalized legal escalation status on the claim."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DECLINED = "declined"


class DocumentType(str, Enum):
    POLICY_PDF = "policy_pdf"
    CONTRACTOR_PHOTO = "contractor_photo"
    CONTRACTOR_ESTIMATE = "contractor_estimate"
    CARRIER_ESTIMATE = "carrier_estimate"
    PROOF_OF_REPAIR = "proof_of_repair"
    OTHER = "other"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class APICallType(str, Enum):
    ESTIMATE_GENERATION = "estimate_generation"
    COMPARISON_ANALYSIS = "comparison_analysis"
    PM_BRAIN_ANALYSIS = "pm_brain_analysis"
    VIABILITY_ANALYSIS = "viability_analysis"
    DISPUTE_LETTER = "dispute_letter"


class NotificationKind(str, Enum):
    OWNER_APPROVAL_REQUEST = "owner_approval_request"
    LEGAL_PARTNER_PACKAGE = "legal_partner_package"
    PM_CONFIRMATION = "pm_confirmation"


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


# =============================================================================
# OWNERSHIP CHAIN: organization -> property -> claim
# =============================================================================

class OrganizationDB(Base):
    """Property-management organization. Ownership root for every claim."""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    users = relationship("UserDB", back_populates="organization")
    properties = relationship("PropertyDB", back_populates="organization")


class UserDB(Base):
    """Property manager account."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), default="member")
    created_at = Column(DateTime, default=datetime.utcnow)

    organization = relationship("OrganizationDB", back_populates="users")


class PropertyDB(Base):
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True)  # UUID
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    nickname = Column(String(255), nullable=True)
    legal_address = Column(String(500), nullable=False)
    owner_entity_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization = relationship("OrganizationDB", back_populates="properties")
    policies = relationship("PolicyDB", back_populates="property")
    claims = relationship("ClaimDB", back_populates="property")


class PolicyDB(Base):
    __tablename__ = "insurance_policies"

    id = Column(String(36), primary_key=True)  # UUID
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    carrier_name = Column(String(255), nullable=False)
    policy_number = Column(String(100), nullable=True)
    deductible_value = Column(Float, nullable=False, default=0.0)
    exclusions = Column(Text, nullable=True)  # Free text copied from the declarations page
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    property = relationship("PropertyDB", back_populates="policies")


class ClaimDB(Base):
    __tablename__ = "claims"

    id = Column(String(36), primary_key=True)  # UUID
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    policy_id = Column(String(36), ForeignKey("insurance_policies.id", ondelete="SET NULL"), nullable=True)
    claim_number = Column(String(100), nullable=True)
    loss_type = Column(String(50), nullable=False)  # fire, water, wind, hail, ...
    incident_date = Column(Date, nullable=False)
    status = Column(String(50), default="draft")
    adjuster_name = Column(String(255), nullable=True)
    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Legal escalation (denormalized from the latest approval request)
    legal_partner_name = Column(String(255), nullable=True)
    legal_partner_email = Column(String(255), nullable=True)
    owner_email = Column(String(255), nullable=True)
    legal_escalation_status = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    property = relationship("PropertyDB", back_populates="claims")
    policy = relationship("PolicyDB")
    audit_reports = relationship("AuditReportDB", back_populates="claim", cascade="all, delete-orphan")
    approval_requests = relationship("LegalApprovalRequestDB", back_populates="claim", cascade="all, delete-orphan")


# =============================================================================
# CLAIM INPUTS (written by external collaborators, read by the engine)
# =============================================================================

class ScopeSheetDB(Base):
    """Structured inspection record feeding estimate generation."""
    __tablename__ = "scope_sheets"

    id = Column(String(36), primary_key=True)  # UUID
    claim_id = Column(String(36), ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, index=True)
    areas = Column(JSON, nullable=True)  # [{"name": "Roof", "items": [...], "notes": "..."}]
    general_notes = Column(Text, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class CarrierEstimateDB(Base):
    """Carrier settlement estimate uploaded by the PM and parsed elsewhere."""
    __tablename__ = "carrier_estimates"

    id = Column(String(36), primary_key=True)  # UUID
    claim_id = Column(String(36), ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, index=True)
    file_path = Column(String(500), nullable=False)
    file_name = Column(String(255), nullable=False)
    parsed_data = Column(JSON, nullable=True)  # {"line_items": [...], "total": X}
    parse_status = Column(String(20), default="pending")
    uploaded_at = Column(DateTime, default=datetime.utcnow)


class DocumentDB(Base):
    """Uploaded claim document. Only confirmed rows are considered evidence."""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True)  # UUID
    claim_id = Column(String(36), ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = Column(String(50), nullable=False)
    file_url = Column(String(500), nullable=False)  # Storage path, not a public URL
    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=True)
    status = Column(String(20), default=DocumentStatus.PENDING.value)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# DECISION ENGINE OUTPUTS
# =============================================================================

class AuditReportDB(Base):
    """
    One row per generated-estimate attempt for a claim.
    Mutated in place by each later analysis step; only the most recent
    report per claim is authoritative.
    """
    __tablename__ = "audit_reports"

    id = Column(String(36), primary_key=True)  # UUID
    claim_id = Column(String(36), ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, index=True)
    scope_sheet_id = Column(String(36), ForeignKey("scope_sheets.id", ondelete="SET NULL"), nullable=True)
    carrier_estimate_id = Column(String(36), ForeignKey("carrier_estimates.id", ondelete="SET NULL"), nullable=True)

    # Versioned JSON blobs (see app.models.analysis)
    generated_estimate = Column(JSON, nullable=True)
    comparison_data = Column(JSON, nullable=True)
    viability_analysis = Column(JSON, nullable=True)
    pm_brain_analysis = Column(JSON, nullable=True)
    dispute_letter = Column(Text, nullable=True)

    total_contractor_estimate = Column(Float, nullable=True)
    total_carrier_estimate = Column(Float, nullable=True)
    total_delta = Column(Float, nullable=True)

    status = Column(String(20), default=AuditStatus.PENDING.value, nullable=False)
    error_message = Column(Text, nullable=True)
    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    claim = relationship("ClaimDB", back_populates="audit_reports")


class LegalApprovalRequestDB(Base):
    """
    Homeowner consent request for legal escalation.
    One row per escalation attempt; the token is single use.
    """
    __tablename__ = "legal_approval_requests"

    id = Column(String(36), primary_key=True)  # UUID
    claim_id = Column(String(36), ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    owner_name = Column(String(255), nullable=False)
    owner_email = Column(String(255), nullable=False)
    status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    claim = relationship("ClaimDB", back_populates="approval_requests")


class APIUsageLogDB(Base):
    """Model usage metering for billing visibility."""
    __tablename__ = "api_usage_logs"

    id = Column(String(36), primary_key=True)  # UUID
    organization_id = Column(String(36), nullable=True, index=True)
    audit_report_id = Column(String(36), nullable=True, index=True)
    api_call_type = Column(String(50), nullable=False)
    model = Column(String(100), nullable=True)
    prompt_tokens = Column(Integer, default=0)
    completion_tokens = Column(Integer, default=0)
    total_tokens = Column(Integer, default=0)
    estimated_cost = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)


class NotificationLogDB(Base):
    """
    Append-only record of every notification attempt.
    Detached sends write their outcome here instead of to the caller.
    """
    __tablename__ = "notification_logs"

    id = Column(String(36), primary_key=True)  # UUID
    kind = Column(String(50), nullable=False)
    recipient = Column(String(255), nullable=False)
    claim_id = Column(String(36), nullable=True, index=True)
    approval_request_id = Column(String(36), nullable=True, index=True)
    status = Column(String(20), nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
