"""
Claim Resolution Engine - Fact Gatherer

Assembles the inputs a scoring or classification step needs from the
database. Pure reads: nothing here writes, commits, or calls out.

Ownership is always checked by joining claim -> property -> organization;
a claim outside the caller's organization is reported as not found.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from ...models.db_models import (
    AuditReportDB, AuditStatus, CarrierEstimateDB, ClaimDB, DocumentDB, DocumentStatus,
    DocumentType, PolicyDB, PropertyDB, ScopeSheetDB, UserDB,
)
from ..errors import NotFoundError, PreconditionFailedError

logger = logging.getLogger(__name__)


@dataclass
class PolicySnapshot:
    """Policy and claim facts embedded in classification/viability prompts."""
    carrier_name: str
    policy_number: Optional[str]
    claim_number: Optional[str]
    incident_date: Optional[date]
    deductible: float
    exclusions: Optional[str]
    loss_type: str


class FactGatherer:
    """Read-only access to claim facts."""

    def __init__(self, db_session: Session):
        self.db = db_session

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def get_claim(self, claim_id: str, org_id: str) -> ClaimDB:
        claim = (
            self.db.query(ClaimDB)
            .join(PropertyDB, ClaimDB.property_id == PropertyDB.id)
            .filter(ClaimDB.id == claim_id, PropertyDB.organization_id == org_id)
            .first()
        )
        if claim is None:
            raise NotFoundError("Claim not found", details={"claim_id": claim_id})
        return claim

    def get_report(self, report_id: str, org_id: str) -> AuditReportDB:
        report = (
            self.db.query(AuditReportDB)
            .join(ClaimDB, AuditReportDB.claim_id == ClaimDB.id)
            .join(PropertyDB, ClaimDB.property_id == PropertyDB.id)
            .filter(AuditReportDB.id == report_id, PropertyDB.organization_id == org_id)
            .first()
        )
        if report is None:
            raise NotFoundError("Audit report not found", details={"audit_report_id": report_id})
        return report

    # -------------------------------------------------------------------------
    # Latest-row lookups
    # -------------------------------------------------------------------------

    def latest_report(self, claim_id: str) -> Optional[AuditReportDB]:
        return (
            self.db.query(AuditReportDB)
            .filter(AuditReportDB.claim_id == claim_id)
            .order_by(AuditReportDB.created_at.desc())
            .first()
        )

    def latest_completed_report(self, claim_id: str) -> Optional[AuditReportDB]:
        return (
            self.db.query(AuditReportDB)
            .filter(
                AuditReportDB.claim_id == claim_id,
                AuditReportDB.status == AuditStatus.COMPLETED.value,
            )
            .order_by(AuditReportDB.created_at.desc())
            .first()
        )

    def latest_scope_sheet(self, claim_id: str) -> Optional[ScopeSheetDB]:
        return (
            self.db.query(ScopeSheetDB)
            .filter(ScopeSheetDB.claim_id == claim_id)
            .order_by(ScopeSheetDB.created_at.desc())
            .first()
        )

    def latest_carrier_estimate(self, claim_id: str) -> Optional[CarrierEstimateDB]:
        return (
            self.db.query(CarrierEstimateDB)
            .filter(CarrierEstimateDB.claim_id == claim_id)
            .order_by(CarrierEstimateDB.uploaded_at.desc())
            .first()
        )

    def confirmed_photos(self, claim_id: str) -> List[DocumentDB]:
        """Confirmed contractor photos in upload order."""
        return (
            self.db.query(DocumentDB)
            .filter(
                DocumentDB.claim_id == claim_id,
                DocumentDB.document_type == DocumentType.CONTRACTOR_PHOTO.value,
                DocumentDB.status == DocumentStatus.CONFIRMED.value,
            )
            .order_by(DocumentDB.created_at.asc(), DocumentDB.id.asc())
            .all()
        )

    def claim_creator(self, claim: ClaimDB) -> Optional[UserDB]:
        if not claim.created_by_user_id:
            return None
        return self.db.query(UserDB).filter(UserDB.id == claim.created_by_user_id).first()

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def policy_for(self, claim: ClaimDB) -> Optional[PolicyDB]:
        if claim.policy_id:
            policy = self.db.query(PolicyDB).filter(PolicyDB.id == claim.policy_id).first()
            if policy is not None:
                return policy
        return (
            self.db.query(PolicyDB)
            .filter(PolicyDB.property_id == claim.property_id)
            .order_by(PolicyDB.created_at.desc())
            .first()
        )

    def policy_snapshot(self, claim: ClaimDB) -> PolicySnapshot:
        policy = self.policy_for(claim)
        if policy is None:
            raise PreconditionFailedError(
                "Claim has no insurance policy on file",
                details={"claim_id": claim.id},
            )
        return PolicySnapshot(
            carrier_name=policy.carrier_name,
            policy_number=policy.policy_number,
            claim_number=claim.claim_number,
            incident_date=claim.incident_date,
            deductible=float(policy.deductible_value or 0.0),
            exclusions=policy.exclusions,
            loss_type=claim.loss_type,
        )
