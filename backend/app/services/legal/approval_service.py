"""
Claim Resolution Engine - Legal Approval State Machine

Homeowner consent for sharing a claim file with a legal partner.

    pending --approve--> approved   (package assembled, partner emailed)
    pending --decline--> declined
    pending --(read or respond after expires_at)--> expired

approved, declined and expired are terminal. Every transition out of
pending is a compare-and-swap on the status column, so two concurrent
responses on one token cannot both succeed.

Expiry is lazy: it is only observed when a token is next read or
responded to.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.analysis import ComparisonResult, GeneratedEstimate, PMBrainAnalysis, load_blob
from ...models.db_models import (
    ApprovalStatus, AuditReportDB, ClaimDB, EscalationStatus, LegalApprovalRequestDB,
    NotificationKind, PropertyDB,
)
from ..claims.fact_gatherer import FactGatherer
from ..errors import (
    ArtifactAssemblyError, EmailDeliveryError, InvalidArgumentError,
    NotFoundError, PackageDeliveryError, PreconditionFailedError,
)
from ..notifications import (
    NotificationDispatcher, legal_partner_email, owner_approval_email, pm_confirmation_email,
)
from .package_builder import LegalPackage, PackageBuilder
from .report_renderer import ReportContext, render_discrepancy_report

logger = logging.getLogger(__name__)

APPROVAL_TTL = timedelta(days=7)

ACTION_APPROVE = "approve"
ACTION_DECLINE = "decline"
RESPONSE_ACTIONS = (ACTION_APPROVE, ACTION_DECLINE)


@dataclass
class ClaimSummary:
    """What the homeowner sees on the approval page."""
    property_address: str
    claim_number: Optional[str]
    loss_type: str
    carrier_name: Optional[str]
    total_contractor_estimate: Optional[float]
    total_carrier_estimate: Optional[float]
    total_delta: Optional[float]


@dataclass
class ApprovalView:
    request: LegalApprovalRequestDB
    claim_summary: ClaimSummary


@dataclass
class ApprovalOutcome:
    request: LegalApprovalRequestDB
    package: Optional[LegalPackage] = None


def _require_text(value: Optional[str], field_name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidArgumentError(f"{field_name} is required", details={"field": field_name})
    return cleaned


def _require_email(value: Optional[str], field_name: str) -> str:
    cleaned = _require_text(value, field_name)
    local, _, domain = cleaned.partition("@")
    if not local or "." not in domain:
        raise InvalidArgumentError(f"{field_name} is not a valid email address", details={"field": field_name})
    return cleaned


class LegalApprovalService:
    def __init__(
        self,
        db_session: Session,
        package_builder: PackageBuilder,
        dispatcher: NotificationDispatcher,
        frontend_url: str = "http://localhost:5173",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.packages = package_builder
        self.dispatcher = dispatcher
        self.frontend_url = frontend_url.rstrip("/")
        self.clock = clock or datetime.utcnow
        self.facts = FactGatherer(db_session)

    def approval_url(self, token: str) -> str:
        return f"{self.frontend_url}/legal-approval/{token}"

    # =========================================================================
    # ISSUE
    # =========================================================================

    def issue_request(
        self,
        claim_id: str,
        org_id: str,
        legal_partner_name: str,
        legal_partner_email: str,
        owner_name: str,
        owner_email: str,
    ) -> LegalApprovalRequestDB:
        """
        Create a pending request and record the escalation on the claim.

        Both rows are written in one commit. The homeowner invite is sent
        detached afterwards; its failure never undoes the request.
        """
        partner_name = _require_text(legal_partner_name, "legal_partner_name")
        partner_email = _require_email(legal_partner_email, "legal_partner_email")
        owner_name = _require_text(owner_name, "owner_name")
        owner_email = _require_email(owner_email, "owner_email")

        claim = self.facts.get_claim(claim_id, org_id)
        now = self.clock()
        request = LegalApprovalRequestDB(
            id=str(uuid4()),
            claim_id=claim.id,
            token=str(uuid4()),
            owner_name=owner_name,
            owner_email=owner_email,
            status=ApprovalStatus.PENDING.value,
            expires_at=now + APPROVAL_TTL,
            created_at=now,
        )
        try:
            self.db.add(request)
            claim.legal_partner_name = partner_name
            claim.legal_partner_email = partner_email
            claim.owner_email = owner_email
            claim.legal_escalation_status = EscalationStatus.PENDING_APPROVAL.value
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Issued legal approval request {request.id} for claim {claim.id}, expires {request.expires_at}")

        message = owner_approval_email(
            owner_email=owner_email,
            owner_name=owner_name,
            property_address=claim.property.legal_address,
            approval_url=self.approval_url(request.token),
            expires_at=request.expires_at,
        )
        try:
            self.dispatcher.dispatch(NotificationKind.OWNER_APPROVAL_REQUEST, message, claim.id, request.id)
        except RuntimeError as e:
            logger.error(f"Could not queue homeowner invite for approval {request.id}: {e}")
        return request

    # =========================================================================
    # READ
    # =========================================================================

    def _load_by_token(self, token: str) -> LegalApprovalRequestDB:
        request = None
        if token:
            request = (
                self.db.query(LegalApprovalRequestDB)
                .filter(LegalApprovalRequestDB.token == token)
                .first()
            )
        if request is None:
            raise NotFoundError("Approval request not found")
        return request

    def _expire_if_due(self, request: LegalApprovalRequestDB, now: datetime) -> bool:
        """Flip a lapsed pending request to expired. True if this call did it."""
        if request.status != ApprovalStatus.PENDING.value or request.expires_at > now:
            return False
        flipped = self._swap_status(request.id, ApprovalStatus.EXPIRED, responded_at=None)
        self.db.commit()
        self.db.refresh(request)
        if flipped:
            logger.info(f"Legal approval request {request.id} expired (expires_at {request.expires_at})")
        return flipped

    def get_by_token(self, token: str) -> ApprovalView:
        request = self._load_by_token(token)
        self._expire_if_due(request, self.clock())
        return ApprovalView(request=request, claim_summary=self._claim_summary(request.claim))

    def list_requests(self, claim_id: str, org_id: str) -> List[LegalApprovalRequestDB]:
        claim = self.facts.get_claim(claim_id, org_id)
        return (
            self.db.query(LegalApprovalRequestDB)
            .filter(LegalApprovalRequestDB.claim_id == claim.id)
            .order_by(LegalApprovalRequestDB.created_at.desc())
            .all()
        )

    def _claim_summary(self, claim: ClaimDB) -> ClaimSummary:
        policy = self.facts.policy_for(claim)
        report = self.facts.latest_report(claim.id)
        contractor = carrier = delta = None
        if report is not None:
            contractor = report.total_contractor_estimate
            carrier = report.total_carrier_estimate
            delta = report.total_delta
            pm_brain = load_blob(PMBrainAnalysis, report.pm_brain_analysis, "pm_brain_analysis")
            if pm_brain is not None:
                contractor = pm_brain.total_contractor_estimate
                carrier = pm_brain.total_carrier_estimate
                delta = pm_brain.total_delta
        return ClaimSummary(
            property_address=claim.property.legal_address,
            claim_number=claim.claim_number,
            loss_type=claim.loss_type,
            carrier_name=policy.carrier_name if policy else None,
            total_contractor_estimate=contractor,
            total_carrier_estimate=carrier,
            total_delta=delta,
        )

    # =========================================================================
    # RESPOND
    # =========================================================================

    def _swap_status(
        self,
        request_id: str,
        new_status: ApprovalStatus,
        responded_at: Optional[datetime],
    ) -> bool:
        """pending -> new_status in one UPDATE. False if the row was no longer pending."""
        values = {"status": new_status.value}
        if responded_at is not None:
            values["responded_at"] = responded_at
        updated = (
            self.db.query(LegalApprovalRequestDB)
            .filter(
                LegalApprovalRequestDB.id == request_id,
                LegalApprovalRequestDB.status == ApprovalStatus.PENDING.value,
            )
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def _ensure_respondable(self, request: LegalApprovalRequestDB, now: datetime) -> None:
        if request.status == ApprovalStatus.PENDING.value and request.expires_at <= now:
            self._expire_if_due(request, now)
            raise PreconditionFailedError(
                "Approval request has expired",
                details={"approval_id": request.id, "status": ApprovalStatus.EXPIRED.value},
            )
        if request.status != ApprovalStatus.PENDING.value:
            raise PreconditionFailedError(
                "Approval request is no longer pending",
                details={"approval_id": request.id, "status": request.status},
            )

    def respond(self, token: str, action: str) -> ApprovalOutcome:
        """Apply the homeowner's approve/decline answer. A token answers once."""
        normalized = (action or "").strip().lower()
        if normalized not in RESPONSE_ACTIONS:
            raise InvalidArgumentError(
                "Action must be 'approve' or 'decline'",
                details={"action": action},
            )

        request = self._load_by_token(token)
        now = self.clock()
        self._ensure_respondable(request, now)

        if normalized == ACTION_DECLINE:
            return ApprovalOutcome(request=self._decline(request, now))
        return self._approve(request, now)

    def _decline(self, request: LegalApprovalRequestDB, now: datetime) -> LegalApprovalRequestDB:
        claim = request.claim
        try:
            if not self._swap_status(request.id, ApprovalStatus.DECLINED, responded_at=now):
                raise PreconditionFailedError(
                    "Approval request is no longer pending",
                    details={"approval_id": request.id},
                )
            claim.legal_escalation_status = EscalationStatus.DECLINED.value
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(request)
        logger.info(f"Legal approval request {request.id} declined for claim {claim.id}")
        return request

    def _approve(self, request: LegalApprovalRequestDB, now: datetime) -> ApprovalOutcome:
        """
        Claim the request, assemble the package, then commit.

        Any failure before the commit rolls the status swap back, so the
        request stays pending and nothing is sent. Delivery to the legal
        partner happens only after the commit.
        """
        claim = request.claim
        try:
            if not self._swap_status(request.id, ApprovalStatus.APPROVED, responded_at=now):
                raise PreconditionFailedError(
                    "Approval request is no longer pending",
                    details={"approval_id": request.id},
                )
            package = self.assemble_package(claim, now, owner_name=request.owner_name)
            claim.legal_escalation_status = EscalationStatus.APPROVED.value
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Approval of request {request.id} for claim {claim.id} aborted; state rolled back")
            raise
        self.db.refresh(request)
        logger.info(f"Legal approval request {request.id} approved for claim {claim.id}")

        self._deliver(request, claim, package)
        self._confirm_to_creator(request, claim)
        return ApprovalOutcome(request=request, package=package)

    # =========================================================================
    # ARTIFACTS AND DELIVERY
    # =========================================================================

    def assemble_package(
        self,
        claim: ClaimDB,
        now: datetime,
        owner_name: Optional[str] = None,
    ) -> LegalPackage:
        """Render the discrepancy report and bundle it with the confirmed photos."""
        report = self.facts.latest_completed_report(claim.id)
        if report is None or not report.generated_estimate:
            raise PreconditionFailedError(
                "A completed audit report is required before generating the legal package",
                details={"claim_id": claim.id},
            )

        ctx = self._report_context(claim, report, now, owner_name)
        try:
            pdf = render_discrepancy_report(ctx)
        except Exception as e:
            raise ArtifactAssemblyError(
                f"Failed to render discrepancy report: {e}",
                details={"claim_id": claim.id},
            ) from e

        photos = self.facts.confirmed_photos(claim.id)
        return self.packages.build(claim.id, claim.claim_number, pdf, photos, now.date())

    def _report_context(
        self,
        claim: ClaimDB,
        report: AuditReportDB,
        now: datetime,
        owner_name: Optional[str],
    ) -> ReportContext:
        prop: PropertyDB = claim.property
        policy = self.facts.policy_for(claim)
        return ReportContext(
            property_address=prop.legal_address,
            claim_number=claim.claim_number,
            loss_type=claim.loss_type,
            incident_date=claim.incident_date,
            adjuster_name=claim.adjuster_name,
            carrier_name=policy.carrier_name if policy else None,
            owner_name=owner_name or prop.owner_entity_name,
            estimate=load_blob(GeneratedEstimate, report.generated_estimate, "generated_estimate"),
            comparison=load_blob(ComparisonResult, report.comparison_data, "comparison_data"),
            pm_brain=load_blob(PMBrainAnalysis, report.pm_brain_analysis, "pm_brain_analysis"),
            generated_at=now,
        )

    def _deliver(self, request: LegalApprovalRequestDB, claim: ClaimDB, package: LegalPackage) -> None:
        """Synchronous send to the legal partner. Raises PackageDeliveryError."""
        if not claim.legal_partner_email:
            raise PackageDeliveryError(
                "Claim has no legal partner email on file",
                approval_id=request.id,
                details={"claim_id": claim.id},
            )
        message = legal_partner_email(
            partner_email=claim.legal_partner_email,
            partner_name=claim.legal_partner_name or "Counsel",
            property_address=claim.property.legal_address,
            claim_number=claim.claim_number,
            owner_name=request.owner_name,
            package_filename=package.filename,
            package_bytes=package.content,
            photo_count=package.photo_count,
        )
        try:
            self.dispatcher.send_now(NotificationKind.LEGAL_PARTNER_PACKAGE, message, claim.id, request.id)
        except EmailDeliveryError as e:
            logger.error(f"Legal package for approval {request.id} was not delivered: {e.message}")
            raise PackageDeliveryError(
                f"Approval recorded but the legal package could not be delivered: {e.message}",
                approval_id=request.id,
                details={"claim_id": claim.id},
            ) from e

    def _confirm_to_creator(self, request: LegalApprovalRequestDB, claim: ClaimDB) -> None:
        creator = self.facts.claim_creator(claim)
        if creator is None or not creator.email:
            logger.warning(f"No claim creator to confirm legal package for claim {claim.id}")
            return
        message = pm_confirmation_email(
            pm_email=creator.email,
            property_address=claim.property.legal_address,
            claim_number=claim.claim_number,
            partner_name=claim.legal_partner_name or "the legal partner",
            partner_email=claim.legal_partner_email,
        )
        try:
            self.dispatcher.dispatch(NotificationKind.PM_CONFIRMATION, message, claim.id, request.id)
        except RuntimeError as e:
            logger.error(f"Could not queue PM confirmation for approval {request.id}: {e}")

    # =========================================================================
    # PROPERTY-MANAGER ACTIONS
    # =========================================================================

    def download_package(self, claim_id: str, org_id: str) -> LegalPackage:
        """Assemble the package on demand. No state change, nothing sent."""
        claim = self.facts.get_claim(claim_id, org_id)
        return self.assemble_package(claim, self.clock())

    def resend_package(self, approval_id: str, org_id: str, claim_id: Optional[str] = None) -> ApprovalOutcome:
        """
        Re-deliver the package for an approved request whose delivery failed.

        With `claim_id`, a request belonging to another claim is not found.
        """
        query = (
            self.db.query(LegalApprovalRequestDB)
            .join(ClaimDB, LegalApprovalRequestDB.claim_id == ClaimDB.id)
            .join(PropertyDB, ClaimDB.property_id == PropertyDB.id)
            .filter(LegalApprovalRequestDB.id == approval_id, PropertyDB.organization_id == org_id)
        )
        if claim_id is not None:
            query = query.filter(LegalApprovalRequestDB.claim_id == claim_id)
        request = query.first()
        if request is None:
            raise NotFoundError("Approval request not found", details={"approval_id": approval_id})
        if request.status != ApprovalStatus.APPROVED.value:
            raise PreconditionFailedError(
                "Only approved requests can be re-delivered",
                details={"approval_id": request.id, "status": request.status},
            )

        claim = request.claim
        package = self.assemble_package(claim, self.clock(), owner_name=request.owner_name)
        self._deliver(request, claim, package)
        logger.info(f"Re-delivered legal package for approval {request.id}")
        return ApprovalOutcome(request=request, package=package)
