"""
Legal Escalation API Routes

Property-manager endpoints (authenticated):
- issue a homeowner approval request
- list approval history for a claim
- download the legal package on demand
- re-deliver the package after a failed send

Homeowner endpoints (addressed by the single-use token, no session):
- view the request and claim summary
- approve or decline
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, EmailStr, Field

from ..auth import get_current_user
from ..dependencies import get_approval_service
from ..models.db_models import LegalApprovalRequestDB, UserDB
from ..services.legal import ApprovalView, LegalApprovalService

router = APIRouter(tags=["legal"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class IssueApprovalRequest(BaseModel):
    legal_partner_name: str = Field(..., min_length=1)
    legal_partner_email: EmailStr
    owner_name: str = Field(..., min_length=1)
    owner_email: EmailStr


class RespondRequest(BaseModel):
    action: str = Field(..., description="approve or decline")


class ApprovalRequestResponse(BaseModel):
    id: str
    claim_id: str
    owner_name: str
    owner_email: str
    status: str
    expires_at: datetime
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class IssuedApprovalResponse(ApprovalRequestResponse):
    """Issue-time response. The token and link go to the PM, who may share them."""
    token: str
    approval_url: str


class ClaimSummaryResponse(BaseModel):
    property_address: str
    claim_number: Optional[str] = None
    loss_type: str
    carrier_name: Optional[str] = None
    total_contractor_estimate: Optional[float] = None
    total_carrier_estimate: Optional[float] = None
    total_delta: Optional[float] = None


class ApprovalPageResponse(BaseModel):
    status: str
    owner_name: str
    expires_at: datetime
    responded_at: Optional[datetime] = None
    claim: ClaimSummaryResponse


class RespondResponse(BaseModel):
    status: str
    responded_at: Optional[datetime] = None
    message: str


class ResendResponse(BaseModel):
    approval_id: str
    package_filename: str
    photo_count: int
    message: str


def _request_response(request: LegalApprovalRequestDB) -> ApprovalRequestResponse:
    return ApprovalRequestResponse(
        id=request.id,
        claim_id=request.claim_id,
        owner_name=request.owner_name,
        owner_email=request.owner_email,
        status=request.status,
        expires_at=request.expires_at,
        responded_at=request.responded_at,
        created_at=request.created_at,
    )


def _page_response(view: ApprovalView) -> ApprovalPageResponse:
    summary = view.claim_summary
    return ApprovalPageResponse(
        status=view.request.status,
        owner_name=view.request.owner_name,
        expires_at=view.request.expires_at,
        responded_at=view.request.responded_at,
        claim=ClaimSummaryResponse(
            property_address=summary.property_address,
            claim_number=summary.claim_number,
            loss_type=summary.loss_type,
            carrier_name=summary.carrier_name,
            total_contractor_estimate=summary.total_contractor_estimate,
            total_carrier_estimate=summary.total_carrier_estimate,
            total_delta=summary.total_delta,
        ),
    )


# =============================================================================
# PROPERTY-MANAGER ENDPOINTS
# =============================================================================

@router.post("/claims/{claim_id}/legal-escalation", response_model=IssuedApprovalResponse, status_code=201)
def issue_approval_request(
    claim_id: str,
    body: IssueApprovalRequest,
    service: LegalApprovalService = Depends(get_approval_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Ask the homeowner to approve sharing the claim file with a legal partner."""
    request = service.issue_request(
        claim_id=claim_id,
        org_id=current_user.organization_id,
        legal_partner_name=body.legal_partner_name,
        legal_partner_email=body.legal_partner_email,
        owner_name=body.owner_name,
        owner_email=body.owner_email,
    )
    return IssuedApprovalResponse(
        **_request_response(request).model_dump(),
        token=request.token,
        approval_url=service.approval_url(request.token),
    )


@router.get("/claims/{claim_id}/legal-escalation", response_model=List[ApprovalRequestResponse])
def list_approval_requests(
    claim_id: str,
    service: LegalApprovalService = Depends(get_approval_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Approval history for the claim, newest first."""
    return [_request_response(r) for r in service.list_requests(claim_id, current_user.organization_id)]


@router.get("/claims/{claim_id}/legal-package")
def download_legal_package(
    claim_id: str,
    service: LegalApprovalService = Depends(get_approval_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Build the legal package ZIP and return it. Nothing is sent."""
    package = service.download_package(claim_id, current_user.organization_id)
    return Response(
        content=package.content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{package.filename}"',
            "X-Package-SHA256": package.sha256,
        },
    )


@router.post("/claims/{claim_id}/legal-escalation/{approval_id}/resend", response_model=ResendResponse)
def resend_legal_package(
    claim_id: str,
    approval_id: str,
    service: LegalApprovalService = Depends(get_approval_service),
    current_user: UserDB = Depends(get_current_user),
):
    """Re-deliver the package for an approved request."""
    outcome = service.resend_package(approval_id, current_user.organization_id, claim_id=claim_id)
    return ResendResponse(
        approval_id=outcome.request.id,
        package_filename=outcome.package.filename,
        photo_count=outcome.package.photo_count,
        message="Legal package sent",
    )


# =============================================================================
# HOMEOWNER ENDPOINTS (token-addressed)
# =============================================================================

@router.get("/legal-approvals/{token}", response_model=ApprovalPageResponse)
def get_approval(token: str, service: LegalApprovalService = Depends(get_approval_service)):
    """Request status and claim summary for the homeowner approval page."""
    return _page_response(service.get_by_token(token))


@router.post("/legal-approvals/{token}/respond", response_model=RespondResponse)
def respond_to_approval(
    token: str,
    body: RespondRequest,
    service: LegalApprovalService = Depends(get_approval_service),
):
    """Approve or decline. Each token can be answered once."""
    outcome = service.respond(token, body.action)
    request = outcome.request
    if outcome.package is not None:
        message = "Approved. The claim file has been sent to the legal partner."
    else:
        message = "Declined. The claim file will not be shared."
    return RespondResponse(status=request.status, responded_at=request.responded_at, message=message)
