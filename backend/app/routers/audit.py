"""
Claim Audit API Routes

Estimate generation, estimate comparison, settlement classification,
dispute letters and viability scoring for a claim.
All endpoints require a property-manager session.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..dependencies import get_llm_client
from ..models.db_models import AuditReportDB, UserDB
from ..services.claims import AuditService, PMBrainService, ViabilityService

router = APIRouter(prefix="/claims/{claim_id}/audit", tags=["audit"])


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class AuditReportResponse(BaseModel):
    id: str
    claim_id: str
    status: str
    error_message: Optional[str] = None
    generated_estimate: Optional[Dict[str, Any]] = None
    comparison_data: Optional[Dict[str, Any]] = None
    pm_brain_analysis: Optional[Dict[str, Any]] = None
    viability_analysis: Optional[Dict[str, Any]] = None
    dispute_letter: Optional[str] = None
    total_contractor_estimate: Optional[float] = None
    total_carrier_estimate: Optional[float] = None
    total_delta: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DisputeLetterResponse(BaseModel):
    audit_report_id: str
    letter: str


def _report_response(report: AuditReportDB) -> AuditReportResponse:
    return AuditReportResponse(
        id=report.id,
        claim_id=report.claim_id,
        status=report.status,
        error_message=report.error_message,
        generated_estimate=report.generated_estimate,
        comparison_data=report.comparison_data,
        pm_brain_analysis=report.pm_brain_analysis,
        viability_analysis=report.viability_analysis,
        dispute_letter=report.dispute_letter,
        total_contractor_estimate=report.total_contractor_estimate,
        total_carrier_estimate=report.total_carrier_estimate,
        total_delta=report.total_delta,
        created_at=report.created_at,
        updated_at=report.updated_at,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/generate", response_model=AuditReportResponse, status_code=201)
def generate_estimate(
    claim_id: str,
    db: Session = Depends(get_db),
    llm=Depends(get_llm_client),
    current_user: UserDB = Depends(get_current_user),
):
    """Generate an industry-standard estimate from the latest scope sheet."""
    service = AuditService(db, llm)
    report = service.generate_industry_estimate(claim_id, current_user.id, current_user.organization_id)
    return _report_response(report)


@router.get("", response_model=AuditReportResponse)
def get_audit_report(
    claim_id: str,
    db: Session = Depends(get_db),
    llm=Depends(get_llm_client),
    current_user: UserDB = Depends(get_current_user),
):
    """Most recent audit report for the claim."""
    report = AuditService(db, llm).get_audit_report(claim_id, current_user.organization_id)
    return _report_response(report)


@router.post("/viability")
def analyze_viability(
    claim_id: str,
    db: Session = Depends(get_db),
    llm=Depends(get_llm_client),
    current_user: UserDB = Depends(get_current_user),
):
    """Score whether the claim is worth pursuing."""
    analysis = ViabilityService(db, llm).analyze_claim_viability(claim_id, current_user.organization_id)
    return analysis.model_dump(mode="json")


@router.post("/{audit_id}/compare")
def compare_estimates(
    claim_id: str,
    audit_id: str,
    method: str = Query("model", description="model or structured"),
    db: Session = Depends(get_db),
    llm=Depends(get_llm_client),
    current_user: UserDB = Depends(get_current_user),
):
    """Compare the generated estimate against the carrier's estimate."""
    service = AuditService(db, llm)
    result = service.compare_estimates(audit_id, current_user.id, current_user.organization_id, method=method)
    return result.model_dump(mode="json")


@router.post("/{audit_id}/pm-brain")
def run_pm_brain(
    claim_id: str,
    audit_id: str,
    db: Session = Depends(get_db),
    llm=Depends(get_llm_client),
    current_user: UserDB = Depends(get_current_user),
):
    """Classify the settlement: CLOSE, DISPUTE_OFFER, LEGAL_REVIEW or NEED_DOCS."""
    service = PMBrainService(db, llm)
    analysis = service.run_pm_brain_analysis(audit_id, current_user.id, current_user.organization_id)
    return analysis.model_dump(mode="json")


@router.post("/{audit_id}/dispute-letter", response_model=DisputeLetterResponse)
def generate_dispute_letter(
    claim_id: str,
    audit_id: str,
    db: Session = Depends(get_db),
    llm=Depends(get_llm_client),
    current_user: UserDB = Depends(get_current_user),
):
    """Draft a dispute letter. Requires a DISPUTE_OFFER classification."""
    service = PMBrainService(db, llm)
    letter = service.generate_dispute_letter(audit_id, current_user.id, current_user.organization_id)
    return DisputeLetterResponse(audit_report_id=audit_id, letter=letter)
