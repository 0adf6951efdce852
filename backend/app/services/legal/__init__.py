"""Claim Resolution Engine - Legal Escalation

Homeowner approval state machine, discrepancy report rendering, and
legal package assembly.
"""
from .report_renderer import ReportContext, render_discrepancy_report, REPORT_FILENAME
from .package_builder import LegalPackage, PackageBuilder, package_filename
from .approval_service import (
    LegalApprovalService,
    ApprovalView,
    ApprovalOutcome,
    ClaimSummary,
    APPROVAL_TTL,
)

__all__ = [
    "ReportContext",
    "render_discrepancy_report",
    "REPORT_FILENAME",
    "LegalPackage",
    "PackageBuilder",
    "package_filename",
    "LegalApprovalService",
    "ApprovalView",
    "ApprovalOutcome",
    "ClaimSummary",
    "APPROVAL_TTL",
]
