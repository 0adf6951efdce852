"""
Claim Resolution Engine - PM Brain Strategy Classifier

Settlement-disposition classification for a carrier offer:
CLOSE / DISPUTE_OFFER / LEGAL_REVIEW / NEED_DOCS

The model writes the narrative (summary, delta drivers, coverage disputes,
next steps). The rule table decides the status. A model status outside the
four values is a hard failure; a valid but different status is logged and
overridden by the derived one.
"""
from __future__ import annotations
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ...models.analysis import (
    ComparisonResult, GeneratedEstimate, PMBrainAnalysis, PMBrainStatus, dump_blob, load_blob,
)
from ...models.db_models import APICallType
from ..errors import MalformedResponseError, NotFoundError, PreconditionFailedError
from ..llm import extract_json_object, parse_model, validate_pm_brain_status
from .fact_gatherer import FactGatherer, PolicySnapshot
from .rules import RULES_VERSION, ClassificationRules, carrier_total, to_decimal
from .usage import UsageMeter

logger = logging.getLogger(__name__)

PM_BRAIN_TEMPERATURE = 0.2
PM_BRAIN_MAX_TOKENS = 3000
DISPUTE_LETTER_TEMPERATURE = 0.3
DISPUTE_LETTER_MAX_TOKENS = 2500

PM_BRAIN_SYSTEM_PROMPT = (
    "You are a post-adjudication claim strategist for property managers. "
    "You explain carrier settlement offers in plain English. Respond with JSON only."
)
DISPUTE_LETTER_SYSTEM_PROMPT = (
    "You are an expert insurance claim advocate writing professional, factual "
    "supplement requests to insurance adjusters. Respond with the letter text only."
)


def build_pm_brain_prompt(
    estimate: Dict[str, Any],
    carrier_data: Any,
    policy: PolicySnapshot,
    rules: ClassificationRules,
) -> str:
    carrier_text = json.dumps(carrier_data, indent=2) if carrier_data is not None else "(no parsed carrier data)"
    return "\n".join([
        "Analyze this property insurance claim settlement and classify the carrier's offer.",
        "",
        "POLICY AND CLAIM:",
        f"- Carrier: {policy.carrier_name}",
        f"- Policy Number: {policy.policy_number or 'N/A'}",
        f"- Claim Number: {policy.claim_number or 'N/A'}",
        f"- Loss Type: {policy.loss_type}",
        f"- Incident Date: {policy.incident_date.isoformat() if policy.incident_date else 'N/A'}",
        f"- Deductible: ${policy.deductible:.2f}",
        f"- Exclusions: {policy.exclusions or 'None listed'}",
        "",
        "CONTRACTOR ESTIMATE (industry pricing):",
        json.dumps(estimate, indent=2),
        "",
        "CARRIER ESTIMATE (settlement offer):",
        carrier_text,
        "",
        rules.describe(),
        "Return ONLY a JSON object with this exact structure:",
        "{",
        '  "status": "CLOSE | DISPUTE_OFFER | LEGAL_REVIEW | NEED_DOCS",',
        '  "plain_english_summary": "2-3 sentences a property manager can act on",',
        '  "total_contractor_estimate": number,',
        '  "total_carrier_estimate": number,',
        '  "total_delta": number,',
        '  "top_delta_drivers": [',
        '    {"line_item": "...", "contractor_price": number, "carrier_price": number, "delta": number, "reason": "..."}',
        "  ],",
        '  "coverage_disputes": [',
        '    {"item": "...", "status": "denied | partial", "contractor_position": "..."}',
        "  ],",
        '  "required_next_steps": ["..."],',
        '  "legal_threshold_met": true | false',
        "}",
    ])


def build_dispute_letter_prompt(policy: PolicySnapshot, property_address: str, analysis: PMBrainAnalysis,
                                comparison: Optional[ComparisonResult]) -> str:
    lines = [
        "Write a professional supplement request letter to the insurance adjuster "
        "disputing the carrier's settlement offer.",
        "",
        "CLAIM:",
        f"- Property: {property_address}",
        f"- Carrier: {policy.carrier_name}",
        f"- Policy Number: {policy.policy_number or 'N/A'}",
        f"- Claim Number: {policy.claim_number or 'N/A'}",
        f"- Loss Type: {policy.loss_type}",
        f"- Incident Date: {policy.incident_date.isoformat() if policy.incident_date else 'N/A'}",
        "",
        "AMOUNTS:",
        f"- Industry estimate: ${analysis.total_contractor_estimate:,.2f}",
        f"- Carrier offer: ${analysis.total_carrier_estimate:,.2f}",
        f"- Underpayment: ${analysis.total_delta:,.2f}",
        "",
        "DISPUTED ITEMS:",
    ]
    for driver in analysis.delta_drivers:
        lines.append(
            f"- {driver.line_item}: industry ${driver.contractor_price:,.2f} vs carrier "
            f"${driver.carrier_price:,.2f} ({driver.reason})"
        )
    if comparison is not None:
        for item in comparison.discrepancies:
            lines.append(f"- {item.item}: delta ${item.delta:,.2f} ({item.justification})")
    lines.extend([
        "",
        "Requirements: cite each item with both prices, request re-inspection or a revised "
        "estimate, keep a firm but cooperative tone, and leave a signature block for the "
        "property manager. Do not invent policy language.",
    ])
    return "\n".join(lines)


class PMBrainService:
    """Runs the settlement classifier and the dispute letter it unlocks."""

    def __init__(
        self,
        db_session: Session,
        llm_client,
        clock: Optional[Callable[[], datetime]] = None,
        rules: Optional[ClassificationRules] = None,
    ):
        self.db = db_session
        self.llm = llm_client
        self.clock = clock or datetime.utcnow
        self.rules = rules or ClassificationRules()
        self.facts = FactGatherer(db_session)
        self.meter = UsageMeter(db_session)

    def run_pm_brain_analysis(self, audit_report_id: str, user_id: str, org_id: str) -> PMBrainAnalysis:
        report = self.facts.get_report(audit_report_id, org_id)
        estimate = load_blob(GeneratedEstimate, report.generated_estimate, "generated_estimate")
        if estimate is None:
            raise PreconditionFailedError(
                "Generate an industry estimate before running the strategy analysis",
                details={"audit_report_id": report.id},
            )

        claim = report.claim
        policy = self.facts.policy_snapshot(claim)
        carrier = self.facts.latest_carrier_estimate(claim.id)
        if carrier is None:
            raise NotFoundError("Carrier estimate not found", details={"claim_id": claim.id})

        response = self.llm.complete(
            build_pm_brain_prompt(report.generated_estimate, carrier.parsed_data, policy, self.rules),
            system_prompt=PM_BRAIN_SYSTEM_PROMPT,
            temperature=PM_BRAIN_TEMPERATURE,
            max_tokens=PM_BRAIN_MAX_TOKENS,
        )
        data = extract_json_object(response.content)
        model_status = validate_pm_brain_status(data.get("status"))
        analysis = parse_model(data, PMBrainAnalysis, "classification")

        analysis = self.apply_rules(analysis, estimate, carrier.parsed_data)
        analysis.model_status = model_status
        if model_status != analysis.status:
            logger.warning(
                f"PM brain status mismatch for report {report.id}: model={model_status.value} "
                f"derived={analysis.status.value}; using derived status"
            )

        report.pm_brain_analysis = dump_blob(analysis)
        report.carrier_estimate_id = carrier.id
        report.updated_at = self.clock()
        self.db.commit()
        logger.info(f"PM brain classified report {report.id} as {analysis.status.value}")

        self.meter.record(APICallType.PM_BRAIN_ANALYSIS, response, org_id, report.id)
        return analysis

    def apply_rules(self, analysis: PMBrainAnalysis, estimate: GeneratedEstimate, carrier_data: Any) -> PMBrainAnalysis:
        """Overwrite status, totals and threshold flag with rule-derived values."""
        contractor = to_decimal(estimate.total)
        usable = self.rules.carrier_data_usable(carrier_data)
        carrier_value: Optional[Decimal] = carrier_total(carrier_data) if usable else None
        has_denial = any(d.is_denial for d in analysis.coverage_disputes)

        status, reason = self.rules.derive_status(contractor, carrier_value, usable, has_denial)

        analysis.status = status
        analysis.status_reason = reason
        analysis.rules_version = RULES_VERSION
        analysis.total_contractor_estimate = round(float(contractor), 2)
        if carrier_value is not None:
            gap = contractor - carrier_value
            analysis.total_carrier_estimate = round(float(carrier_value), 2)
            analysis.total_delta = round(float(gap), 2)
            analysis.legal_threshold_met = self.rules.legal_threshold_met(gap)
        else:
            analysis.total_carrier_estimate = 0.0
            analysis.total_delta = 0.0
            analysis.legal_threshold_met = False
        return analysis

    def generate_dispute_letter(self, audit_report_id: str, user_id: str, org_id: str) -> str:
        """Only available while the cached classification is DISPUTE_OFFER."""
        report = self.facts.get_report(audit_report_id, org_id)
        analysis = load_blob(PMBrainAnalysis, report.pm_brain_analysis, "pm_brain_analysis")
        if analysis is None or analysis.status != PMBrainStatus.DISPUTE_OFFER:
            current = analysis.status.value if analysis is not None else None
            raise PreconditionFailedError(
                "Dispute letters are only generated for DISPUTE_OFFER classifications",
                details={"audit_report_id": report.id, "status": current},
            )

        claim = report.claim
        policy = self.facts.policy_snapshot(claim)
        comparison = load_blob(ComparisonResult, report.comparison_data, "comparison_data")

        response = self.llm.complete(
            build_dispute_letter_prompt(policy, claim.property.legal_address, analysis, comparison),
            system_prompt=DISPUTE_LETTER_SYSTEM_PROMPT,
            temperature=DISPUTE_LETTER_TEMPERATURE,
            max_tokens=DISPUTE_LETTER_MAX_TOKENS,
        )
        letter = response.content.strip()
        if not letter:
            raise MalformedResponseError("Model returned an empty dispute letter")

        report.dispute_letter = letter
        report.updated_at = self.clock()
        self.db.commit()
        logger.info(f"Generated dispute letter for report {report.id} ({len(letter)} chars)")

        self.meter.record(APICallType.DISPUTE_LETTER, response, org_id, report.id)
        return letter
