"""
Claim Resolution Engine - Viability Decision Engine

Scores whether a claim is worth pursuing:
- Economics score from net recovery (estimate total - deductible)
- Coverage score from exclusions text and loss type
- PURSUE / PURSUE_WITH_CONDITIONS / DO_NOT_PURSUE

Scores and recommendation are computed here from the rule table. The model
only supplies the plain-English summary, risks and next steps.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ...models.analysis import ViabilityAnalysis, dump_blob
from ...models.db_models import APICallType
from ..errors import MissingFieldError, NotFoundError
from ..llm import extract_json_object, parse_model
from .fact_gatherer import FactGatherer, PolicySnapshot
from .rules import RULES_VERSION, ViabilityRules, summarize_risks, to_decimal
from .usage import UsageMeter

logger = logging.getLogger(__name__)

VIABILITY_TEMPERATURE = 0.1
VIABILITY_MAX_TOKENS = 1000

VIABILITY_SYSTEM_PROMPT = (
    "You are a claims decision advisor for property managers. You explain, in plain "
    "English, whether an insurance claim is worth pursuing. Respond with JSON only."
)


class ViabilityNarrative(BaseModel):
    """The part of the viability result the model is allowed to write."""
    model_config = ConfigDict(extra="ignore")

    plain_english_summary: str = Field(min_length=1)
    top_risks: List[str] = Field(default_factory=list)
    required_next_steps: List[str] = Field(default_factory=list)
    recommendation: Optional[str] = None


def build_viability_prompt(policy: PolicySnapshot, estimated_total: float, scored: ViabilityAnalysis,
                           rules: ViabilityRules) -> str:
    return "\n".join([
        "Assess whether this property insurance claim is worth pursuing.",
        "",
        "CLAIM INPUTS:",
        f"- Loss Type: {policy.loss_type}",
        f"- Incident Date: {policy.incident_date.isoformat() if policy.incident_date else 'N/A'}",
        f"- Estimated Total (RCV): ${estimated_total:.2f}",
        f"- Deductible: ${policy.deductible:.2f}",
        f"- Policy Exclusions: {policy.exclusions or 'None listed'}",
        "",
        "COMPUTED RESULT:",
        f"- net_estimated_recovery: ${scored.net_estimated_recovery:.2f}",
        f"- ECONOMICS SCORE: {scored.economics_score}",
        f"- COVERAGE RISK SCORE: {scored.coverage_score} (exclusions {scored.coverage_assessment.value})",
        f"- RECOMMENDATION: {scored.recommendation.value}",
        "",
        rules.describe(),
        "Return ONLY a JSON object with this exact structure:",
        "{",
        '  "recommendation": "PURSUE | PURSUE_WITH_CONDITIONS | DO_NOT_PURSUE",',
        '  "top_risks": ["..."],',
        '  "required_next_steps": ["..."],',
        '  "plain_english_summary": "2-3 sentences for a property manager"',
        "}",
    ])


def _merge(first: List[str], second: List[str]) -> List[str]:
    seen = set()
    merged = []
    for item in first + second:
        key = item.strip().lower()
        if key and key not in seen:
            seen.add(key)
            merged.append(item.strip())
    return merged


class ViabilityService:
    def __init__(
        self,
        db_session: Session,
        llm_client,
        clock: Optional[Callable[[], datetime]] = None,
        rules: Optional[ViabilityRules] = None,
    ):
        self.db = db_session
        self.llm = llm_client
        self.clock = clock or datetime.utcnow
        self.rules = rules or ViabilityRules()
        self.facts = FactGatherer(db_session)
        self.meter = UsageMeter(db_session)

    def score(self, policy: PolicySnapshot, estimated_total: float) -> ViabilityAnalysis:
        """Deterministic scores and recommendation, no narrative."""
        net = to_decimal(estimated_total) - to_decimal(policy.deductible)
        economics = self.rules.economics_score(net)
        assessment = self.rules.assess_exclusions(policy.exclusions, policy.loss_type)
        coverage = self.rules.coverage_score(assessment, policy.loss_type)
        recommendation = self.rules.recommend(coverage, economics, net)
        return ViabilityAnalysis(
            recommendation=recommendation,
            net_estimated_recovery=round(float(net), 2),
            coverage_score=coverage,
            economics_score=economics,
            coverage_assessment=assessment,
            top_risks=summarize_risks(assessment, policy.loss_type, economics, net, self.rules.table),
            rules_version=RULES_VERSION,
        )

    def analyze_claim_viability(self, claim_id: str, org_id: str) -> ViabilityAnalysis:
        claim = self.facts.get_claim(claim_id, org_id)
        policy = self.facts.policy_snapshot(claim)
        report = self.facts.latest_completed_report(claim.id)
        if report is None or not report.generated_estimate:
            raise NotFoundError("No generated estimate found for claim", details={"claim_id": claim.id})

        estimated_total = report.generated_estimate.get("total")
        if not isinstance(estimated_total, (int, float)) or isinstance(estimated_total, bool):
            raise MissingFieldError(
                "Generated estimate has no numeric total",
                details={"audit_report_id": report.id, "field": "total"},
            )

        analysis = self.score(policy, float(estimated_total))

        response = self.llm.complete(
            build_viability_prompt(policy, float(estimated_total), analysis, self.rules),
            system_prompt=VIABILITY_SYSTEM_PROMPT,
            temperature=VIABILITY_TEMPERATURE,
            max_tokens=VIABILITY_MAX_TOKENS,
        )
        narrative = parse_model(extract_json_object(response.content), ViabilityNarrative, "viability")
        if narrative.recommendation and narrative.recommendation != analysis.recommendation.value:
            logger.warning(
                f"Viability recommendation mismatch for claim {claim.id}: model={narrative.recommendation} "
                f"derived={analysis.recommendation.value}; using derived recommendation"
            )

        analysis.plain_english_summary = narrative.plain_english_summary
        analysis.top_risks = _merge(analysis.top_risks, narrative.top_risks)
        analysis.required_next_steps = _merge([], narrative.required_next_steps)

        report.viability_analysis = dump_blob(analysis)
        report.updated_at = self.clock()
        self.db.commit()
        logger.info(
            f"Viability for claim {claim.id}: {analysis.recommendation.value} "
            f"(economics {analysis.economics_score}, coverage {analysis.coverage_score})"
        )

        self.meter.record(APICallType.VIABILITY_ANALYSIS, response, org_id, report.id)
        return analysis
