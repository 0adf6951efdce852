"""
Claim Resolution Engine - Estimate Audit Service

Industry estimate generation and contractor-vs-carrier comparison.

Pipeline:
1. GenerateIndustryEstimate: scope sheet -> model -> GeneratedEstimate (new AuditReport)
2. CompareEstimates: GeneratedEstimate + carrier parsed estimate -> ComparisonResult
   - method="model": the model writes discrepancies and justifications
   - method="structured": deterministic line-item reduction, no model call
"""
from __future__ import annotations
import json
import logging
import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.analysis import (
    ComparisonResult, ComparisonSummary, Discrepancy, GeneratedEstimate, LineItem, dump_blob, load_blob,
)
from ...models.db_models import APICallType, AuditReportDB, AuditStatus, ScopeSheetDB
from ..errors import ClaimEngineError, InvalidArgumentError, MalformedResponseError, NotFoundError
from ..llm import extract_json_object, parse_model
from .fact_gatherer import FactGatherer
from .rules import ClassificationRules, carrier_total, to_decimal
from .usage import UsageMeter

logger = logging.getLogger(__name__)

ESTIMATE_TEMPERATURE = 0.2
ESTIMATE_MAX_TOKENS = 4000
COMPARISON_TEMPERATURE = 0.2
COMPARISON_MAX_TOKENS = 3000

# Structured comparison ignores pricing gaps smaller than this
MIN_DISCREPANCY = 1.00

COMPARISON_METHODS = ("model", "structured")

ESTIMATE_SYSTEM_PROMPT = (
    "You are a construction estimating expert who prices property insurance repairs "
    "using current Xactimate-style industry pricing. Respond with JSON only."
)
COMPARISON_SYSTEM_PROMPT = (
    "You are an insurance claim auditor comparing a contractor's industry-standard estimate "
    "against a carrier's settlement estimate. Respond with JSON only."
)


# =============================================================================
# PROMPTS
# =============================================================================

def build_estimate_prompt(scope: ScopeSheetDB) -> str:
    lines = [
        "Based on the following scope sheet data and current industry pricing, "
        "produce a detailed Xactimate-style estimate in JSON format.",
        "",
        "SCOPE SHEET DATA:",
    ]
    for area in scope.areas or []:
        if not isinstance(area, dict):
            continue
        label = area.get("category") or area.get("name") or "Area"
        lines.append(f"- {label}")
        if area.get("tags"):
            lines.append(f"    Damage: {', '.join(str(t) for t in area['tags'])}")
        if area.get("dimensions"):
            dims = ", ".join(f"{k}={v}" for k, v in area["dimensions"].items())
            lines.append(f"    Dimensions: {dims}")
        if area.get("notes"):
            lines.append(f"    Notes: {area['notes']}")
    if scope.general_notes:
        lines.append(f"- General notes: {scope.general_notes}")

    lines.extend([
        "",
        "RESPONSE FORMAT:",
        "Return ONLY a JSON object with this exact structure:",
        "{",
        '  "line_items": [',
        "    {",
        '      "description": "Item description",',
        '      "quantity": number,',
        '      "unit": "unit type (e.g., SF, LF, EA)",',
        '      "unit_cost": number,',
        '      "total": number,',
        '      "category": "category name (e.g., Roofing, Exterior Trim)"',
        "    }",
        "  ],",
        '  "subtotal": number,',
        '  "overhead_profit": number (typically 20% of subtotal),',
        '  "total": number',
        "}",
        "",
        "Use current industry-standard pricing for materials and labor. "
        "Include all items from the scope sheet with appropriate quantities and costs.",
    ])
    return "\n".join(lines)


def build_comparison_prompt(industry_estimate: Dict[str, Any], carrier_estimate: Dict[str, Any]) -> str:
    return "\n".join([
        "Compare these two estimates and identify discrepancies:",
        "",
        "INDUSTRY ESTIMATE (from contractor scope):",
        json.dumps(industry_estimate, indent=2),
        "",
        "CARRIER ESTIMATE (from insurance company):",
        json.dumps(carrier_estimate, indent=2),
        "",
        "For each discrepancy, provide:",
        "- Item description",
        "- Industry price vs Carrier price",
        "- Delta amount",
        "- Justification (why industry price is correct)",
        "",
        "Return JSON:",
        "{",
        '  "discrepancies": [',
        "    {",
        '      "item": "description",',
        '      "industry_price": X.XX,',
        '      "carrier_price": X.XX,',
        '      "delta": X.XX,',
        '      "justification": "detailed explanation"',
        "    }",
        "  ],",
        '  "summary": {',
        '    "total_industry": X.XX,',
        '    "total_carrier": X.XX,',
        '    "total_delta": X.XX',
        "  }",
        "}",
    ])


# =============================================================================
# STRUCTURED COMPARISON
# =============================================================================

_NON_WORD = re.compile(r"[^a-z0-9]+")


def normalize_description(description: str) -> str:
    return _NON_WORD.sub(" ", (description or "").lower()).strip()


def _carrier_line_total(item: Dict[str, Any]) -> Any:
    total = item.get("total")
    if total is None:
        return 0
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        raise MalformedResponseError(
            "Carrier line item total is not a number",
            details={"description": item.get("description"), "total": str(total)},
        )
    return total


def _sum_by_description(items: List[Any]) -> "OrderedDict[str, Dict[str, Any]]":
    grouped: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for item in items:
        if isinstance(item, LineItem):
            description = item.description
            total = item.total
        elif isinstance(item, dict):
            description = str(item.get("description") or "")
            total = _carrier_line_total(item)
        else:
            continue
        key = normalize_description(description)
        if not key:
            continue
        entry = grouped.setdefault(key, {"description": description, "total": to_decimal(0)})
        entry["total"] += to_decimal(total)
    return grouped


def reduce_line_items(generated: GeneratedEstimate, carrier: Dict[str, Any]) -> ComparisonResult:
    """
    Deterministic comparison of two line-item sets.

    Items are matched by normalized description. An item missing from one
    side compares against zero. Gaps under MIN_DISCREPANCY are dropped.
    """
    industry = _sum_by_description(generated.line_items)
    carrier_lines = carrier.get("line_items")
    carrier_items = _sum_by_description(carrier_lines if isinstance(carrier_lines, list) else [])
    threshold = to_decimal(MIN_DISCREPANCY)

    discrepancies = []
    for key in list(industry.keys()) + [k for k in carrier_items.keys() if k not in industry]:
        ours = industry.get(key)
        theirs = carrier_items.get(key)
        industry_price = ours["total"] if ours else to_decimal(0)
        carrier_price = theirs["total"] if theirs else to_decimal(0)
        delta = industry_price - carrier_price
        if abs(delta) < threshold:
            continue

        if theirs is None:
            justification = "Item omitted from the carrier estimate"
        elif ours is None:
            justification = "Item appears only in the carrier estimate"
        elif delta > 0:
            justification = f"Carrier priced ${delta:,.2f} below industry pricing"
        else:
            justification = f"Carrier priced ${-delta:,.2f} above industry pricing"

        discrepancies.append(Discrepancy(
            item=(ours or theirs)["description"],
            industry_price=round(float(industry_price), 2),
            carrier_price=round(float(carrier_price), 2),
            delta=round(float(delta), 2),
            justification=justification,
        ))

    total_industry = to_decimal(generated.total)
    total_carrier = carrier_total(carrier) or to_decimal(0)
    return ComparisonResult(
        discrepancies=discrepancies,
        summary=ComparisonSummary(
            total_industry=round(float(total_industry), 2),
            total_carrier=round(float(total_carrier), 2),
            total_delta=round(float(total_industry - total_carrier), 2),
        ),
        method="structured",
    )


# =============================================================================
# SERVICE
# =============================================================================

class AuditService:
    """Generates industry estimates and compares them against carrier offers."""

    def __init__(self, db_session: Session, llm_client, clock: Optional[Callable[[], datetime]] = None):
        self.db = db_session
        self.llm = llm_client
        self.clock = clock or datetime.utcnow
        self.facts = FactGatherer(db_session)
        self.meter = UsageMeter(db_session)

    def generate_industry_estimate(self, claim_id: str, user_id: str, org_id: str) -> AuditReportDB:
        """
        Create a new AuditReport from the claim's latest scope sheet.

        The report is committed as `processing` before the model call so a
        failure leaves a `failed` row with the error message behind.
        """
        claim = self.facts.get_claim(claim_id, org_id)
        scope = self.facts.latest_scope_sheet(claim.id)
        if scope is None:
            raise NotFoundError("Scope sheet not found", details={"claim_id": claim.id})

        report = AuditReportDB(
            id=str(uuid4()),
            claim_id=claim.id,
            scope_sheet_id=scope.id,
            status=AuditStatus.PROCESSING.value,
            created_by_user_id=user_id,
            created_at=self.clock(),
        )
        self.db.add(report)
        self.db.commit()

        try:
            response = self.llm.complete(
                build_estimate_prompt(scope),
                system_prompt=ESTIMATE_SYSTEM_PROMPT,
                temperature=ESTIMATE_TEMPERATURE,
                max_tokens=ESTIMATE_MAX_TOKENS,
            )
            estimate = parse_model(extract_json_object(response.content), GeneratedEstimate, "estimate")
        except ClaimEngineError as e:
            report.status = AuditStatus.FAILED.value
            report.error_message = e.message
            self.db.commit()
            logger.error(f"Estimate generation failed for claim {claim.id}: {e.message}")
            raise

        report.generated_estimate = dump_blob(estimate)
        report.total_contractor_estimate = round(estimate.total, 2)
        report.status = AuditStatus.COMPLETED.value
        report.error_message = None
        self.db.commit()
        logger.info(f"Generated industry estimate for claim {claim.id}: report {report.id} total ${estimate.total:,.2f}")

        self.meter.record(APICallType.ESTIMATE_GENERATION, response, org_id, report.id)
        return report

    def get_audit_report(self, claim_id: str, org_id: str) -> AuditReportDB:
        """Most recent report for the claim."""
        claim = self.facts.get_claim(claim_id, org_id)
        report = self.facts.latest_report(claim.id)
        if report is None:
            raise NotFoundError("Audit report not found", details={"claim_id": claim.id})
        return report

    def compare_estimates(
        self,
        audit_report_id: str,
        user_id: str,
        org_id: str,
        method: str = "model",
    ) -> ComparisonResult:
        """Compare the report's generated estimate against the latest carrier estimate."""
        if method not in COMPARISON_METHODS:
            raise InvalidArgumentError(
                f"Unknown comparison method {method!r}",
                details={"allowed": list(COMPARISON_METHODS)},
            )

        report = self.facts.get_report(audit_report_id, org_id)
        estimate = load_blob(GeneratedEstimate, report.generated_estimate, "generated_estimate")
        if estimate is None:
            raise NotFoundError("Generated estimate not found", details={"audit_report_id": report.id})

        carrier = self.facts.latest_carrier_estimate(report.claim_id)
        if carrier is None or carrier.parsed_data is None:
            raise NotFoundError("Parsed carrier estimate not found", details={"claim_id": report.claim_id})

        response = None
        if method == "structured":
            if not ClassificationRules.carrier_data_usable(carrier.parsed_data):
                raise MalformedResponseError(
                    "Carrier estimate data is not a line-item estimate",
                    details={"carrier_estimate_id": carrier.id},
                )
            result = reduce_line_items(estimate, carrier.parsed_data)
        else:
            response = self.llm.complete(
                build_comparison_prompt(report.generated_estimate, carrier.parsed_data),
                system_prompt=COMPARISON_SYSTEM_PROMPT,
                temperature=COMPARISON_TEMPERATURE,
                max_tokens=COMPARISON_MAX_TOKENS,
            )
            data = extract_json_object(response.content)
            if not isinstance(data.get("summary"), dict):
                raise MalformedResponseError("Comparison response is missing summary totals")
            data["method"] = "model"
            result = parse_model(data, ComparisonResult, "comparison")

        report.comparison_data = dump_blob(result)
        report.carrier_estimate_id = carrier.id
        report.total_contractor_estimate = result.summary.total_industry
        report.total_carrier_estimate = result.summary.total_carrier
        report.total_delta = result.summary.total_delta
        report.updated_at = self.clock()
        self.db.commit()
        logger.info(
            f"Compared estimates for report {report.id} ({method}): "
            f"{len(result.discrepancies)} discrepancies, delta ${result.summary.total_delta:,.2f}"
        )

        if response is not None:
            self.meter.record(APICallType.COMPARISON_ANALYSIS, response, org_id, report.id)
        return result
