"""
Claim Resolution Engine - Decision Rules

Versioned rule table for settlement classification and viability scoring.
NO LLMs used here - pure logic only.

The same table feeds two consumers:
1. Prompt builders - render the thresholds as narrative framing for the model
2. Post-validation - re-derive the authoritative status/scores from source data

Money comparisons use Decimal so boundary cases (exactly 10%, exactly
$15,000, exactly $7,500) land on the documented side.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ...models.analysis import CoverageAssessment, PMBrainStatus, Recommendation

logger = logging.getLogger(__name__)

RULES_VERSION = "2026-01"


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON number to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# =============================================================================
# RULE TABLE
# =============================================================================

@dataclass(frozen=True)
class EconomicsBand:
    """Score for net recoveries up to `upper` (None = unbounded)."""
    upper: Optional[Decimal]
    upper_inclusive: bool
    score: int


@dataclass(frozen=True)
class RuleTable:
    version: str

    # Classification
    close_ratio: Decimal
    legal_gap: Decimal

    # Viability - economics
    economics_bands: Tuple[EconomicsBand, ...]

    # Viability - coverage deductions
    coverage_start: int
    explicit_exclusion_deduction: int
    ambiguous_coverage_deduction: int
    water_loss_deduction: int

    # Viability - recommendation thresholds
    pursue_min_coverage: int
    pursue_min_economics: int
    reject_below_coverage: int
    reject_below_economics: int


DEFAULT_RULES = RuleTable(
    version=RULES_VERSION,
    close_ratio=Decimal("0.10"),
    legal_gap=Decimal("15000"),
    economics_bands=(
        EconomicsBand(upper=Decimal("2500"), upper_inclusive=False, score=15),
        EconomicsBand(upper=Decimal("7500"), upper_inclusive=True, score=35),
        EconomicsBand(upper=Decimal("20000"), upper_inclusive=True, score=60),
        EconomicsBand(upper=None, upper_inclusive=True, score=85),
    ),
    coverage_start=100,
    explicit_exclusion_deduction=60,
    ambiguous_coverage_deduction=20,
    water_loss_deduction=30,
    pursue_min_coverage=70,
    pursue_min_economics=50,
    reject_below_coverage=40,
    reject_below_economics=30,
)


# =============================================================================
# CLASSIFICATION RULES
# =============================================================================

class ClassificationRules:
    """
    Four-state settlement disposition.

    Derivation order (first match wins):
    NEED_DOCS -> LEGAL_REVIEW -> CLOSE -> DISPUTE_OFFER
    """

    def __init__(self, table: RuleTable = DEFAULT_RULES):
        self.table = table

    @staticmethod
    def carrier_data_usable(parsed_data: Any) -> bool:
        """Carrier data must be a line-item estimate with a positive total."""
        if not isinstance(parsed_data, dict):
            return False
        line_items = parsed_data.get("line_items")
        if not isinstance(line_items, list) or not line_items:
            return False
        total = carrier_total(parsed_data)
        return total is not None and total > 0

    def derive_status(
        self,
        contractor_total: Decimal,
        carrier_total_value: Optional[Decimal],
        carrier_usable: bool,
        has_denied_coverage: bool = False,
    ) -> Tuple[PMBrainStatus, str]:
        """Return the authoritative status and a short reason."""
        if not carrier_usable or carrier_total_value is None:
            return PMBrainStatus.NEED_DOCS, "Carrier estimate is missing, unreadable, or not a line-item estimate"

        gap = contractor_total - carrier_total_value

        if gap >= self.table.legal_gap:
            return PMBrainStatus.LEGAL_REVIEW, f"Underpayment of ${gap:,.2f} meets the ${self.table.legal_gap:,.0f} legal threshold"
        if has_denied_coverage:
            return PMBrainStatus.LEGAL_REVIEW, "Carrier denied coverage on major items"

        if gap <= 0:
            return PMBrainStatus.CLOSE, "Carrier paid at or above the contractor estimate"

        ratio = gap / contractor_total
        if ratio <= self.table.close_ratio:
            return PMBrainStatus.CLOSE, f"Carrier paid within {self.table.close_ratio:.0%} of the contractor estimate"

        return PMBrainStatus.DISPUTE_OFFER, f"Underpaid by {ratio:.1%} (${gap:,.2f}), below the legal threshold"

    def legal_threshold_met(self, gap: Decimal) -> bool:
        return gap >= self.table.legal_gap

    def describe(self) -> str:
        """Rule block embedded in the classification prompt."""
        pct = f"{self.table.close_ratio * 100:.0f}%"
        gap = f"${self.table.legal_gap:,.0f}"
        return (
            f"CLASSIFICATION RULES (version {self.table.version}):\n"
            f"- CLOSE: carrier paid within {pct} of the contractor estimate, or more.\n"
            f"- DISPUTE_OFFER: underpaid by more than {pct} but the absolute gap is under {gap}.\n"
            f"- LEGAL_REVIEW: gap is {gap} or more, OR the carrier explicitly denied coverage on major items.\n"
            f"- NEED_DOCS: the carrier data is empty, garbled, or not a line-item estimate.\n"
        )


def carrier_total(parsed_data: Dict[str, Any]) -> Optional[Decimal]:
    """
    Carrier total from parsed data.

    Uses the explicit `total` when present, otherwise the sum of line totals.
    """
    total = parsed_data.get("total")
    if isinstance(total, (int, float)) and not isinstance(total, bool):
        return to_decimal(total)
    line_items = parsed_data.get("line_items")
    if not isinstance(line_items, list):
        return None
    summed = Decimal("0")
    found = False
    for item in line_items:
        if isinstance(item, dict):
            value = item.get("total")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                summed += to_decimal(value)
                found = True
    return summed if found else None


# =============================================================================
# VIABILITY RULES
# =============================================================================

# Words that name each loss type in an exclusion clause
LOSS_TYPE_TERMS: Dict[str, Tuple[str, ...]] = {
    "water": ("water",),
    "fire": ("fire",),
    "wind": ("wind", "windstorm"),
    "hail": ("hail", "hailstorm"),
}

# Perils adjacent to a loss type; naming one leaves coverage unclear
RELATED_PERILS: Dict[str, Tuple[str, ...]] = {
    "water": ("flood", "seepage", "leakage", "mold", "sewer", "backup"),
    "fire": ("smoke", "wildfire", "arson", "explosion"),
    "wind": ("hurricane", "tornado", "named storm"),
    "hail": ("hurricane", "named storm"),
}

# Phrases that mention the loss-type word but exclude only a sub-peril
QUALIFIED_PHRASES: Dict[str, Tuple[str, ...]] = {
    "water": ("surface water", "ground water", "groundwater", "flood water", "floodwater", "sewer water"),
    "fire": ("brush fire", "forest fire"),
    "wind": ("wind-driven rain", "wind driven rain"),
    "hail": (),
}

_CLAUSE_SPLIT = re.compile(r"[.;\n]+")


def _contains_word(text: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term)}\b", text) is not None


def normalize_loss_type(loss_type: Optional[str]) -> str:
    return (loss_type or "").strip().lower().replace("_damage", "").replace(" damage", "")


class ViabilityRules:
    """Economics, coverage, and recommendation scoring."""

    def __init__(self, table: RuleTable = DEFAULT_RULES):
        self.table = table

    def economics_score(self, net_recovery: Decimal) -> int:
        for band in self.table.economics_bands:
            if band.upper is None:
                return band.score
            if net_recovery < band.upper or (band.upper_inclusive and net_recovery == band.upper):
                return band.score
        return self.table.economics_bands[-1].score

    @staticmethod
    def assess_exclusions(exclusions: Optional[str], loss_type: Optional[str]) -> CoverageAssessment:
        """
        Classify exclusions text against the loss type.

        explicit  - a clause names the loss type itself
        ambiguous - a clause names a related peril or a qualified phrase
        silent    - nothing relevant
        """
        if not exclusions or not exclusions.strip():
            return CoverageAssessment.SILENT

        kind = normalize_loss_type(loss_type)
        terms = LOSS_TYPE_TERMS.get(kind, (kind,) if kind and kind != "other" else ())
        related = RELATED_PERILS.get(kind, ())
        qualified = QUALIFIED_PHRASES.get(kind, ())

        ambiguous = False
        for clause in _CLAUSE_SPLIT.split(exclusions.lower()):
            clause = clause.strip()
            if not clause:
                continue
            remainder = clause
            for phrase in qualified:
                if phrase in remainder:
                    ambiguous = True
                    remainder = remainder.replace(phrase, " ")
            if any(_contains_word(remainder, term) for term in terms):
                return CoverageAssessment.EXPLICIT
            if any(_contains_word(remainder, peril) for peril in related):
                ambiguous = True

        return CoverageAssessment.AMBIGUOUS if ambiguous else CoverageAssessment.SILENT

    def coverage_score(self, assessment: CoverageAssessment, loss_type: Optional[str]) -> int:
        score = self.table.coverage_start
        if assessment == CoverageAssessment.EXPLICIT:
            score -= self.table.explicit_exclusion_deduction
        elif assessment == CoverageAssessment.AMBIGUOUS:
            score -= self.table.ambiguous_coverage_deduction
        if normalize_loss_type(loss_type) == "water":
            score -= self.table.water_loss_deduction
        return max(score, 0)

    def recommend(self, coverage_score: int, economics_score: int, net_recovery: Decimal) -> Recommendation:
        t = self.table
        if (
            net_recovery <= 0
            or coverage_score < t.reject_below_coverage
            or economics_score < t.reject_below_economics
        ):
            return Recommendation.DO_NOT_PURSUE
        if coverage_score >= t.pursue_min_coverage and economics_score >= t.pursue_min_economics:
            return Recommendation.PURSUE
        return Recommendation.PURSUE_WITH_CONDITIONS

    def describe(self) -> str:
        """Rule block embedded in the viability prompt."""
        t = self.table
        lines = [f"SCORING RULES (version {t.version}), already applied - explain, do not recompute:"]
        lower = Decimal("0")
        for band in t.economics_bands:
            if band.upper is None:
                lines.append(f"- Economics: net recovery above ${lower:,.0f} -> {band.score}")
            else:
                lines.append(f"- Economics: net recovery up to ${band.upper:,.0f} -> {band.score}")
                lower = band.upper
        lines.extend([
            f"- Coverage starts at {t.coverage_start}; -{t.explicit_exclusion_deduction} when exclusions name the loss type, "
            f"-{t.ambiguous_coverage_deduction} when coverage is ambiguous, -{t.water_loss_deduction} for water losses.",
            f"- PURSUE: coverage >= {t.pursue_min_coverage} and economics >= {t.pursue_min_economics}.",
            f"- DO_NOT_PURSUE: coverage < {t.reject_below_coverage}, economics < {t.reject_below_economics}, or no net recovery.",
            "- PURSUE_WITH_CONDITIONS: everything else.",
        ])
        return "\n".join(lines) + "\n"


def summarize_risks(assessment: CoverageAssessment, loss_type: Optional[str], economics_score: int,
                    net_recovery: Decimal, table: RuleTable = DEFAULT_RULES) -> List[str]:
    """Deterministic risk lines that accompany any model narrative."""
    risks = []
    if assessment == CoverageAssessment.EXPLICIT:
        risks.append(f"Policy exclusions explicitly name {normalize_loss_type(loss_type)} losses")
    elif assessment == CoverageAssessment.AMBIGUOUS:
        risks.append("Policy exclusions name related perils; coverage is ambiguous")
    if normalize_loss_type(loss_type) == "water":
        risks.append("Water losses carry latent-seepage and long-term deterioration risk")
    if net_recovery <= 0:
        risks.append("Estimated repair cost does not exceed the deductible")
    elif economics_score < table.pursue_min_economics:
        risks.append(f"Net recovery of ${net_recovery:,.2f} is modest relative to pursuit cost")
    return risks
