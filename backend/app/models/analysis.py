"""
Claim Resolution Engine - Analysis Result Models

Typed shapes for the JSON blobs stored on AuditReport. Every blob carries a
schema_version so older reports keep loading after the rule table changes.
Blobs written before versioning existed are read as version 1.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..services.errors import MissingFieldError

SCHEMA_VERSION = 1


# =============================================================================
# ENUMS
# =============================================================================

class PMBrainStatus(str, Enum):
    """Settlement disposition. No other value is ever accepted."""
    CLOSE = "CLOSE"
    DISPUTE_OFFER = "DISPUTE_OFFER"
    LEGAL_REVIEW = "LEGAL_REVIEW"
    NEED_DOCS = "NEED_DOCS"


class Recommendation(str, Enum):
    PURSUE = "PURSUE"
    PURSUE_WITH_CONDITIONS = "PURSUE_WITH_CONDITIONS"
    DO_NOT_PURSUE = "DO_NOT_PURSUE"


class CoverageAssessment(str, Enum):
    """How the policy exclusions text relates to the loss type."""
    EXPLICIT = "explicit"
    AMBIGUOUS = "ambiguous"
    SILENT = "silent"


class AnalysisBlob(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    schema_version: int = SCHEMA_VERSION


# =============================================================================
# GENERATED ESTIMATE
# =============================================================================

class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str
    quantity: float = 0.0
    unit: str = ""
    unit_cost: float = 0.0
    total: float
    category: str = "General"


class GeneratedEstimate(AnalysisBlob):
    """Xactimate-style estimate produced from a scope sheet."""
    line_items: List[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    overhead_profit: float = 0.0
    total: float


# =============================================================================
# COMPARISON
# =============================================================================

class Discrepancy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    item: str
    industry_price: float
    carrier_price: float
    delta: float
    justification: str = ""


class ComparisonSummary(BaseModel):
    total_industry: float
    total_carrier: float
    total_delta: float


class ComparisonResult(AnalysisBlob):
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    summary: ComparisonSummary
    method: str = "model"


# =============================================================================
# PM BRAIN
# =============================================================================

class DeltaDriver(BaseModel):
    model_config = ConfigDict(extra="ignore")

    line_item: str
    contractor_price: float = 0.0
    carrier_price: float = 0.0
    delta: float = 0.0
    reason: str = ""


class CoverageDispute(BaseModel):
    model_config = ConfigDict(extra="ignore")

    item: str
    status: str  # denied | partial
    contractor_position: str = ""

    @property
    def is_denial(self) -> bool:
        return self.status.strip().lower() == "denied"


class PMBrainAnalysis(AnalysisBlob):
    """
    Settlement-disposition result.

    `status` is always the rule-derived value; `model_status` keeps what the
    model proposed so disagreements stay visible in the stored report.
    """
    status: PMBrainStatus
    status_reason: str = ""
    plain_english_summary: str = Field(default="", validation_alias=AliasChoices("plain_english_summary", "summary"))
    total_contractor_estimate: float = 0.0
    total_carrier_estimate: float = 0.0
    total_delta: float = 0.0
    delta_drivers: List[DeltaDriver] = Field(
        default_factory=list, validation_alias=AliasChoices("delta_drivers", "top_delta_drivers")
    )
    coverage_disputes: List[CoverageDispute] = Field(default_factory=list)
    required_next_steps: List[str] = Field(default_factory=list)
    legal_threshold_met: bool = False
    model_status: Optional[PMBrainStatus] = None
    rules_version: Optional[str] = None


# =============================================================================
# VIABILITY
# =============================================================================

class ViabilityAnalysis(AnalysisBlob):
    recommendation: Recommendation
    net_estimated_recovery: float
    coverage_score: int = Field(ge=0, le=100)
    economics_score: int = Field(ge=0, le=100)
    coverage_assessment: CoverageAssessment = CoverageAssessment.SILENT
    top_risks: List[str] = Field(default_factory=list)
    required_next_steps: List[str] = Field(default_factory=list)
    plain_english_summary: str = ""
    rules_version: Optional[str] = None


# =============================================================================
# LOADERS
# =============================================================================

BlobT = TypeVar("BlobT", bound=AnalysisBlob)


def validation_messages(error: ValidationError) -> List[Dict[str, Any]]:
    """JSON-safe summary of a pydantic ValidationError."""
    return [{"loc": [str(p) for p in err["loc"]], "msg": err["msg"]} for err in error.errors()]


def load_blob(model: Type[BlobT], data: Optional[Dict[str, Any]], field_name: str) -> Optional[BlobT]:
    """
    Load a stored blob into its typed model.

    Returns None for an empty column. A stored blob that no longer satisfies
    the shape raises MissingFieldError rather than guessing defaults.
    """
    if data is None:
        return None
    payload = dict(data)
    payload.setdefault("schema_version", 1)
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MissingFieldError(
            f"Stored {field_name} does not match the expected shape",
            details={"field": field_name, "errors": validation_messages(e)},
        ) from e


def dump_blob(blob: AnalysisBlob) -> Dict[str, Any]:
    """Serialize a blob for a JSON column."""
    return blob.model_dump(mode="json")
