"""Claim Resolution Engine - Claim Decision Services

Fact gathering, estimate comparison, settlement classification and
viability scoring. All thresholds come from the versioned rule table.
"""
from .fact_gatherer import FactGatherer, PolicySnapshot
from .rules import (
    RULES_VERSION,
    DEFAULT_RULES,
    RuleTable,
    ClassificationRules,
    ViabilityRules,
)
from .audit_service import AuditService, reduce_line_items
from .pm_brain import PMBrainService
from .viability import ViabilityService
from .usage import UsageMeter, estimate_cost

__all__ = [
    "FactGatherer",
    "PolicySnapshot",
    "RULES_VERSION",
    "DEFAULT_RULES",
    "RuleTable",
    "ClassificationRules",
    "ViabilityRules",
    "AuditService",
    "reduce_line_items",
    "PMBrainService",
    "ViabilityService",
    "UsageMeter",
    "estimate_cost",
]
