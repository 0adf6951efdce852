"""Claim Resolution Engine - Data Models"""
from .analysis import (
    # Enums
    PMBrainStatus, Recommendation, CoverageAssessment,
    # Stored analysis blobs
    LineItem, GeneratedEstimate,
    Discrepancy, ComparisonSummary, ComparisonResult,
    DeltaDriver, CoverageDispute, PMBrainAnalysis,
    ViabilityAnalysis,
    # Helpers
    SCHEMA_VERSION, load_blob, dump_blob,
)

__all__ = [
    "PMBrainStatus", "Recommendation", "CoverageAssessment",
    "LineItem", "GeneratedEstimate",
    "Discrepancy", "ComparisonSummary", "ComparisonResult",
    "DeltaDriver", "CoverageDispute", "PMBrainAnalysis",
    "ViabilityAnalysis",
    "SCHEMA_VERSION", "load_blob", "dump_blob",
]
