"""Risk scoring — per-cell index, patch aggregation, compliance."""

from emberline.scoring.aggregator import PatchAggregator
from emberline.scoring.compliance import ComplianceEntry, compliance_report, non_compliant
from emberline.scoring.index import (
    CellScore,
    IndexEngine,
    ScoreChange,
    ScoringStrategy,
    classify,
    defensible_zone,
    normalize_raw,
    recommendation,
    register_strategy,
)

__all__ = [
    "CellScore",
    "ComplianceEntry",
    "IndexEngine",
    "PatchAggregator",
    "ScoreChange",
    "ScoringStrategy",
    "classify",
    "compliance_report",
    "defensible_zone",
    "non_compliant",
    "normalize_raw",
    "recommendation",
    "register_strategy",
]
