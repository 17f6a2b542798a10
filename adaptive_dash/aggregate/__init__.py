from __future__ import annotations

# Public API re-exports (keep small & stable)
from .engine import AggregationResult, KpiValue, FunnelStep, RankingEntry, compute_aggregations
from .plan import AggregationPlan, plan_from_layout
from .quality import DataQualityReport, QualityWarning
