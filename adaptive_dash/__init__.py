from __future__ import annotations

__version__ = "0.3.0"

# Public API re-exports (keep small & stable)
from .capabilities import detect_capabilities, DatasetCapabilities
from .layout import compile_layout, CompilationResult, CompiledLayout
from .resolve.columns import resolve_column, ResolutionRecord
from .aggregate import compute_aggregations, AggregationPlan, AggregationResult, plan_from_layout
from .insights import generate_insights, InsightsReport
from .gate import run_gate_check, GateCheckResult
from .config_model.model import RootCfg, load_config
