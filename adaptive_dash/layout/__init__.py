from __future__ import annotations

# Public API re-exports (keep small & stable)
from .catalog import CatalogError, WIDGET_CATALOG, TAB_CATALOG
from .compiler import (
    CompilationResult,
    DashboardPlan,
    compile_layout,
    resolve_widget_type,
)
from .model import CompiledLayout, CompiledTab, CompiledWidget, DiscardInfo
from .trace import CreationTrace
