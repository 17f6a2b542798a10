from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from ..capabilities.model import DatasetCapabilities


class CatalogError(RuntimeError):
    """The static widget/tab catalog is structurally invalid (cycle or dead end)."""


@dataclass(frozen=True)
class Requirement:
    requires_time: bool = False
    min_stage_flags: int = 0
    min_dimensions: int = 0
    min_metrics: int = 0
    requires_currency: bool = False
    always: bool = False

    @property
    def is_empty(self) -> bool:
        return self.always or not (
            self.requires_time
            or self.min_stage_flags
            or self.min_dimensions
            or self.min_metrics
            or self.requires_currency
        )

    def check(self, caps: DatasetCapabilities) -> Tuple[bool, Optional[str]]:
        """Return (met, reason); reason names the first unmet threshold."""
        if self.always:
            return True, None
        if self.requires_time and not caps.has_time:
            return False, "Time column not found"
        if self.min_stage_flags and caps.stage_flags_count < self.min_stage_flags:
            return False, (
                f"At least {self.min_stage_flags} funnel stages required, "
                f"found {caps.stage_flags_count}"
            )
        if self.min_dimensions and caps.dimensions_count < self.min_dimensions:
            return False, (
                f"At least {self.min_dimensions} dimensions required, "
                f"found {caps.dimensions_count}"
            )
        if self.min_metrics and caps.metrics_count < self.min_metrics:
            return False, (
                f"At least {self.min_metrics} metrics required, "
                f"found {caps.metrics_count}"
            )
        if self.requires_currency and not caps.currency_metrics:
            return False, "Cost/value metrics not found"
        return True, None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requires_time": self.requires_time,
            "min_stage_flags": self.min_stage_flags,
            "min_dimensions": self.min_dimensions,
            "min_metrics": self.min_metrics,
            "requires_currency": self.requires_currency,
            "always": self.always,
        }


@dataclass(frozen=True)
class WidgetSpec:
    type: str
    label: str
    requires: Requirement
    fallback_to: Optional[str] = None
    fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class TabSpec:
    id: str
    label: str
    icon: str
    requires: Requirement
    priority: int
    fallback_to: Optional[str] = None


# ---- Widgets ----

WIDGET_CATALOG: Mapping[str, WidgetSpec] = MappingProxyType({
    w.type: w for w in (
        WidgetSpec("kpi_cards", "KPI Cards", Requirement(min_metrics=1),
                   "status_card", "No numeric metric found"),
        WidgetSpec("line_chart", "Line Chart", Requirement(requires_time=True, min_metrics=1),
                   "bar_chart", "Time column not found"),
        WidgetSpec("area_chart", "Area Chart", Requirement(requires_time=True, min_metrics=1),
                   "bar_chart", "Time column not found"),
        WidgetSpec("bar_chart", "Bar Chart", Requirement(min_dimensions=1, min_metrics=1),
                   "data_table", "Dimension or metric not found"),
        WidgetSpec("funnel_chart", "Funnel", Requirement(min_stage_flags=3),
                   "bar_chart", "Fewer than 3 funnel stages detected"),
        WidgetSpec("ranking_table", "Ranking", Requirement(min_dimensions=1, min_metrics=1),
                   "data_table", "Dimension or metric not found"),
        WidgetSpec("insight_list", "Insight List", Requirement(min_metrics=2),
                   "status_card", "Too few metrics to derive insights"),
        WidgetSpec("data_table", "Data Table", Requirement()),
        WidgetSpec("status_card", "Dataset Status", Requirement()),
    )
})

# ---- Tabs (declaration order is priority order) ----

TAB_CATALOG: Tuple[TabSpec, ...] = (
    TabSpec("overview", "Overview", "LayoutDashboard", Requirement(always=True), 0),
    TabSpec("time", "Time", "Clock", Requirement(requires_time=True), 20, "overview"),
    TabSpec("funnel", "Funnel", "GitBranch", Requirement(min_stage_flags=3), 30, "overview"),
    TabSpec("explore", "Explore", "Search", Requirement(min_dimensions=1), 40, "overview"),
    TabSpec("efficiency", "Efficiency", "TrendingUp",
            Requirement(requires_currency=True, min_metrics=2), 50, "overview"),
    TabSpec("table", "Table", "Table", Requirement(always=True), 100),
)
TAB_BY_ID: Mapping[str, TabSpec] = MappingProxyType({t.id: t for t in TAB_CATALOG})
MANDATORY_TABS: Tuple[str, ...] = ("overview", "table")


def fallback_chain(start: str, graph: Mapping[str, Optional[str]]) -> Tuple[str, ...]:
    """Follow fallback pointers from `start`; raise CatalogError on a cycle or dangling edge."""
    seen = [start]
    cur = graph.get(start)
    while cur is not None:
        if cur not in graph:
            raise CatalogError(f"{seen[-1]!r} falls back to unknown entry {cur!r}")
        if cur in seen:
            raise CatalogError(f"fallback cycle: {' -> '.join(seen + [cur])}")
        seen.append(cur)
        cur = graph[cur]
    return tuple(seen)

def validate_catalog(
    widgets: Mapping[str, WidgetSpec] = WIDGET_CATALOG,
    tabs: Tuple[TabSpec, ...] = TAB_CATALOG,
) -> None:
    """Both fallback graphs must be acyclic and end at a requirement-free entry."""
    wgraph = {k: w.fallback_to for k, w in widgets.items()}
    for k in widgets:
        terminal = fallback_chain(k, wgraph)[-1]
        if not widgets[terminal].requires.is_empty:
            raise CatalogError(f"widget {k!r} ends at {terminal!r}, which has requirements")

    by_id = {t.id: t for t in tabs}
    tgraph = {t.id: t.fallback_to for t in tabs}
    for t in tabs:
        terminal = fallback_chain(t.id, tgraph)[-1]
        if not by_id[terminal].requires.is_empty:
            raise CatalogError(f"tab {t.id!r} ends at {terminal!r}, which has requirements")
    for mandatory in MANDATORY_TABS:
        if mandatory not in by_id:
            raise CatalogError(f"mandatory tab {mandatory!r} missing from catalog")

def widget_fallback_chain(widget_type: str) -> Tuple[str, ...]:
    return fallback_chain(widget_type, {k: w.fallback_to for k, w in WIDGET_CATALOG.items()})


validate_catalog()
