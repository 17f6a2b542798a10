from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple
import itertools
import re

from pydantic import BaseModel, ConfigDict, Field

from ..capabilities.model import DatasetCapabilities
from ..capabilities.roles import strip_flag_prefix
from ..resolve.columns import resolve_column
from ..utils.fp import pipe
from ..utils.log import logger_from_cfg
from .catalog import WIDGET_CATALOG, TAB_BY_ID, widget_fallback_chain
from .model import (
    BindingInfo,
    COMPILER_VERSION,
    CompiledFilter,
    CompiledLayout,
    CompiledTab,
    CompiledWidget,
    DiscardInfo,
    LAYOUT_VERSION,
    Position,
)
from .tabs import generate_tabs
from .trace import CreationTrace

ROW_COUNT_COLUMN = "_count"

KpiAgg = Literal["sum", "count", "count_distinct", "avg", "truthy_count"]
KpiFormat = Literal["integer", "number", "currency", "percent"]


# ---------- Authored plan (validated on the way in) ----------

class PlanKpi(BaseModel):
    # "formula" is the older key for the reducer
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    column: str
    label: Optional[str] = None
    format: KpiFormat = "integer"
    agg: KpiAgg = Field("sum", alias="formula")


class PlanChart(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: Literal["line_chart", "area_chart", "bar_chart"]
    series: List[str] = []
    dimension: Optional[str] = None
    title: Optional[str] = None


class PlanFunnel(BaseModel):
    model_config = ConfigDict(extra="ignore")
    stages: List[str] = []


class DashboardPlan(BaseModel):
    """Explicit KPIs/charts/funnel an author asked for; merged with the defaults."""
    model_config = ConfigDict(extra="ignore")
    kpis: List[PlanKpi] = []
    charts: List[PlanChart] = []
    funnel: Optional[PlanFunnel] = None


# ---------- Results ----------

@dataclass
class CompilationResult:
    success: bool
    layout: Optional[CompiledLayout]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    discards: List[DiscardInfo] = field(default_factory=list)
    trace: CreationTrace = field(default_factory=CreationTrace)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "layout": self.layout.to_dict() if self.layout else None,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "discards": [d.to_dict() for d in self.discards],
            "trace": self.trace.to_dict(),
        }


class WidgetIdSequence:
    """Per-compilation widget id source; ids never collide within a run."""

    def __init__(self, prefix: str = "w") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def next(self, tab_id: str) -> str:
        return f"{self._prefix}-{tab_id}-{next(self._counter)}"


# ---------- Labels ----------

def _strip_flag(s: str) -> str:
    return strip_flag_prefix(s) or s

def _strip_total(s: str) -> str:
    return re.sub(r"_total$", "", s)

def _title_words(s: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), s)

def format_column_label(column: str) -> str:
    return pipe(column or "", _strip_flag, _strip_total, lambda s: s.replace("_", " "), _title_words)

def _metric_format(caps: DatasetCapabilities, column: str) -> str:
    if column in caps.currency_metrics:
        return "currency"
    if column in caps.percent_metrics:
        return "percent"
    return "number"

def _kpi(column: str, label: str, fmt: str, agg: str, **extra: Any) -> Dict[str, Any]:
    return {"key": f"{agg}:{column}", "column": column, "label": label, "format": fmt, "agg": agg, **extra}


# ---------- Compilation context ----------

class _Ctx:
    """Mutable state for one compilation run (ids, discards, warnings)."""

    def __init__(self, caps: DatasetCapabilities, plan: Optional[DashboardPlan], cfg: Any) -> None:
        self.caps = caps
        self.plan = plan
        self.ccfg = getattr(cfg, "compiler", None)
        self.ids = WidgetIdSequence()
        self.discards: List[DiscardInfo] = []
        self.warnings: List[str] = []
        self.enabled_tabs: Tuple[str, ...] = ()

    def c(self, name: str, default: int) -> int:
        return int(getattr(self.ccfg, name, default))

    def widget(self, tab_id: str, requested: str, config: Dict[str, Any], pos: Position) -> CompiledWidget:
        effective, reason = resolve_widget_type(requested, self.caps, self.discards)
        return CompiledWidget(
            id=self.ids.next(tab_id),
            type=effective,
            config=config,
            position=pos,
            original_type=requested if effective != requested else None,
            fallback_reason=reason,
        )

    def resolve(self, declared: str, kind: str) -> Optional[str]:
        """Bind an authored column reference to the profile's columns, or record a discard."""
        rec = resolve_column(declared, self.caps.columns)
        if rec.resolved is None:
            self.discard(declared, kind, f"Column {declared!r} not found in dataset")
        return rec.resolved

    def discard(self, item: str, kind: str, reason: str) -> None:
        self.discards.append(DiscardInfo(item, kind, reason))
        self.warnings.append(f"{kind} dropped: {reason}")


def resolve_widget_type(
    requested: str,
    caps: DatasetCapabilities,
    discards: Optional[List[DiscardInfo]] = None,
) -> Tuple[str, Optional[str]]:
    """
    Walk the fallback chain until a widget's requirements are met.

    Records one discard per hop. Returns (effective type, first unmet reason).
    The chain is bounded by the catalog size and always ends at a terminal.
    """
    first_reason: Optional[str] = None
    chain = widget_fallback_chain(requested)
    for i, wtype in enumerate(chain):
        spec = WIDGET_CATALOG[wtype]
        met, _ = spec.requires.check(caps)
        if met:
            return wtype, first_reason
        reason = spec.fallback_reason or "Requirements not met"
        first_reason = first_reason or reason
        nxt = chain[i + 1] if i + 1 < len(chain) else None
        if discards is not None:
            discards.append(DiscardInfo(
                spec.label, "widget", reason, WIDGET_CATALOG[nxt].label if nxt else None,
            ))
    # unreachable while the catalog validates
    return chain[-1], first_reason


# ---------- Tab generators ----------

def _overview_kpis(ctx: _Ctx) -> List[Dict[str, Any]]:
    caps = ctx.caps
    kpis: List[Dict[str, Any]] = [_kpi(ROW_COUNT_COLUMN, "Total Records", "integer", "count")]
    if caps.id_column:
        kpis.append(_kpi(caps.id_column, "Unique IDs", "integer", "count_distinct"))
    if caps.stage_flags:
        first = caps.stage_flags[0]
        kpis.append(_kpi(first, format_column_label(first), "integer", "truthy_count"))
    elif caps.metrics:
        m = caps.metrics[0]
        kpis.append(_kpi(m, format_column_label(m), _metric_format(caps, m), "sum"))
    if len(caps.stage_flags) > 2:
        last = caps.stage_flags[-1]
        kpis.append(_kpi(last, format_column_label(last), "integer", "truthy_count"))
    elif len(caps.metrics) > 1:
        m = caps.metrics[1]
        kpis.append(_kpi(m, format_column_label(m), _metric_format(caps, m), "sum"))

    if ctx.plan:
        for pk in ctx.plan.kpis[:4]:
            col = ctx.resolve(pk.column, "kpi")
            if col is None:
                continue
            if any(k["column"] == col for k in kpis):
                ctx.discard(pk.label or pk.column, "kpi", f"Column {col!r} is already shown by another KPI")
                continue
            kpis.append(_kpi(col, pk.label or format_column_label(col), pk.format, pk.agg))

    if len(kpis) < ctx.c("min_kpis", 2):
        used = {k["column"] for k in kpis}
        pad = next(
            (c for c in (*caps.dimensions, *caps.unresolved, *caps.columns) if c not in used),
            None,
        )
        if pad is not None:
            kpis.append(_kpi(pad, f"Distinct {format_column_label(pad)}", "integer", "count_distinct"))
    return kpis[: ctx.c("max_kpis", 8)]

def _overview(ctx: _Ctx) -> List[CompiledWidget]:
    caps = ctx.caps
    out: List[CompiledWidget] = []
    out.append(ctx.widget("overview", "status_card", {
        "title": "Dataset Status",
        "row_count": caps.row_count,
        "column_count": len(caps.columns),
        "has_time": caps.has_time,
        "has_funnel": caps.stage_flags_count >= ctx.c("funnel_min_stages", 3),
        "schema_hash": caps.schema_hash,
    }, Position(0, 0, 12, 1)))
    out.append(ctx.widget("overview", "kpi_cards", {"kpis": _overview_kpis(ctx)}, Position(1, 0, 12, 2)))

    row = 3
    if caps.stage_flags_count >= ctx.c("funnel_min_stages", 3):
        stages = caps.stage_flags[: ctx.c("funnel_max_stages", 7)]
        out.append(ctx.widget("overview", "funnel_chart", {
            "stages": [{"column": s, "label": format_column_label(s)} for s in stages],
            "id_column": caps.id_column,
        }, Position(row, 0, 8, 4)))
        if caps.dimensions:
            out.append(ctx.widget("overview", "ranking_table", {
                "dimension": caps.dimensions[0],
                "metric": caps.stage_flags[0],
                "agg": "truthy_count",
                "limit": ctx.c("overview_ranking_limit", 5),
            }, Position(row, 8, 4, 4)))
        row += 4
    elif caps.dimensions and caps.metrics:
        dim, m = caps.dimensions[0], caps.metrics[0]
        out.append(ctx.widget("overview", "bar_chart", {
            "dimension": dim,
            "metric": m,
            "agg": "sum",
            "title": f"{format_column_label(m)} by {format_column_label(dim)}",
        }, Position(row, 0, 12, 4)))
        row += 4

    # authored charts whose natural tab is not enabled land here
    for w in _authored_charts(ctx, "overview", row):
        out.append(w)
    return out

def _series(caps: DatasetCapabilities, columns: Tuple[str, ...] | List[str]) -> List[Dict[str, Any]]:
    return [
        {
            "column": c,
            "label": format_column_label(c),
            "format": "integer" if c in caps.stage_flags else _metric_format(caps, c),
            "agg": "truthy_count" if c in caps.stage_flags else "sum",
        }
        for c in columns
    ]

def _time(ctx: _Ctx) -> List[CompiledWidget]:
    caps = ctx.caps
    out: List[CompiledWidget] = []
    if not caps.has_time or not caps.time_column:
        return out
    row = 0
    metrics = caps.metrics[: ctx.c("trend_max_metrics", 4)]
    if metrics:
        out.append(ctx.widget("time", "line_chart", {
            "x_column": caps.time_column,
            "series": _series(caps, metrics),
            "title": "Main Trend",
        }, Position(row, 0, 12, 4)))
        row += 4
    if caps.stage_flags_count >= 2:
        out.append(ctx.widget("time", "area_chart", {
            "x_column": caps.time_column,
            "series": _series(caps, caps.stage_flags[: ctx.c("stage_area_max_flags", 5)]),
            "title": "Funnel Over Time",
            "stacked": True,
        }, Position(row, 0, 12, 4)))
        row += 4
    out.extend(_authored_charts(ctx, "time", row))
    return out

def _funnel_stages(ctx: _Ctx) -> List[str]:
    caps = ctx.caps
    if ctx.plan and ctx.plan.funnel and ctx.plan.funnel.stages:
        resolved = []
        for declared in ctx.plan.funnel.stages:
            col = ctx.resolve(declared, "funnel_stage")
            if col is not None and col not in resolved:
                resolved.append(col)
        if resolved:
            return resolved
        ctx.warnings.append("Authored funnel has no resolvable stages; using detected stages")
    return list(caps.stage_flags[: ctx.c("funnel_max_stages", 7)])

def _funnel(ctx: _Ctx) -> List[CompiledWidget]:
    caps = ctx.caps
    out: List[CompiledWidget] = []
    if caps.stage_flags_count < ctx.c("funnel_min_stages", 3):
        return out
    stages = _funnel_stages(ctx)
    out.append(ctx.widget("funnel", "funnel_chart", {
        "stages": [{"column": s, "label": format_column_label(s)} for s in stages],
        "id_column": caps.id_column,
        "show_rates": True,
    }, Position(0, 0, 8, 6)))
    kpi_stages = stages[:6]
    out.append(ctx.widget("funnel", "kpi_cards", {
        "kpis": [
            _kpi(s, format_column_label(s), "integer", "truthy_count",
                 show_rate=i > 0, rate_base=kpi_stages[0])
            for i, s in enumerate(kpi_stages)
        ],
    }, Position(0, 8, 4, 6)))
    if caps.dimensions:
        out.append(ctx.widget("funnel", "ranking_table", {
            "dimension": caps.dimensions[0],
            "metrics": stages[:3],
            "agg": "truthy_count",
            "limit": ctx.c("ranking_limit", 10),
            "show_conversion_rates": True,
        }, Position(6, 0, 12, 4)))
    return out

def _table(ctx: _Ctx) -> List[CompiledWidget]:
    return [ctx.widget("table", "data_table", {
        "columns": list(ctx.caps.columns),
        "paginated": True,
        "page_size": ctx.c("table_page_size", 50),
        "searchable": True,
        "exportable": True,
    }, Position(0, 0, 12, 10))]

def _explore(ctx: _Ctx) -> List[CompiledWidget]:
    caps = ctx.caps
    out: List[CompiledWidget] = []
    metric = caps.stage_flags[0] if caps.stage_flags else (caps.metrics[0] if caps.metrics else None)
    agg = "truthy_count" if metric in caps.stage_flags else "sum"
    dims = caps.dimensions[: ctx.c("explore_max_rankings", 3)] if metric else ()
    for i, dim in enumerate(dims):
        out.append(ctx.widget("explore", "ranking_table", {
            "dimension": dim,
            "metric": metric,
            "agg": agg,
            "limit": ctx.c("ranking_limit", 10),
            "title": f"Top {format_column_label(dim)}",
        }, Position((i // 2) * 4, 0 if i % 2 == 0 else 6, 6, 4)))
    out.extend(_authored_charts(ctx, "explore", ((len(out) + 1) // 2) * 4))
    return out

def _efficiency(ctx: _Ctx) -> List[CompiledWidget]:
    caps = ctx.caps
    out: List[CompiledWidget] = []
    if not caps.currency_metrics or caps.metrics_count < 2:
        return out
    out.append(ctx.widget("efficiency", "kpi_cards", {
        "kpis": [
            _kpi(c, format_column_label(c), "currency", "sum", goal_direction="lower_better")
            for c in caps.currency_metrics[: ctx.c("efficiency_max_kpis", 4)]
        ],
    }, Position(0, 0, 12, 2)))
    if caps.has_time and caps.time_column:
        out.append(ctx.widget("efficiency", "line_chart", {
            "x_column": caps.time_column,
            "series": _series(caps, caps.currency_metrics[: ctx.c("cost_trend_max_metrics", 3)]),
            "title": "Costs Over Time",
        }, Position(2, 0, 12, 4)))
    return out

_NATURAL_TAB = {"line_chart": "time", "area_chart": "time", "bar_chart": "explore"}

def _authored_charts(ctx: _Ctx, tab_id: str, start_row: int) -> List[CompiledWidget]:
    """Authored charts placed on `tab_id`: their natural tab, or overview when that tab is off."""
    if not ctx.plan or not ctx.plan.charts:
        return []
    out: List[CompiledWidget] = []
    row = start_row
    for chart in ctx.plan.charts:
        natural = _NATURAL_TAB[chart.type]
        target = natural if natural in ctx.enabled_tabs else "overview"
        if target != tab_id:
            continue
        series = [c for c in (ctx.resolve(s, "chart") for s in chart.series) if c is not None]
        if not series:
            ctx.discards.append(DiscardInfo(chart.title or chart.type, "chart", "No resolvable series"))
            continue
        config: Dict[str, Any] = {"series": _series(ctx.caps, series), "title": chart.title or "Custom Chart"}
        dim = ctx.resolve(chart.dimension, "chart") if chart.dimension else None
        # bar-shaped fallbacks still need a dimension to group by
        config.update({
            "dimension": dim or (ctx.caps.dimensions[0] if ctx.caps.dimensions else None),
            "metric": series[0],
            "agg": config["series"][0]["agg"],
        })
        if chart.type != "bar_chart":
            config["x_column"] = ctx.caps.time_column
            config["stacked"] = chart.type == "area_chart"
        out.append(ctx.widget(tab_id, chart.type, config, Position(row, 0, 12, 4)))
        row += 4
    return out

TAB_GENERATORS: Mapping[str, Callable[[_Ctx], List[CompiledWidget]]] = {
    "overview": _overview,
    "time": _time,
    "funnel": _funnel,
    "table": _table,
    "explore": _explore,
    "efficiency": _efficiency,
}


# ---------- Filters & validation ----------

def generate_filters(caps: DatasetCapabilities, max_dimensions: int = 3) -> List[CompiledFilter]:
    out: List[CompiledFilter] = []
    if caps.has_time and caps.time_column:
        out.append(CompiledFilter("f-date", "date_range", caps.time_column, "Period"))
    for i, dim in enumerate(caps.dimensions[:max_dimensions], start=1):
        out.append(CompiledFilter(f"f-dim-{i}", "multiselect", dim, format_column_label(dim), []))
    return out

def validate_layout(layout: CompiledLayout) -> List[str]:
    errors: List[str] = []
    for tab_id in ("overview", "table"):
        tab = layout.tab(tab_id)
        if tab is None or not tab.widgets:
            errors.append(f"Layout has no {TAB_BY_ID[tab_id].label} tab with widgets")
    if not layout.widgets():
        errors.append("Layout has no widgets")
    return errors


# ---------- Public API ----------

def compile_layout(
    capabilities: DatasetCapabilities,
    plan: DashboardPlan | Mapping[str, Any] | None = None,
    *,
    dataset_ref: Optional[str] = None,
    cfg: Any = None,
    now: Optional[datetime] = None,
) -> CompilationResult:
    """
    Compile a capability profile (plus an optional authored plan) into a layout.

    Unmet widget requirements degrade through the catalog's fallbacks. A layout
    missing a non-empty overview or table tab is never returned: the result
    then carries `success=False`, no layout, and the reasons in `errors`.
    A malformed plan mapping raises pydantic's ValidationError.
    """
    log = logger_from_cfg("compiler", cfg)
    if plan is not None and not isinstance(plan, DashboardPlan):
        plan = DashboardPlan.model_validate(plan)
    created_at = (now or datetime.now(timezone.utc)).isoformat()

    trace = CreationTrace()
    ctx = _Ctx(capabilities, plan, cfg)
    result = CompilationResult(success=False, layout=None, trace=trace)

    def _fail(msg: str, exc: Exception) -> CompilationResult:
        result.errors.append(f"{msg}: {exc}")
        result.warnings.extend(ctx.warnings)
        result.discards.extend(ctx.discards)
        trace.complete("failed")
        log.error("layout_rejected", extra={"errors": result.errors, "schema_hash": capabilities.schema_hash})
        return result

    # 1) tabs
    try:
        with trace.step("generate_tabs") as st:
            tabs = generate_tabs(capabilities, cfg)
            st.outputs = {"tabs_generated": tabs.tab_ids, "default_tab": tabs.default_tab}
            st.discards.extend(tabs.discarded)
            st.warnings.extend(tabs.warnings)
    except Exception as e:
        return _fail("Failed to generate tabs", e)
    ctx.enabled_tabs = tuple(tabs.tab_ids)
    result.warnings.extend(tabs.warnings)
    result.discards.extend(tabs.discarded)

    # 2) widgets
    compiled_tabs: List[CompiledTab] = []
    try:
        with trace.step("generate_widgets") as st:
            for tab in tabs.tabs:
                widgets = TAB_GENERATORS[tab.id](ctx)
                compiled_tabs.append(CompiledTab(tab.id, tab.label, tab.icon, widgets))
            st.outputs = {"total_widgets": sum(len(t.widgets) for t in compiled_tabs)}
            st.discards.extend(ctx.discards)
            st.warnings.extend(ctx.warnings)
    except Exception as e:
        return _fail("Failed to generate widgets", e)
    result.discards.extend(ctx.discards)
    result.warnings.extend(ctx.warnings)

    # 3) filters
    filters: List[CompiledFilter] = []
    if capabilities.has_time or capabilities.dimensions:
        with trace.step("generate_filters") as st:
            filters = generate_filters(capabilities, ctx.c("filter_max_dimensions", 3))
            st.outputs = {"filters_generated": len(filters)}
    else:
        trace.skip("generate_filters", "No time column or dimensions to filter on")

    layout = CompiledLayout(
        version=LAYOUT_VERSION,
        tabs=compiled_tabs,
        default_tab=tabs.default_tab,
        global_filters=filters,
        binding=BindingInfo(
            dataset_ref=dataset_ref,
            mapping_version=1,
            schema_hash=capabilities.schema_hash,
            column_names=list(capabilities.columns),
            created_at=created_at,
        ),
        created_at=created_at,
        compiler_version=COMPILER_VERSION,
    )

    # 4) validation gate
    with trace.step("validate_layout") as st:
        errors = validate_layout(layout)
        st.outputs = {"errors": errors}

    s = trace.summary
    s.tabs_generated = [t.id for t in compiled_tabs]
    s.tabs_discarded = [d.item for d in tabs.discarded]
    s.widgets_generated = len(layout.widgets())
    s.widgets_discarded = [d.item for d in result.discards if d.type == "widget"]
    s.warnings = list(result.warnings)

    if errors:
        result.errors.extend(errors)
        trace.complete("failed")
        log.error("layout_rejected", extra={"errors": errors, "schema_hash": capabilities.schema_hash})
        return result

    result.success = True
    result.layout = layout
    trace.complete("success")
    log.info(
        "layout_compiled",
        extra={
            "schema_hash": capabilities.schema_hash,
            "tabs": s.tabs_generated,
            "widgets": s.widgets_generated,
            "discards": len(result.discards),
            "trace_id": trace.trace_id,
        },
    )
    return result
