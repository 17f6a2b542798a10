from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..layout.model import CompiledLayout

KpiAgg = Literal["sum", "count", "count_distinct", "avg", "truthy_count"]
SeriesAgg = Literal["sum", "count", "avg", "truthy_count"]
RankAgg = Literal["sum", "count", "avg", "truthy_count"]
Grain = Literal["day", "week", "month", "auto"]


class KpiDef(BaseModel):
    model_config = ConfigDict(extra="ignore")
    key: Optional[str] = None
    column: str
    agg: KpiAgg = "sum"
    label: Optional[str] = None

    @model_validator(mode="after")
    def _default_key(self):
        if not self.key:
            self.key = f"{self.agg}:{self.column}"
        return self


class FunnelStageDef(BaseModel):
    model_config = ConfigDict(extra="ignore")
    column: str
    label: Optional[str] = None


class SeriesDef(BaseModel):
    model_config = ConfigDict(extra="ignore")
    column: str
    # None: use the reducer of the KPI on the same column, else sum
    agg: Optional[SeriesAgg] = None


class ChartDef(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    series: List[SeriesDef] = []


class RankingDef(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    dimension: str
    metric: Optional[str] = None
    agg: RankAgg = "sum"
    limit: Optional[int] = Field(None, ge=1)


class AggregationPlan(BaseModel):
    """Resolved description of what to compute over a row set."""
    model_config = ConfigDict(extra="ignore")
    time_column: Optional[str] = None
    kpis: List[KpiDef] = []
    funnel: List[FunnelStageDef] = []
    charts: List[ChartDef] = []
    rankings: List[RankingDef] = []
    grain: Grain = "day"

    def kpi_agg_for(self, column: str) -> Optional[str]:
        return next((k.agg for k in self.kpis if k.column == column), None)


# ---------- Derivation from a compiled layout ----------

def _effective_kind(w: Any) -> str:
    # terminal fallbacks still carry the original widget's payload
    if w.type in ("status_card", "data_table") and w.original_type:
        return w.original_type
    return w.type

def plan_from_layout(layout: CompiledLayout) -> AggregationPlan:
    """
    Derive the aggregation work a compiled layout needs.

    KPI cards become KPIs, the funnel chart its stages, line/area charts
    series, ranking and bar widgets rankings. Duplicate KPIs collapse by key.
    """
    time_column = next(
        (f.column for f in layout.global_filters if f.type == "date_range"), None
    )
    kpis: Dict[str, KpiDef] = {}
    funnel: List[FunnelStageDef] = []
    charts: List[ChartDef] = []
    rankings: List[RankingDef] = []

    for w in layout.widgets():
        kind = _effective_kind(w)
        cfg = w.config or {}
        if kind == "kpi_cards":
            for k in cfg.get("kpis", []):
                kd = KpiDef(key=k.get("key"), column=k["column"], agg=k.get("agg", "sum"), label=k.get("label"))
                kpis.setdefault(kd.key, kd)
        elif kind == "funnel_chart" and not funnel:
            funnel = [FunnelStageDef(column=s["column"], label=s.get("label")) for s in cfg.get("stages", [])]
        elif w.type in ("line_chart", "area_chart"):
            time_column = time_column or cfg.get("x_column")
            charts.append(ChartDef(
                id=w.id,
                series=[SeriesDef(column=s["column"], agg=s.get("agg")) for s in cfg.get("series", [])],
            ))
        elif w.type in ("ranking_table", "bar_chart"):
            dim = cfg.get("dimension")
            if not dim:
                continue
            metrics = cfg.get("metrics") or [cfg.get("metric") or next(
                (s["column"] for s in cfg.get("series", [])), None
            )]
            for m in metrics:
                rid = w.id if len(metrics) == 1 else f"{w.id}:{m}"
                rankings.append(RankingDef(
                    id=rid, dimension=dim, metric=m,
                    agg=cfg.get("agg", "sum") if m else "count",
                    limit=cfg.get("limit"),
                ))

    return AggregationPlan(
        time_column=time_column,
        kpis=list(kpis.values()),
        funnel=funnel,
        charts=charts,
        rankings=rankings,
    )
