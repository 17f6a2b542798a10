from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import math
import pandas as pd

from ..config_model.model import AggregationCfg
from ..layout.compiler import ROW_COUNT_COLUMN
from ..parsing.values import to_number, truthy_count, truthy_mask
from ..resolve.columns import ResolutionRecord, resolve_column
from ..utils.fp import unique_stable
from ..utils.log import logger_from_cfg
from ..utils.time import cfg_timezone, date_key, end_of_day, parse_date, period_key, start_of_day
from .plan import AggregationPlan
from .quality import (
    DATA_LIMITED,
    NO_DATA,
    DataQualityReport,
    audit_funnel,
    audit_null_rates,
    audit_stages,
    audit_time,
    column_not_found,
)

DEFAULT_MAX_POINTS = 400


# ---------- Result records ----------

@dataclass(frozen=True)
class KpiValue:
    key: str
    column: str
    resolved: Optional[str]
    strategy: Optional[str]
    agg: str
    value: float
    non_null_count: int = 0
    truthy_count: int = 0
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "column": self.column,
            "resolved": self.resolved,
            "strategy": self.strategy,
            "agg": self.agg,
            "value": self.value,
            "non_null_count": self.non_null_count,
            "truthy_count": self.truthy_count,
            "label": self.label,
        }


@dataclass(frozen=True)
class FunnelStep:
    stage: str
    column: Optional[str]
    label: str
    count: int
    # None when there is no predecessor or it counted zero
    conversion_rate: Optional[float] = None

    @property
    def dropoff_percent(self) -> Optional[float]:
        if self.conversion_rate is None:
            return None
        return (1.0 - self.conversion_rate) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "column": self.column,
            "label": self.label,
            "count": self.count,
            "conversion_rate": self.conversion_rate,
            "dropoff_percent": self.dropoff_percent,
        }


@dataclass(frozen=True)
class RankingEntry:
    dimension: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"dimension": self.dimension, "value": self.value}


@dataclass
class AggregationResult:
    kpis: Dict[str, KpiValue] = field(default_factory=dict)
    funnel: List[FunnelStep] = field(default_factory=list)
    series: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    rankings: Dict[str, List[RankingEntry]] = field(default_factory=dict)
    quality: DataQualityReport = field(default_factory=DataQualityReport)
    meta: Dict[str, Any] = field(default_factory=dict)

    def kpi_value(self, key_or_column: str) -> float:
        if key_or_column in self.kpis:
            return self.kpis[key_or_column].value
        hit = next((k for k in self.kpis.values() if k.column == key_or_column), None)
        return hit.value if hit else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kpis": {k: v.to_dict() for k, v in self.kpis.items()},
            "funnel": [s.to_dict() for s in self.funnel],
            "series": {k: [dict(p) for p in pts] for k, pts in self.series.items()},
            "rankings": {k: [e.to_dict() for e in v] for k, v in self.rankings.items()},
            "quality": self.quality.to_dict(),
            "meta": dict(self.meta),
        }


# ---------- Reducers ----------

def _is_null(v: Any) -> bool:
    return v is None or (isinstance(v, float) and math.isnan(v)) or v is pd.NA or v is pd.NaT

def _finite_numbers(values: Iterable[Any]) -> List[float]:
    # non-finite and non-numeric cells are skipped, not fatal
    return [n for n in (to_number(v) for v in values) if n is not None]

def reduce_values(values: Sequence[Any], agg: str) -> Tuple[float, int, int]:
    """Apply one reducer to raw cells. Returns (value, non_null_count, truthy_count)."""
    raw = list(values)
    non_null = [v for v in raw if not _is_null(v)]
    truthy = truthy_count(non_null)
    if agg == "count":
        value = float(len(raw))
    elif agg == "count_distinct":
        value = float(pd.Series(non_null, dtype=object).map(str).nunique())
    elif agg == "truthy_count":
        value = float(truthy)
    else:
        nums = _finite_numbers(non_null)
        if agg == "avg":
            value = (sum(nums) / len(nums)) if nums else 0.0
        else:
            value = float(sum(nums))
    return value, len(non_null), truthy


# ---------- Time helpers ----------

def _coerce_range(date_range: Any, tz: str = "UTC") -> Tuple[Optional[datetime], Optional[datetime]]:
    if date_range is None:
        return None, None
    if isinstance(date_range, Mapping):
        start, end = date_range.get("start"), date_range.get("end")
    else:
        start, end = date_range
    lo, hi = parse_date(start, tz), parse_date(end, tz)
    return (start_of_day(lo) if lo else None), (end_of_day(hi) if hi else None)

def determine_time_grain(start: datetime | date, end: datetime | date, max_points: int = DEFAULT_MAX_POINTS) -> str:
    """Finest grain that keeps a series under `max_points` buckets."""
    days = math.ceil((end - start).total_seconds() / 86400)
    if days <= max_points:
        return "day"
    if days / 7 <= max_points:
        return "week"
    return "month"

def _period_starts(first: datetime, last: datetime, grain: str) -> List[str]:
    if grain == "week":
        a = first - timedelta(days=first.weekday())
        b = last - timedelta(days=last.weekday())
        freq = "W-MON"
    elif grain == "month":
        a, b, freq = first.replace(day=1), last.replace(day=1), "MS"
    else:
        a, b, freq = first, last, "D"
    return [date_key(ts) for ts in pd.date_range(start_of_day(a), start_of_day(b), freq=freq)]


# ---------- Engine ----------

def _agg_cfg(cfg: Any) -> AggregationCfg:
    return getattr(cfg, "aggregation", None) or AggregationCfg()

def compute_aggregations(
    rows: Iterable[Mapping[str, Any]],
    plan: AggregationPlan | Mapping[str, Any] | None,
    date_range: Any = None,
    *,
    columns: Optional[Sequence[str]] = None,
    cfg: Any = None,
) -> AggregationResult:
    """
    Compute KPIs, funnel, time series and rankings for one row set.

    Every declared column is re-resolved against the current columns. An
    unresolvable reference produces a zero or empty value and a
    COLUMN_NOT_FOUND warning; data problems never raise. `date_range` is a
    (start, end) pair or a {"start", "end"} mapping, end inclusive to the end
    of its day. The audit travels in `result.quality`.
    """
    log = logger_from_cfg("aggregate", cfg)
    acfg = _agg_cfg(cfg)
    tz = cfg_timezone(cfg)
    if not isinstance(plan, AggregationPlan):
        plan = AggregationPlan.model_validate(plan or {})

    rows = list(rows)
    quality = DataQualityReport(rows_received=len(rows))
    result = AggregationResult(quality=quality)

    if len(rows) > acfg.max_rows:
        quality.warn(
            DATA_LIMITED,
            f"Only the first {acfg.max_rows} of {len(rows)} rows were aggregated",
            value=float(len(rows)),
            details={"max_rows": acfg.max_rows},
        )
        rows = rows[: acfg.max_rows]
    quality.rows_used = len(rows)

    cols = [str(c) for c in columns] if columns is not None else list(
        unique_stable(str(k) for r in rows for k in r.keys())
    )
    frame = pd.DataFrame([dict(r) for r in rows], columns=cols, dtype=object) if rows else pd.DataFrame(columns=cols, dtype=object)

    reported: Dict[str, ResolutionRecord] = {}

    def _resolve(declared: str, usage: str) -> ResolutionRecord:
        rec = resolve_column(declared, cols)
        if not rec.ok and cols and declared not in reported:
            reported[declared] = rec
            column_not_found(quality, rec, usage)
            log.warning(
                "column_unresolved",
                extra={"declared": declared, "usage": usage, "attempted": list(rec.attempted)},
            )
        return rec

    if not rows:
        quality.warn(NO_DATA, "No rows to aggregate")

    # 1) time column and range filter
    time_col: Optional[str] = _resolve(plan.time_column, "time").resolved if plan.time_column else None
    lo, hi = _coerce_range(date_range, tz)
    dates = pd.Series([None] * len(frame), index=frame.index, dtype=object)
    if time_col is not None and len(frame):
        parsed = pd.Series([parse_date(v, tz) for v in frame[time_col].tolist()], index=frame.index, dtype=object)
        in_range = None
        if lo is not None or hi is not None:
            in_range = pd.Series(
                [d is not None and (lo is None or d >= lo) and (hi is None or d <= hi) for d in parsed],
                index=frame.index,
                dtype=bool,
            )
        audit_time(quality, time_col, parsed, in_range, acfg.low_time_parse_rate)
        if in_range is not None:
            frame, parsed = frame[in_range], parsed[in_range]
        dates = parsed
    quality.rows_in_range = len(frame)

    # 2) KPIs
    for k in plan.kpis:
        if k.column == ROW_COUNT_COLUMN:
            n = len(frame)
            result.kpis[k.key] = KpiValue(k.key, k.column, ROW_COUNT_COLUMN, "row_count", k.agg, float(n), n, 0, k.label)
            continue
        rec = _resolve(k.column, "kpi")
        if not rec.ok:
            result.kpis[k.key] = KpiValue(k.key, k.column, None, None, k.agg, 0.0, 0, 0, k.label)
            continue
        value, nn, tc = reduce_values(frame[rec.resolved].tolist(), k.agg)
        result.kpis[k.key] = KpiValue(k.key, k.column, rec.resolved, rec.strategy, k.agg, value, nn, tc, k.label)

    # 3) funnel
    prev: Optional[int] = None
    stage_cols: List[str] = []
    for st in plan.funnel:
        rec = _resolve(st.column, "funnel_stage")
        count = int(truthy_mask(frame[rec.resolved]).sum()) if rec.ok and len(frame) else 0
        if rec.ok:
            stage_cols.append(rec.resolved)
        rate = (count / prev) if prev else None
        result.funnel.append(FunnelStep(st.column, rec.resolved, st.label or st.column, count, rate))
        prev = count

    if len(frame):
        truthy_kpi_cols = [
            result.kpis[k.key].resolved for k in plan.kpis
            if k.agg == "truthy_count" and result.kpis[k.key].resolved in frame.columns
        ]
        audited = list(unique_stable([*stage_cols, *truthy_kpi_cols]))
        audit_stages(quality, frame, audited, acfg.top_values)
        audit_null_rates(quality, frame, skip=audited, threshold=acfg.high_null_rate)
        audit_funnel(quality, [(s.stage, s.count) for s in result.funnel if s.column], acfg.funnel_inversion_tolerance)

    # 4) time series
    present = [d for d in dates.tolist() if d is not None]
    grain = plan.grain
    if grain == "auto":
        grain = determine_time_grain(min(present), max(present)) if present else "day"
    for chart in plan.charts:
        if time_col is None or not present:
            result.series[chart.id] = []
            continue
        keys = pd.Series([period_key(d, grain) if d is not None else None for d in dates], index=frame.index, dtype=object)
        buckets = _period_starts(min(present), max(present), grain)
        points: Dict[str, Dict[str, Any]] = {b: {"date": b} for b in buckets}
        for s in chart.series:
            agg = s.agg or plan.kpi_agg_for(s.column) or "sum"
            rec = _resolve(s.column, "series")
            by_period: Dict[str, float] = {}
            if rec.ok:
                sub = pd.DataFrame({"period": keys, "v": frame[rec.resolved]}).dropna(subset=["period"])
                for period, g in sub.groupby("period", sort=True):
                    by_period[str(period)] = reduce_values(g["v"].tolist(), agg)[0]
            for b in buckets:
                points[b][s.column] = by_period.get(b, 0.0)
        result.series[chart.id] = [points[b] for b in buckets]

    # 5) rankings
    for r in plan.rankings:
        dim = _resolve(r.dimension, "ranking").resolved
        metric = _resolve(r.metric, "ranking").resolved if r.metric else None
        if dim is None or (r.metric and metric is None) or not len(frame):
            result.rankings[r.id] = []
            continue
        label = acfg.null_dimension_label
        labels = frame[dim].map(lambda v: label if _is_null(v) or not str(v).strip() else str(v))
        agg = r.agg if metric else "count"
        values = frame[metric] if metric else frame[dim]
        grouped = pd.DataFrame({"dim": labels, "v": values}).groupby("dim", sort=False)["v"]
        reduced = pd.Series({k: reduce_values(g.tolist(), agg)[0] for k, g in grouped}, dtype=float)
        # mergesort keeps encounter order among ties
        top = reduced.sort_values(ascending=False, kind="mergesort").head(r.limit or acfg.default_ranking_limit)
        result.rankings[r.id] = [RankingEntry(str(k), float(v)) for k, v in top.items()]

    result.meta = {
        "rows_received": quality.rows_received,
        "rows_used": quality.rows_used,
        "rows_in_range": quality.rows_in_range,
        "data_limited": quality.rows_received > quality.rows_used,
        "grain": grain,
        "time_column": time_col,
        "date_range": {
            "start": date_key(min(present)) if present else None,
            "end": date_key(max(present)) if present else None,
        },
    }
    log.info(
        "aggregation_done",
        extra={
            "rows_used": quality.rows_used,
            "rows_in_range": quality.rows_in_range,
            "kpis": len(result.kpis),
            "warnings": quality.codes(),
        },
    )
    return result
