from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import math
import pandas as pd

from ..capabilities.detector import detect_capabilities
from ..capabilities.roles import Role, name_roles
from ..config_model.model import InsightsCfg
from ..layout.compiler import format_column_label
from ..parsing.values import to_number, truthy_count
from ..utils.fp import unique_stable
from ..utils.log import logger_from_cfg
from ..utils.time import cfg_timezone, date_key, now_in_tz, parse_date
from .stats import as_float_series, missing_dates, outlier_mask_sigma, percent_change

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

# Roles that never describe funnel volume
_NON_FUNNEL_ROLES = (Role.ID, Role.TIME, Role.CURRENCY, Role.PERCENT)


# ---------- Records ----------

@dataclass(frozen=True)
class Insight:
    id: str
    type: str  # problem | opportunity | action | anomaly | bottleneck
    priority: str  # critical | high | medium | low
    title: str
    description: str
    metric_key: Optional[str] = None
    current_value: Optional[float] = None
    comparison_value: Optional[float] = None
    change_percent: Optional[float] = None
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "metric_key": self.metric_key,
            "current_value": self.current_value,
            "comparison_value": self.comparison_value,
            "change_percent": self.change_percent,
            "suggested_action": self.suggested_action,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class DataQualityIssue:
    type: str  # missing_dates | stale_data | zero_cost_with_leads
    severity: str  # info | warning | critical
    title: str
    description: str
    affected_dates: List[str] = field(default_factory=list)
    affected_columns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "title": self.title,
            "description": self.description,
            "affected_dates": list(self.affected_dates),
            "affected_columns": list(self.affected_columns),
        }


@dataclass(frozen=True)
class FunnelStage:
    key: str
    label: str
    value: float
    conversion_rate: Optional[float] = None  # percent of the previous stage
    dropoff: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "value": self.value,
            "conversion_rate": self.conversion_rate,
            "dropoff": self.dropoff,
        }


@dataclass
class InsightsReport:
    insights: List[Insight] = field(default_factory=list)
    data_quality: List[DataQualityIssue] = field(default_factory=list)
    health_score: float = 0.0
    funnel_analysis: List[FunnelStage] = field(default_factory=list)
    funnel_source: Optional[str] = None  # stage_flags | volume

    def to_dict(self) -> Dict[str, Any]:
        return {
            "insights": [i.to_dict() for i in self.insights],
            "data_quality": [d.to_dict() for d in self.data_quality],
            "health_score": self.health_score,
            "funnel_analysis": [s.to_dict() for s in self.funnel_analysis],
            "funnel_source": self.funnel_source,
        }


# ---------- Helpers ----------

def _icfg(cfg: Any) -> InsightsCfg:
    return getattr(cfg, "insights", None) or InsightsCfg()

def _has_keyword(column: str, keywords: Sequence[str]) -> bool:
    c = column.lower()
    return any(k in c for k in keywords)

def _frame(rows: Sequence[Mapping[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame([dict(r) for r in rows], columns=list(columns), dtype=object)

def _is_null(v: Any) -> bool:
    return v is None or (isinstance(v, float) and math.isnan(v))

def _numeric_columns(frame: pd.DataFrame, exclude: Iterable[str]) -> List[str]:
    """Columns whose every non-null cell parses as a number (at least one cell)."""
    skip = set(exclude)
    out = []
    for col in frame.columns:
        if col in skip:
            continue
        cells = [v for v in frame[col].tolist() if not _is_null(v) and v != ""]
        if cells and all(to_number(v) is not None for v in cells):
            out.append(col)
    return out

def _column_sum(frame: pd.DataFrame, column: str) -> float:
    if column not in frame.columns:
        return 0.0
    return float(as_float_series(frame[column].tolist()).sum())

def _display_date(value: Any, tz: str = "UTC") -> str:
    d = parse_date(value, tz)
    return date_key(d) if d else str(value)


# ---------- Detectors ----------

def _missing_dates_issue(dates: List[datetime], icfg: InsightsCfg) -> Optional[Tuple[DataQualityIssue, int]]:
    missing = missing_dates(dates)
    if not missing:
        return None
    return DataQualityIssue(
        type="missing_dates",
        severity="critical" if len(missing) > icfg.missing_dates_critical else "warning",
        title="Missing dates detected",
        description=f"{len(missing)} day(s) without data in the analysed period.",
        affected_dates=missing[:10],
    ), len(missing)

def _stale_issue(dates: List[datetime], now: datetime, icfg: InsightsCfg) -> Optional[Tuple[DataQualityIssue, int]]:
    if not dates:
        return None
    latest = max(dates)
    days = math.floor((now - latest).total_seconds() / 86400)
    if days <= icfg.stale_warning_days:
        return None
    return DataQualityIssue(
        type="stale_data",
        severity="critical" if days > icfg.stale_critical_days else "warning",
        title="Stale data",
        description=f"Latest record is {days} days old.",
        affected_dates=[date_key(latest)],
    ), days

def _zero_cost_issue(frame: pd.DataFrame, date_column: str, icfg: InsightsCfg, tz: str = "UTC") -> Optional[DataQualityIssue]:
    cost = [c for c in frame.columns if _has_keyword(c, icfg.cost_keywords)]
    volume = [c for c in frame.columns if _has_keyword(c, icfg.volume_keywords) and c not in cost]
    if not cost or not volume:
        return None
    c, v = cost[0], volume[0]
    costs = as_float_series(frame[c].tolist())
    leads = as_float_series(frame[v].tolist())
    hits = [i for i in range(len(frame)) if costs.iloc[i] == 0 and leads.iloc[i] > 0]
    if not hits:
        return None
    dates = (
        [_display_date(frame[date_column].iloc[i], tz) for i in hits[:5]]
        if date_column in frame.columns else []
    )
    return DataQualityIssue(
        type="zero_cost_with_leads",
        severity="warning",
        title="Leads without recorded cost",
        description=f"{len(hits)} row(s) with {v} but zero {c}.",
        affected_dates=dates,
        affected_columns=[c, v],
    )

def identify_funnel_columns(frame: pd.DataFrame, date_column: str, cfg: Any = None) -> tuple[List[str], Optional[str], Dict[str, float]]:
    """
    Choose the columns to read as funnel stages.

    Detected stage flags (canonical order, truthy counts) when there are at
    least two; otherwise all-numeric columns ranked by total volume, with
    id, time, currency and percent columns left out.
    """
    columns = list(frame.columns)
    sample = frame.head(100).to_dict(orient="records")
    caps = detect_capabilities(columns, sample, row_count=len(frame), cfg=cfg)
    if caps.stage_flags_count >= 2:
        totals = {c: float(truthy_count(frame[c].tolist())) for c in caps.stage_flags}
        return list(caps.stage_flags), "stage_flags", totals

    # surplus time/id columns are profiled as text, so their names are checked too
    exclude = [date_column, *(
        c for c in columns
        if caps.role_of(c) in _NON_FUNNEL_ROLES or {Role.ID, Role.TIME} & set(name_roles(c))
    )]
    totals = {c: _column_sum(frame, c) for c in _numeric_columns(frame, exclude)}
    ranked = pd.Series(totals, dtype=float)
    ranked = ranked[ranked > 0].sort_values(ascending=False, kind="mergesort")
    return [str(c) for c in ranked.index], ("volume" if len(ranked) else None), totals

def analyze_funnel(columns: Sequence[str], totals: Mapping[str, float]) -> List[FunnelStage]:
    if len(columns) < 2:
        return []
    stages: List[FunnelStage] = []
    for i, key in enumerate(columns):
        value = float(totals.get(key, 0.0))
        rate = drop = None
        if i > 0 and stages[i - 1].value > 0:
            rate = value / stages[i - 1].value * 100.0
            drop = 100.0 - rate
        stages.append(FunnelStage(key, format_column_label(key), value, rate, drop))
    return stages

def _bottleneck(stages: List[FunnelStage], icfg: InsightsCfg) -> Optional[Insight]:
    with_drop = [s for s in stages if s.dropoff is not None]
    if not with_drop:
        return None
    # first stage wins ties
    worst = max(with_drop, key=lambda s: s.dropoff)
    if worst.dropoff <= icfg.bottleneck_dropoff:
        return None
    prev = stages[stages.index(worst) - 1]
    return Insight(
        id=f"bottleneck-{worst.key}",
        type="bottleneck",
        priority="critical" if worst.dropoff > icfg.bottleneck_critical else "high",
        title=f"Funnel bottleneck: {worst.label}",
        description=(
            f"Conversion of only {worst.conversion_rate:.1f}%. "
            f"{worst.dropoff:.1f}% are lost at this stage."
        ),
        metric_key=worst.key,
        current_value=worst.conversion_rate,
        suggested_action=f'Investigate why {worst.dropoff:.0f}% do not move from "{prev.label}" to "{worst.label}".',
        details={"previous_stage": prev.key, "dropoff": worst.dropoff},
    )

def _period_over_period(
    current: pd.DataFrame,
    previous: pd.DataFrame,
    numeric: Sequence[str],
    icfg: InsightsCfg,
) -> List[Insight]:
    out: List[Insight] = []
    for key in numeric:
        cur, prev = _column_sum(current, key), _column_sum(previous, key)
        change = percent_change(cur, prev)
        magnitude = abs(change)
        if magnitude <= icfg.opportunity_change:
            continue
        lower_better = _has_keyword(key, icfg.lower_is_better_keywords)
        favourable = change < 0 if lower_better else change > 0
        label = format_column_label(key)
        if favourable:
            out.append(Insight(
                id=f"opportunity-{key}",
                type="opportunity",
                priority="high" if magnitude > icfg.opportunity_high else "medium",
                title=f"{label} {'fell' if lower_better else 'grew'} {magnitude:.1f}%",
                description=f"Compared to the previous period: {prev:,.2f} -> {cur:,.2f}.",
                metric_key=key,
                current_value=cur,
                comparison_value=prev,
                change_percent=change,
                suggested_action="Find what is working and scale it.",
            ))
        elif magnitude > icfg.problem_change:
            out.append(Insight(
                id=f"problem-{key}",
                type="problem",
                priority="critical" if magnitude > icfg.problem_critical else "high",
                title=f"Alert: {label} {'rose' if lower_better else 'dropped'} {magnitude:.1f}%",
                description=f"Significant change against the previous period: {prev:,.2f} -> {cur:,.2f}.",
                metric_key=key,
                current_value=cur,
                comparison_value=prev,
                change_percent=change,
                suggested_action="Investigate the cause and take corrective action.",
            ))
    return out

def _outliers(frame: pd.DataFrame, numeric: Sequence[str], date_column: str, icfg: InsightsCfg, tz: str = "UTC") -> List[Insight]:
    out: List[Insight] = []
    for key in list(numeric)[: icfg.outlier_max_columns]:
        mask = outlier_mask_sigma(as_float_series(frame[key].tolist()), icfg.outlier_sigma)
        hits = [i for i, flagged in enumerate(mask.tolist()) if flagged]
        # many outliers mean a level shift, which period-over-period covers
        if not hits or len(hits) > icfg.outlier_max_days:
            continue
        dates = (
            [_display_date(frame[date_column].iloc[i], tz) for i in hits]
            if date_column in frame.columns else []
        )
        out.append(Insight(
            id=f"anomaly-{key}",
            type="anomaly",
            priority="medium",
            title=f"Anomaly detected in {format_column_label(key)}",
            description=f"{len(hits)} day(s) with values outside the usual pattern.",
            metric_key=key,
            suggested_action="Check for a data error or an exceptional event.",
            details={"dates": dates},
        ))
    return out

def _action(insights: List[Insight]) -> Optional[Insight]:
    problems = [i for i in insights if i.type in ("problem", "bottleneck")]
    if not problems:
        return None
    top = sorted(problems, key=lambda i: PRIORITY_ORDER[i.priority])[0]
    return Insight(
        id="action-main",
        type="action",
        priority=top.priority,
        title="Recommended priority action",
        description=top.suggested_action or f'Analyse the cause of "{top.title}" and fix it.',
        metric_key=top.metric_key,
        details={"related_insight": top.id},
    )


# ---------- Public API ----------

def generate_insights(
    current_rows: Sequence[Mapping[str, Any]],
    previous_rows: Optional[Sequence[Mapping[str, Any]]] = None,
    date_column: str = "dia",
    *,
    now: Optional[datetime] = None,
    cfg: Any = None,
) -> InsightsReport:
    """
    Problems, opportunities, anomalies and actions for one period of rows.

    Pure and deterministic for a given `now`: inputs are never mutated and
    identical calls return identical reports. Empty input scores 0.
    """
    log = logger_from_cfg("insights", cfg)
    icfg = _icfg(cfg)
    current = list(current_rows or [])
    if not current:
        return InsightsReport()

    tz = cfg_timezone(cfg)
    if now is None:
        now = now_in_tz(tz)
    columns = list(unique_stable(str(k) for r in current for k in r.keys()))
    frame = _frame(current, columns)

    report = InsightsReport()
    score = 100.0

    # 1) data quality
    dates: List[datetime] = []
    if date_column in frame.columns:
        dates = [d for d in (parse_date(v, tz) for v in frame[date_column].tolist()) if d is not None]

    found = _missing_dates_issue(dates, icfg)
    if found:
        issue, n = found
        report.data_quality.append(issue)
        score -= min(icfg.missing_dates_penalty_cap, n * icfg.missing_dates_penalty_per_day)

    found = _stale_issue(dates, now, icfg)
    if found:
        issue, days = found
        report.data_quality.append(issue)
        score -= min(icfg.stale_penalty_cap, days * icfg.stale_penalty_per_day)

    zero_cost = _zero_cost_issue(frame, date_column, icfg, tz)
    if zero_cost:
        report.data_quality.append(zero_cost)
        score -= icfg.zero_cost_penalty

    # 2) funnel
    funnel_cols, report.funnel_source, totals = identify_funnel_columns(frame, date_column, cfg)
    report.funnel_analysis = analyze_funnel(funnel_cols, totals)
    insights: List[Insight] = []
    bottleneck = _bottleneck(report.funnel_analysis, icfg)
    if bottleneck:
        insights.append(bottleneck)

    # 3) comparisons and outliers
    skip = [date_column, *(c for c in columns if {Role.ID, Role.TIME} & set(name_roles(c)))]
    numeric = _numeric_columns(frame, skip)
    previous = list(previous_rows or [])
    if previous:
        prev_cols = list(unique_stable(str(k) for r in previous for k in r.keys()))
        insights.extend(_period_over_period(frame, _frame(previous, prev_cols), numeric, icfg))
    insights.extend(_outliers(frame, numeric, date_column, icfg, tz))

    # 4) derived action
    action = _action(insights)
    if action:
        insights.append(action)

    # stable: equal priorities keep detector order
    report.insights = sorted(insights, key=lambda i: PRIORITY_ORDER[i.priority])
    report.health_score = max(0.0, min(100.0, score))
    log.info(
        "insights_generated",
        extra={
            "insights": len(report.insights),
            "issues": [d.type for d in report.data_quality],
            "health_score": report.health_score,
            "funnel_source": report.funnel_source,
        },
    )
    return report
