from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import pandas as pd

from ..parsing.values import is_truthy
from ..resolve.columns import ResolutionRecord

# Warning codes
NO_DATA = "NO_DATA"
LOW_TIME_PARSE_RATE = "LOW_TIME_PARSE_RATE"
NO_ROWS_IN_RANGE = "NO_ROWS_IN_RANGE"
ZERO_TRUTHY = "ZERO_TRUTHY"
ALL_TRUTHY = "ALL_TRUTHY"
COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"
DATA_LIMITED = "DATA_LIMITED"
HIGH_NULL_RATE = "HIGH_NULL_RATE"
FUNNEL_INVERSION = "FUNNEL_INVERSION"


@dataclass(frozen=True)
class QualityWarning:
    code: str
    severity: str  # info | warning
    message: str
    column: Optional[str] = None
    value: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "column": self.column,
            "value": self.value,
            "details": self.details,
        }


@dataclass(frozen=True)
class StageColumnStats:
    column: str
    non_null_count: int
    truthy_count: int
    truthy_rate: float
    null_rate: float
    top_values: List[Tuple[str, int]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column": self.column,
            "non_null_count": self.non_null_count,
            "truthy_count": self.truthy_count,
            "truthy_rate": self.truthy_rate,
            "null_rate": self.null_rate,
            "top_values": [[v, n] for v, n in self.top_values],
        }


@dataclass
class DataQualityReport:
    rows_received: int = 0
    rows_used: int = 0
    rows_in_range: int = 0
    time_column: Optional[str] = None
    time_parse_rate: Optional[float] = None
    time_in_range_rate: Optional[float] = None
    stage_columns: Dict[str, StageColumnStats] = field(default_factory=dict)
    null_rates: Dict[str, float] = field(default_factory=dict)
    resolutions: List[ResolutionRecord] = field(default_factory=list)
    warnings: List[QualityWarning] = field(default_factory=list)
    degraded_mode: bool = False

    def codes(self) -> List[str]:
        return [w.code for w in self.warnings]

    def warn(self, code: str, message: str, *, severity: str = "warning", **kw: Any) -> QualityWarning:
        w = QualityWarning(code=code, severity=severity, message=message, **kw)
        self.warnings.append(w)
        return w

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows_received": self.rows_received,
            "rows_used": self.rows_used,
            "rows_in_range": self.rows_in_range,
            "time_column": self.time_column,
            "time_parse_rate": self.time_parse_rate,
            "time_in_range_rate": self.time_in_range_rate,
            "stage_columns": {k: v.to_dict() for k, v in self.stage_columns.items()},
            "null_rates": dict(self.null_rates),
            "resolutions": [r.to_dict() for r in self.resolutions],
            "warnings": [w.to_dict() for w in self.warnings],
            "degraded_mode": self.degraded_mode,
        }


def _is_null(v: Any) -> bool:
    return v is None or (isinstance(v, float) and v != v)

def stage_column_stats(column: str, values: pd.Series, top_n: int = 5) -> StageColumnStats:
    """Non-null count, truthy count/rate and the most frequent raw values of one stage column."""
    total = int(len(values))
    non_null = [v for v in values.tolist() if not _is_null(v)]
    truthy = sum(1 for v in non_null if is_truthy(v))
    # Counter keeps first-seen order among equal counts
    top = Counter(str(v) for v in non_null).most_common(top_n)
    return StageColumnStats(
        column=column,
        non_null_count=len(non_null),
        truthy_count=truthy,
        truthy_rate=(truthy / len(non_null)) if non_null else 0.0,
        null_rate=((total - len(non_null)) / total) if total else 0.0,
        top_values=[(v, int(n)) for v, n in top],
    )

def audit_time(
    report: DataQualityReport,
    column: str,
    parsed: pd.Series,
    in_range: Optional[pd.Series],
    low_rate: float = 0.7,
) -> None:
    total = int(len(parsed))
    n_parsed = int(parsed.notna().sum())
    report.time_column = column
    report.time_parse_rate = (n_parsed / total) if total else 0.0
    if in_range is not None:
        n_in = int(in_range.sum())
        report.time_in_range_rate = (n_in / n_parsed) if n_parsed else 0.0
        if n_parsed > 0 and n_in == 0:
            report.warn(
                NO_ROWS_IN_RANGE,
                f"No rows fall in the requested range although {n_parsed} dates parsed",
                column=column, value=0.0,
            )
    if total and report.time_parse_rate < low_rate:
        report.warn(
            LOW_TIME_PARSE_RATE,
            f"Time column {column!r} parses for {round(report.time_parse_rate * 100)}% of rows",
            column=column, value=report.time_parse_rate,
        )
        report.degraded_mode = True

def audit_stages(report: DataQualityReport, frame: pd.DataFrame, columns: Sequence[str], top_n: int = 5) -> None:
    for col in columns:
        stats = stage_column_stats(col, frame[col], top_n)
        report.stage_columns[col] = stats
        if stats.non_null_count == 0 or stats.truthy_count == 0:
            report.warn(
                ZERO_TRUTHY,
                f"Stage column {col!r} never evaluates truthy; top values: "
                + ", ".join(v for v, _ in stats.top_values),
                column=col, value=0.0, details={"top_values": stats.top_values},
            )
        elif stats.truthy_rate == 1.0:
            report.warn(ALL_TRUTHY, f"Stage column {col!r} is truthy on every row",
                        severity="info", column=col, value=1.0)

def audit_null_rates(
    report: DataQualityReport,
    frame: pd.DataFrame,
    skip: Sequence[str] = (),
    threshold: float = 0.5,
) -> None:
    total = len(frame)
    if not total:
        return
    for col in frame.columns:
        rate = float(frame[col].map(_is_null).mean())
        report.null_rates[str(col)] = rate
        if rate > threshold and col not in skip:
            report.warn(HIGH_NULL_RATE, f"Column {col!r} is {round(rate * 100)}% null",
                        severity="info", column=str(col), value=rate)

def audit_funnel(report: DataQualityReport, counts: Sequence[Tuple[str, int]], tolerance: float = 0.10) -> None:
    """A later stage exceeding its predecessor by more than `tolerance` suggests wrong semantics."""
    for (prev_name, prev), (name, cur) in zip(counts, counts[1:]):
        if cur > prev * (1.0 + tolerance):
            report.warn(
                FUNNEL_INVERSION,
                f"Stage {name!r} ({cur}) exceeds previous stage {prev_name!r} ({prev})",
                column=name, value=float(cur), details={"previous": prev_name, "previous_count": prev},
            )

def column_not_found(report: DataQualityReport, rec: ResolutionRecord, usage: str) -> None:
    report.resolutions.append(rec)
    tried = ", ".join(rec.attempted) or "-"
    extra = f"; candidates: {', '.join(rec.candidates)}" if rec.candidates else ""
    report.warn(
        COLUMN_NOT_FOUND,
        f"{usage}: column {rec.declared!r} not found (tried {tried}){extra}",
        column=rec.declared,
        details={"declared": rec.declared, "usage": usage, "attempted": list(rec.attempted), "candidates": list(rec.candidates)},
    )
