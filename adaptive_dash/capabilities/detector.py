from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import pandas as pd

from ..utils.fp import unique_stable
from ..utils.ids import schema_fingerprint
from ..utils.log import logger_from_cfg
from .model import DatasetCapabilities, SchemaDrift
from .roles import Role, classify_column, sort_stage_flags


def _detector_cfg(cfg: Any) -> Any:
    return getattr(cfg, "detector", None)

def _sample_frame(columns: Sequence[str], sample_rows: Sequence[Mapping[str, Any]], limit: int) -> pd.DataFrame:
    rows = list(sample_rows[:limit]) if sample_rows else []
    # object dtype keeps raw cell values ("1", True, 0.0) distinguishable
    data = {c: [r.get(c) if isinstance(r, Mapping) else None for r in rows] for c in columns}
    return pd.DataFrame(data, columns=list(columns), dtype=object)

def detect_capabilities(
    columns: Sequence[str],
    sample_rows: Sequence[Mapping[str, Any]] = (),
    *,
    row_count: Optional[int] = None,
    cfg: Any = None,
) -> DatasetCapabilities:
    """
    Infer the capability profile of a dataset from its column names and a row sample.

    Pure function: the same columns and sample always produce the same profile.
    Every column lands in exactly one of time/id/stage flags/dimensions/metrics,
    or in `unresolved`.
    """
    dcfg = _detector_cfg(cfg)
    limit = int(getattr(dcfg, "sample_rows", 100))
    cols = [str(c) for c in unique_stable(columns or [])]
    sample = list(sample_rows or [])
    n_rows = int(row_count) if row_count is not None else len(sample)

    if not cols:
        return DatasetCapabilities(row_count=n_rows, schema_hash=schema_fingerprint([]))

    frame = _sample_frame(cols, sample, limit)

    time_column: Optional[str] = None
    id_column: Optional[str] = None
    stages: List[str] = []
    dimensions: List[str] = []
    metrics: List[str] = []
    currency: List[str] = []
    percent: List[str] = []
    unresolved: List[str] = []
    roles: Dict[str, Role] = {}

    for col in cols:
        role = classify_column(col, frame[col], dcfg)
        # only the first time and id column are bound; later ones count as text
        if (role is Role.TIME and time_column is not None) or (role is Role.ID and id_column is not None):
            role = Role.TEXT
        roles[col] = role
        if role is Role.TIME:
            time_column = col
        elif role is Role.ID:
            id_column = col
        elif role is Role.STAGE_FLAG:
            stages.append(col)
        elif role is Role.DIMENSION:
            dimensions.append(col)
        elif role in (Role.CURRENCY, Role.PERCENT, Role.METRIC):
            metrics.append(col)
            if role is Role.CURRENCY:
                currency.append(col)
            elif role is Role.PERCENT:
                percent.append(col)
        else:
            unresolved.append(col)

    caps = DatasetCapabilities(
        has_time=time_column is not None,
        time_column=time_column,
        stage_flags=tuple(sort_stage_flags(stages)),
        dimensions=tuple(dimensions),
        metrics=tuple(metrics),
        currency_metrics=tuple(currency),
        percent_metrics=tuple(percent),
        id_column=id_column,
        row_count=n_rows,
        schema_hash=schema_fingerprint(cols),
        columns=tuple(cols),
        roles=roles,
        unresolved=tuple(unresolved),
    )

    log = logger_from_cfg("detector", cfg)
    log.debug(
        "capabilities_detected",
        extra={
            "schema_hash": caps.schema_hash,
            "columns": len(cols),
            "time_column": time_column,
            "stage_flags": caps.stage_flags_count,
            "dimensions": caps.dimensions_count,
            "metrics": caps.metrics_count,
            "unresolved": len(unresolved),
        },
    )
    return caps

def has_capabilities_changed(
    current: DatasetCapabilities,
    previous_hash: str,
    previous_columns: Sequence[str],
) -> SchemaDrift:
    """Compare a fresh profile with the fingerprint a layout was bound to."""
    prev = set(previous_columns)
    cur = set(current.columns)
    return SchemaDrift(
        changed=current.schema_hash != previous_hash,
        added_columns=[c for c in current.columns if c not in prev],
        removed_columns=[c for c in previous_columns if c not in cur],
    )

def capabilities_to_column_mappings(caps: DatasetCapabilities) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = []
    if caps.time_column:
        out.append((caps.time_column, "time"))
    if caps.id_column:
        out.append((caps.id_column, "id_primary"))
    out.extend((c, "funnel_stage") for c in caps.stage_flags)
    out.extend((c, "dimension") for c in caps.dimensions)
    out.extend((c, "metric_currency") for c in caps.currency_metrics)
    out.extend(
        (c, "metric_percent" if c in caps.percent_metrics else "metric_numeric")
        for c in caps.metrics
        if c not in caps.currency_metrics
    )
    return out
