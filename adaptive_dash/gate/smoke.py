from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional
import asyncio
import math
import numbers

from ..aggregate.quality import COLUMN_NOT_FOUND
from ..config_model.model import GateCfg
from ..layout.model import CompiledLayout
from ..utils.ids import make_trace_id
from ..utils.log import logger_from_cfg
from ..utils.time import cfg_timezone, date_key, now_in_tz
from .datapath import DataPath, DateWindow

SCHEMA_DRIFT = "SCHEMA_DRIFT"
# unresolved references in these places leave the dashboard showing zeros
BLOCKING_USAGES = frozenset({"kpi", "funnel_stage"})


@dataclass
class SmokeTestResult:
    passed: bool = False
    aggregate_ok: bool = False
    details_ok: bool = False
    kpis_count: int = 0
    rows_count: int = 0
    has_invalid_numbers: bool = False
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    trace_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "aggregate_ok": self.aggregate_ok,
            "details_ok": self.details_ok,
            "kpis_count": self.kpis_count,
            "rows_count": self.rows_count,
            "has_invalid_numbers": self.has_invalid_numbers,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "trace_id": self.trace_id,
        }


@dataclass(frozen=True)
class RenderTestResult:
    passed: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"passed": self.passed, "error": self.error}


@dataclass
class GateCheckResult:
    passed: bool
    smoke_test: SmokeTestResult
    render_test: RenderTestResult
    block_reasons: List[str] = field(default_factory=list)

    @property
    def can_proceed(self) -> bool:
        return self.passed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "smoke_test": self.smoke_test.to_dict(),
            "render_test": self.render_test.to_dict(),
            "block_reasons": list(self.block_reasons),
            "can_proceed": self.can_proceed,
        }


def _gate_cfg(cfg: Any) -> GateCfg:
    return getattr(cfg, "gate", None) or GateCfg()

def _is_invalid_number(v: Any) -> bool:
    return isinstance(v, numbers.Real) and not isinstance(v, bool) and not math.isfinite(v)

def has_invalid_numbers(rows: List[Mapping[str, Any]]) -> bool:
    return any(_is_invalid_number(v) for r in rows for v in r.values())

def lookback_window(today: date, days: int) -> DateWindow:
    return date_key(today - timedelta(days=days)), date_key(today)


# ---------- Render shape ----------

def validate_render_shape(layout: CompiledLayout | Mapping[str, Any] | None) -> RenderTestResult:
    """Structural check that a layout can be drawn: mandatory tabs and well-formed widgets."""
    if layout is None:
        return RenderTestResult(False, "Layout is not defined")
    data = layout.to_dict() if isinstance(layout, CompiledLayout) else dict(layout)
    tabs = data.get("tabs") or []
    if not tabs:
        return RenderTestResult(False, "Layout has no tabs")
    ids = {t.get("id") for t in tabs}
    if "overview" not in ids:
        return RenderTestResult(False, "Mandatory Overview tab not found")
    if "table" not in ids:
        return RenderTestResult(False, "Mandatory Table tab not found")
    if sum(len(t.get("widgets") or []) for t in tabs) == 0:
        return RenderTestResult(False, "No widgets defined")
    for t in tabs:
        for w in t.get("widgets") or []:
            if not w.get("id") or not w.get("type"):
                return RenderTestResult(False, f"Invalid widget on tab {t.get('id')}")
    return RenderTestResult(True)


# ---------- Probes ----------

def _check_aggregate(payload: Any, gcfg: GateCfg, res: SmokeTestResult) -> None:
    if not isinstance(payload, Mapping) or not payload.get("ok"):
        msg = ((payload or {}).get("error") or {}).get("message") if isinstance(payload, Mapping) else None
        res.errors.append(f"Aggregation failed: {msg or 'unknown error'}")
        return
    res.aggregate_ok = True
    kpis = (payload.get("aggregations") or {}).get("kpis") or {}
    res.kpis_count = len(kpis)
    if res.kpis_count < gcfg.min_kpis:
        res.warnings.append(f"Only {res.kpis_count} KPIs returned (minimum: {gcfg.min_kpis})")
    if gcfg.check_invalid_numbers:
        for key, value in kpis.items():
            if _is_invalid_number(value):
                res.has_invalid_numbers = True
                res.errors.append(f"KPI {key!r} has an invalid value: {value}")

    drift = payload.get("schema") or {}
    if drift.get("changed"):
        res.errors.append(
            f"{SCHEMA_DRIFT}: dataset columns changed since the layout was bound "
            f"(removed: {', '.join(drift.get('removed_columns') or []) or '-'}; "
            f"added: {', '.join(drift.get('added_columns') or []) or '-'})"
        )
    for w in (payload.get("quality") or {}).get("warnings") or []:
        if w.get("code") == COLUMN_NOT_FOUND and (w.get("details") or {}).get("usage") in BLOCKING_USAGES:
            res.errors.append(f"{COLUMN_NOT_FOUND}: {w.get('message')}")

def _check_details(payload: Any, gcfg: GateCfg, res: SmokeTestResult) -> None:
    if not isinstance(payload, Mapping) or not payload.get("ok"):
        msg = ((payload or {}).get("error") or {}).get("message") if isinstance(payload, Mapping) else None
        res.errors.append(f"Details failed: {msg or 'unknown error'}")
        return
    res.details_ok = True
    rows = payload.get("rows") or []
    res.rows_count = int((payload.get("meta") or {}).get("total_rows") or len(rows))
    if res.rows_count < gcfg.min_rows:
        res.warnings.append(f"Only {res.rows_count} rows returned (minimum: {gcfg.min_rows})")
    if gcfg.check_invalid_numbers and has_invalid_numbers(rows):
        res.has_invalid_numbers = True
        res.warnings.append("Rows contain invalid numeric values (NaN/Infinity)")

async def run_smoke_test(
    dashboard_ref: str,
    layout: Optional[CompiledLayout],
    *,
    datapath: DataPath,
    cfg: Any = None,
    today: Optional[date] = None,
) -> SmokeTestResult:
    """
    Live round-trip through the aggregate and details probes.

    Both probes run concurrently and both must finish; a probe that raises
    becomes an error instead of propagating.
    """
    log = logger_from_cfg("gate", cfg)
    gcfg = _gate_cfg(cfg)
    if today is None:
        today = now_in_tz(cfg_timezone(cfg)).date()
    window = lookback_window(today, gcfg.lookback_days)
    res = SmokeTestResult(trace_id=make_trace_id("smoke"))

    probes = asyncio.gather(
        datapath.aggregate(dashboard_ref, layout, window),
        datapath.details(dashboard_ref, layout, window, page=1, page_size=10),
        return_exceptions=True,
    )
    try:
        agg, details = await asyncio.wait_for(probes, timeout=gcfg.timeout_seconds)
    except asyncio.TimeoutError:
        res.errors.append(f"Data probes timed out after {gcfg.timeout_seconds}s")
        log.warning("probe_failed", extra={"probe": "all", "error": "timeout", "trace_id": res.trace_id})
        return res

    for name, outcome, check in (("aggregate", agg, _check_aggregate), ("details", details, _check_details)):
        if isinstance(outcome, BaseException):
            res.errors.append(f"{name.capitalize()} probe raised: {type(outcome).__name__}: {outcome}")
            log.warning("probe_failed", extra={"probe": name, "error": str(outcome), "trace_id": res.trace_id})
            continue
        check(outcome, gcfg, res)

    res.passed = not res.errors and res.aggregate_ok and res.details_ok
    return res

async def run_gate_check(
    dashboard_ref: str,
    layout: Optional[CompiledLayout],
    *,
    datapath: DataPath,
    cfg: Any = None,
    today: Optional[date] = None,
) -> GateCheckResult:
    """Publish-time verdict: smoke test plus render-shape check, with a flat list of block reasons."""
    log = logger_from_cfg("gate", cfg)
    smoke = await run_smoke_test(dashboard_ref, layout, datapath=datapath, cfg=cfg, today=today)
    render = validate_render_shape(layout)

    reasons: List[str] = []
    if not smoke.passed:
        reasons.extend(smoke.errors or ["Smoke test failed"])
    if not render.passed:
        reasons.append(render.error or "Render check failed")

    result = GateCheckResult(
        passed=smoke.passed and render.passed,
        smoke_test=smoke,
        render_test=render,
        block_reasons=reasons,
    )
    log.info(
        "gate_check_done",
        extra={
            "dashboard_ref": dashboard_ref,
            "passed": result.passed,
            "block_reasons": reasons,
            "trace_id": smoke.trace_id,
        },
    )
    return result

def format_gate_result(result: GateCheckResult) -> Dict[str, Any]:
    if result.passed:
        return {
            "status": "success",
            "title": "Validation passed",
            "description": "The dashboard passed every check and can be published.",
            "details": [
                f"{result.smoke_test.kpis_count} KPIs validated",
                f"{result.smoke_test.rows_count} data rows",
                *result.smoke_test.warnings,
            ],
        }
    if result.block_reasons:
        return {
            "status": "error",
            "title": "Validation failed",
            "description": "The dashboard cannot be published because a mandatory check failed.",
            "details": list(result.block_reasons),
        }
    return {
        "status": "warning",
        "title": "Validation with warnings",
        "description": "The dashboard passed but has warnings.",
        "details": list(result.smoke_test.warnings),
    }
