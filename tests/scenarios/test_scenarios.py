from datetime import date
import pytest

from adaptive_dash import (
    compile_layout, compute_aggregations, detect_capabilities, generate_insights,
    plan_from_layout, run_gate_check,
)
from adaptive_dash.aggregate import AggregationPlan
from adaptive_dash.gate import InMemoryRowFetcher, LocalDataPath

STAGES = ("st_entrada", "st_qualificado", "st_agendado", "st_realizado", "st_venda")

def test_time_and_totals_without_stage_flags(simple_rows, now):
    columns = ["dia", "leads_total", "venda_total"]
    caps = detect_capabilities(columns, simple_rows)
    assert caps.has_time and caps.stage_flags_count == 0

    res = compile_layout(caps)
    assert res.success
    tab_ids = [t.id for t in res.layout.tabs]
    assert "overview" in tab_ids and "table" in tab_ids
    assert "funnel" not in tab_ids

    agg = compute_aggregations(simple_rows, plan_from_layout(res.layout), columns=columns)
    assert agg.kpi_value("sum:leads_total") == sum(r["leads_total"] for r in simple_rows)

def test_five_stage_funnel(funnel_rows, now):
    caps = detect_capabilities(["dia", *STAGES], funnel_rows)
    assert caps.stage_flags == STAGES
    res = compile_layout(caps)
    assert res.layout.tab("funnel") is not None

    agg = compute_aggregations(funnel_rows, plan_from_layout(res.layout))
    steps = {s.stage: s for s in agg.funnel}
    assert [s.count for s in agg.funnel] == [100, 80, 50, 30, 10]
    assert steps["st_realizado"].dropoff_percent == pytest.approx(40.0)

    report = generate_insights(funnel_rows, now=now)
    stages = {s.key: s for s in report.funnel_analysis}
    assert stages["st_realizado"].dropoff == pytest.approx(40.0)
    # 30 -> 10 loses two thirds, the only pair above the 50% line
    bottlenecks = [i for i in report.insights if i.type == "bottleneck"]
    assert [b.metric_key for b in bottlenecks] == ["st_venda"]
    assert bottlenecks[0].priority == "high"

def test_unresolvable_kpi_reference(simple_rows):
    columns = ["venda_total"]
    rows = [{"venda_total": r["venda_total"]} for r in simple_rows]
    plan = AggregationPlan.model_validate({"kpis": [{"column": "Vendas"}]})
    agg = compute_aggregations(rows, plan, columns=columns)
    kpi = agg.kpis["sum:Vendas"]
    assert kpi.value == 0.0 and kpi.resolved is None
    warning = next(w for w in agg.quality.warnings if w.code == "COLUMN_NOT_FOUND")
    assert "'Vendas'" in warning.message
    assert {"vendas", "st_vendas"} <= set(warning.details["attempted"])

@pytest.mark.asyncio
async def test_compiled_layout_passes_the_gate(sales_rows):
    caps = detect_capabilities(list(sales_rows[0].keys()), sales_rows)
    layout = compile_layout(caps, dataset_ref="sales").layout
    path = LocalDataPath(InMemoryRowFetcher({"sales": sales_rows}, time_columns={"sales": "dia"}))
    result = await run_gate_check("dash-sales", layout, datapath=path, today=date(2024, 3, 9))
    assert result.passed, result.block_reasons
    assert result.smoke_test.kpis_count == 6
    assert result.smoke_test.rows_count == len(sales_rows)
