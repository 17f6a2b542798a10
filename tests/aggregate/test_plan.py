import pytest
from pydantic import ValidationError

from adaptive_dash.aggregate.plan import AggregationPlan, KpiDef, plan_from_layout
from adaptive_dash.capabilities import detect_capabilities
from adaptive_dash.layout.compiler import compile_layout

def test_kpi_key_defaults_to_agg_and_column():
    assert KpiDef(column="leads_total").key == "sum:leads_total"
    assert KpiDef(column="st_venda", agg="truthy_count", key="vendas").key == "vendas"

def test_plan_rejects_unknown_reducer():
    with pytest.raises(ValidationError):
        AggregationPlan.model_validate({"kpis": [{"column": "x", "agg": "median"}]})

def test_kpi_agg_lookup():
    plan = AggregationPlan(kpis=[KpiDef(column="st_venda", agg="truthy_count")])
    assert plan.kpi_agg_for("st_venda") == "truthy_count"
    assert plan.kpi_agg_for("other") is None
    assert plan.grain == "day"

def test_plan_from_full_layout(sales_rows):
    caps = detect_capabilities(list(sales_rows[0].keys()), sales_rows)
    plan = plan_from_layout(compile_layout(caps).layout)
    assert plan.time_column == "dia"
    # overview and funnel tab KPI cards overlap; duplicates collapse by key
    assert [k.key for k in plan.kpis] == [
        "count:_count",
        "count_distinct:lead_id",
        "truthy_count:st_entrada",
        "truthy_count:st_agendado",
        "truthy_count:st_qualificado",
        "sum:custo_total",
    ]
    assert [s.column for s in plan.funnel] == ["st_entrada", "st_qualificado", "st_agendado"]
    assert len(plan.charts) == 3
    assert all(r.dimension == "origem" for r in plan.rankings)
    multi = [r for r in plan.rankings if ":" in r.id]
    assert [r.metric for r in multi] == ["st_entrada", "st_qualificado", "st_agendado"]
    assert all(r.agg == "truthy_count" for r in plan.rankings)

def test_degraded_kpi_cards_still_feed_the_plan():
    caps = detect_capabilities(["origem"], [{"origem": "a"}, {"origem": "b"}])
    plan = plan_from_layout(compile_layout(caps).layout)
    assert [k.key for k in plan.kpis] == ["count:_count", "count_distinct:origem"]
    assert plan.time_column is None
