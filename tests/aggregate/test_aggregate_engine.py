import copy
import math
import pytest

from adaptive_dash.aggregate.engine import compute_aggregations, determine_time_grain, reduce_values
from adaptive_dash.aggregate.plan import AggregationPlan
from adaptive_dash.config_model.model import AggregationCfg, EnvCfg, RootCfg
from datetime import datetime

def _plan(**kw):
    return AggregationPlan.model_validate(kw)

def test_kpis_over_all_rows(simple_rows):
    plan = _plan(time_column="dia", kpis=[
        {"column": "leads_total"},
        {"column": "_count", "agg": "count"},
        {"column": "venda_total", "agg": "avg"},
    ])
    res = compute_aggregations(simple_rows, plan)
    assert res.kpis["sum:leads_total"].value == 150.0
    assert res.kpis["sum:leads_total"].strategy == "exact"
    assert res.kpis["count:_count"].value == 10.0
    assert res.kpis["count:_count"].strategy == "row_count"
    assert res.kpis["avg:venda_total"].value == pytest.approx(3.9)
    assert res.kpi_value("leads_total") == 150.0
    assert res.kpi_value("missing") == 0.0
    assert res.quality.warnings == []

def test_date_range_is_inclusive_and_accepts_mappings(simple_rows):
    plan = _plan(time_column="dia", kpis=[{"column": "leads_total"}, {"column": "_count", "agg": "count"}])
    res = compute_aggregations(simple_rows, plan, ("2024-03-03", "2024-03-05"))
    assert res.kpi_value("leads_total") == 47.0
    assert res.kpi_value("count:_count") == 3.0
    same = compute_aggregations(simple_rows, plan, {"start": "03/03/2024", "end": "2024-03-05"})
    assert same.kpi_value("leads_total") == 47.0
    assert res.meta["rows_in_range"] == 3
    assert res.meta["date_range"] == {"start": "2024-03-03", "end": "2024-03-05"}

def test_rows_are_not_mutated(sales_rows):
    before = copy.deepcopy(sales_rows)
    plan = _plan(time_column="dia", kpis=[{"column": "custo_total"}])
    res = compute_aggregations(sales_rows, plan)
    assert sales_rows == before
    assert res.kpi_value("custo_total") == pytest.approx(1084.0)

def test_reducers_on_sales_rows(sales_rows):
    plan = _plan(kpis=[
        {"column": "origem", "agg": "count_distinct"},
        {"column": "st_qualificado", "agg": "truthy_count"},
        {"column": "lead_id", "agg": "count"},
    ])
    res = compute_aggregations(sales_rows, plan)
    assert res.kpi_value("count_distinct:origem") == 3.0
    assert res.kpi_value("truthy_count:st_qualificado") == 4.0
    assert res.kpis["truthy_count:st_qualificado"].non_null_count == 8
    assert res.kpi_value("count:lead_id") == 8.0

def test_reduce_values_skips_non_numbers():
    assert reduce_values([1, "2", None, "abc", float("inf")], "sum") == (3.0, 4, 1)
    assert reduce_values([], "avg") == (0.0, 0, 0)

def test_funnel_counts_and_rates(funnel_rows):
    plan = _plan(funnel=[{"column": c} for c in ("st_entrada", "st_qualificado", "st_agendado", "st_realizado", "st_venda")])
    res = compute_aggregations(funnel_rows, plan)
    assert [s.count for s in res.funnel] == [100, 80, 50, 30, 10]
    assert res.funnel[0].conversion_rate is None
    assert res.funnel[2].conversion_rate == pytest.approx(0.625)
    assert res.funnel[3].dropoff_percent == pytest.approx(40.0)
    assert "FUNNEL_INVERSION" not in res.quality.codes()
    assert res.quality.stage_columns["st_venda"].truthy_count == 10
    # every row has st_entrada set
    assert "ALL_TRUTHY" in res.quality.codes()

def test_zero_predecessor_gives_no_rate():
    rows = [{"a": 0, "b": 1}, {"a": "nao", "b": "sim"}]
    res = compute_aggregations(rows, _plan(funnel=[{"column": "a"}, {"column": "b"}]))
    assert [s.count for s in res.funnel] == [0, 2]
    assert res.funnel[1].conversion_rate is None
    codes = res.quality.codes()
    assert "ZERO_TRUTHY" in codes and "FUNNEL_INVERSION" in codes

def test_unresolved_column_yields_zero_and_one_warning(simple_rows):
    plan = _plan(
        time_column="dia",
        kpis=[{"column": "Vendas"}],
        charts=[{"id": "c1", "series": [{"column": "Vendas"}]}],
    )
    res = compute_aggregations(simple_rows, plan)
    kpi = res.kpis["sum:Vendas"]
    assert kpi.value == 0.0 and kpi.resolved is None
    warnings = [w for w in res.quality.warnings if w.code == "COLUMN_NOT_FOUND"]
    assert len(warnings) == 1
    assert "'Vendas'" in warnings[0].message
    assert "vendas" in warnings[0].details["attempted"]
    assert all(p["Vendas"] == 0.0 for p in res.series["c1"])

def test_resolution_through_aliases(simple_rows):
    res = compute_aggregations(simple_rows, _plan(time_column="data", kpis=[{"column": "leads"}]))
    assert res.kpis["sum:leads"].resolved == "leads_total"
    assert res.kpis["sum:leads"].strategy == "partial"
    assert res.meta["time_column"] == "dia"

def test_empty_input_reports_no_data_only():
    plan = _plan(time_column="dia", kpis=[{"column": "leads_total"}], charts=[{"id": "c", "series": [{"column": "x"}]}])
    res = compute_aggregations([], plan)
    assert res.quality.codes() == ["NO_DATA"]
    assert res.kpi_value("leads_total") == 0.0
    assert res.series["c"] == []

def test_row_cap_emits_data_limited(simple_rows):
    cfg = RootCfg(aggregation=AggregationCfg(max_rows=5))
    res = compute_aggregations(simple_rows, _plan(kpis=[{"column": "leads_total"}]), cfg=cfg)
    assert res.kpi_value("leads_total") == 74.0
    assert "DATA_LIMITED" in res.quality.codes()
    assert res.meta["data_limited"] is True
    assert res.meta["rows_received"] == 10 and res.meta["rows_used"] == 5

def test_out_of_range_window(simple_rows):
    res = compute_aggregations(simple_rows, _plan(time_column="dia", kpis=[{"column": "leads_total"}]), ("2025-01-01", "2025-01-31"))
    assert res.kpi_value("leads_total") == 0.0
    assert "NO_ROWS_IN_RANGE" in res.quality.codes()

def test_unparseable_dates_degrade(simple_rows):
    rows = [dict(r, dia="n/a") if i % 2 else r for i, r in enumerate(simple_rows)]
    rows[0] = dict(rows[0], dia="garbage")
    res = compute_aggregations(rows, _plan(time_column="dia", kpis=[{"column": "leads_total"}]))
    assert res.quality.degraded_mode
    assert "LOW_TIME_PARSE_RATE" in res.quality.codes()
    # without a range every row still counts
    assert res.kpi_value("leads_total") == 150.0

def test_daily_series_is_zero_filled():
    rows = [
        {"dia": "2024-03-01", "leads_total": 5},
        {"dia": "2024-03-03", "leads_total": 7},
        {"dia": "2024-03-03", "leads_total": 1},
    ]
    plan = _plan(time_column="dia", charts=[{"id": "trend", "series": [{"column": "leads_total"}]}])
    res = compute_aggregations(rows, plan)
    assert res.series["trend"] == [
        {"date": "2024-03-01", "leads_total": 5.0},
        {"date": "2024-03-02", "leads_total": 0.0},
        {"date": "2024-03-03", "leads_total": 8.0},
    ]

def test_series_reducer_follows_the_kpi(funnel_rows):
    plan = _plan(
        time_column="dia",
        kpis=[{"column": "st_venda", "agg": "truthy_count"}],
        charts=[{"id": "c", "series": [{"column": "st_venda"}]}],
    )
    res = compute_aggregations(funnel_rows, plan)
    assert len(res.series["c"]) == 10
    assert sum(p["st_venda"] for p in res.series["c"]) == 10.0

def test_week_and_month_grains(simple_rows):
    base = dict(time_column="dia", charts=[{"id": "c", "series": [{"column": "leads_total"}]}])
    weekly = compute_aggregations(simple_rows, _plan(grain="week", **base))
    assert weekly.series["c"] == [
        {"date": "2024-02-26", "leads_total": 36.0},
        {"date": "2024-03-04", "leads_total": 114.0},
    ]
    monthly = compute_aggregations(simple_rows, _plan(grain="month", **base))
    assert monthly.series["c"] == [{"date": "2024-03-01", "leads_total": 150.0}]
    auto = compute_aggregations(simple_rows, _plan(grain="auto", **base))
    assert auto.meta["grain"] == "day"

def test_time_grain_thresholds():
    start = datetime(2020, 1, 1)
    assert determine_time_grain(start, datetime(2020, 3, 1)) == "day"
    assert determine_time_grain(start, datetime(2022, 1, 1)) == "week"
    assert determine_time_grain(start, datetime(2030, 1, 1)) == "month"

def test_rankings_group_nulls_and_keep_tie_order():
    rows = [
        {"origem": "google", "v": 1},
        {"origem": "meta", "v": 1},
        {"origem": None, "v": 5},
        {"origem": "meta", "v": 1},
        {"origem": "google", "v": 1},
        {"origem": "  ", "v": 0},
    ]
    plan = _plan(rankings=[
        {"id": "r", "dimension": "origem", "metric": "v"},
        {"id": "top1", "dimension": "origem", "metric": "v", "limit": 1},
        {"id": "n", "dimension": "origem"},
    ])
    res = compute_aggregations(rows, plan)
    assert [(e.dimension, e.value) for e in res.rankings["r"]] == [("Other", 5.0), ("google", 2.0), ("meta", 2.0)]
    assert [e.dimension for e in res.rankings["top1"]] == ["Other"]
    assert [(e.dimension, e.value) for e in res.rankings["n"]] == [("google", 2.0), ("meta", 2.0), ("Other", 2.0)]

def test_ranking_with_unknown_metric_is_empty(sales_rows):
    res = compute_aggregations(sales_rows, _plan(rankings=[{"id": "r", "dimension": "origem", "metric": "receita"}]))
    assert res.rankings["r"] == []
    assert "COLUMN_NOT_FOUND" in res.quality.codes()

def test_result_serialises(simple_rows):
    plan = _plan(time_column="dia", kpis=[{"column": "leads_total"}], charts=[{"id": "c", "series": [{"column": "leads_total"}]}])
    d = compute_aggregations(simple_rows, plan).to_dict()
    assert d["kpis"]["sum:leads_total"]["value"] == 150.0
    assert d["meta"]["grain"] == "day"
    assert len(d["series"]["c"]) == 10
    assert all(math.isfinite(p["leads_total"]) for p in d["series"]["c"])

def test_series_buckets_follow_the_configured_timezone():
    rows = [
        {"created_at": "2024-03-05T10:00:00-03:00", "leads": 1},
        {"created_at": "2024-03-05T23:30:00-03:00", "leads": 2},  # next day in UTC
    ]
    plan = _plan(time_column="created_at", charts=[{"id": "c", "series": [{"column": "leads"}]}])
    utc = compute_aggregations(rows, plan)
    assert [p["date"] for p in utc.series["c"]] == ["2024-03-05", "2024-03-06"]
    local = compute_aggregations(rows, plan, cfg=RootCfg(env=EnvCfg(timezone="America/Sao_Paulo")))
    assert local.series["c"] == [{"date": "2024-03-05", "leads": 3.0}]
