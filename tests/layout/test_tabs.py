from adaptive_dash.capabilities import detect_capabilities
from adaptive_dash.layout.tabs import generate_tabs

def test_simple_dataset_tabs(simple_rows):
    caps = detect_capabilities(["dia", "leads_total", "venda_total"], simple_rows)
    res = generate_tabs(caps)
    assert res.tab_ids == ["overview", "time", "table"]
    assert res.default_tab == "overview"
    discarded = {d.item: d for d in res.discarded}
    assert set(discarded) == {"Funnel", "Explore", "Efficiency"}
    assert all(d.fallback == "Overview" and d.type == "tab" for d in discarded.values())
    assert discarded["Funnel"].reason == "At least 3 funnel stages required, found 0"

def test_full_dataset_tabs_in_priority_order(sales_rows):
    caps = detect_capabilities(list(sales_rows[0].keys()), sales_rows)
    res = generate_tabs(caps)
    assert res.tab_ids == ["overview", "time", "funnel", "explore", "efficiency", "table"]
    assert res.discarded == []

def test_empty_profile_keeps_mandatory_tabs_and_warns():
    res = generate_tabs(detect_capabilities([]))
    assert res.tab_ids == ["overview", "table"]
    assert any("minimal tabs" in w for w in res.warnings)
    assert any("no time or id column" in w for w in res.warnings)

def test_five_stages_suggest_the_funnel_tab(funnel_rows):
    caps = detect_capabilities(list(funnel_rows[0].keys()), funnel_rows)
    res = generate_tabs(caps)
    assert "funnel" in res.tab_ids
    assert any("High-confidence funnel" in w for w in res.warnings)
