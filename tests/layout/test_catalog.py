import pytest

from adaptive_dash.capabilities import detect_capabilities
from adaptive_dash.layout.catalog import (
    CatalogError, Requirement, TAB_CATALOG, TabSpec, WIDGET_CATALOG, WidgetSpec,
    fallback_chain, validate_catalog, widget_fallback_chain,
)
from adaptive_dash.layout.compiler import resolve_widget_type

def test_shipped_catalog_is_valid():
    validate_catalog()

def test_every_widget_chain_ends_requirement_free():
    for wtype in WIDGET_CATALOG:
        terminal = widget_fallback_chain(wtype)[-1]
        assert WIDGET_CATALOG[terminal].requires.is_empty

def test_resolution_is_total_on_an_empty_profile():
    caps = detect_capabilities([])
    for wtype in WIDGET_CATALOG:
        effective, _ = resolve_widget_type(wtype, caps)
        met, _ = WIDGET_CATALOG[effective].requires.check(caps)
        assert met

def test_cycle_is_rejected():
    widgets = {
        "a": WidgetSpec("a", "A", Requirement(min_metrics=1), "b"),
        "b": WidgetSpec("b", "B", Requirement(min_metrics=1), "a"),
    }
    with pytest.raises(CatalogError, match="cycle"):
        validate_catalog(widgets, TAB_CATALOG)

def test_dangling_fallback_is_rejected():
    with pytest.raises(CatalogError, match="unknown"):
        fallback_chain("a", {"a": "zzz"})

def test_terminal_with_requirements_is_rejected():
    widgets = {"a": WidgetSpec("a", "A", Requirement(min_metrics=1))}
    with pytest.raises(CatalogError, match="requirements"):
        validate_catalog(widgets, TAB_CATALOG)

def test_missing_mandatory_tab_is_rejected():
    tabs = tuple(t for t in TAB_CATALOG if t.id != "table")
    with pytest.raises(CatalogError, match="table"):
        validate_catalog(WIDGET_CATALOG, tabs)

def test_tab_without_terminal_fallback_is_rejected():
    tabs = TAB_CATALOG + (TabSpec("x", "X", "Box", Requirement(requires_time=True), 60),)
    with pytest.raises(CatalogError):
        validate_catalog(WIDGET_CATALOG, tabs)

def test_requirement_reasons_name_the_threshold(simple_rows):
    caps = detect_capabilities(["dia", "leads_total", "venda_total"], simple_rows)
    met, reason = Requirement(min_stage_flags=3).check(caps)
    assert not met and reason == "At least 3 funnel stages required, found 0"
    assert Requirement(requires_currency=True).check(caps) == (False, "Cost/value metrics not found")
    assert Requirement(requires_time=True, min_metrics=2).check(caps) == (True, None)
    assert Requirement().is_empty and Requirement(always=True).is_empty
