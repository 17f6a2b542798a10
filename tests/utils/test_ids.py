from adaptive_dash.utils.ids import (
    slugify, stable_hash, short_id, make_dataset_slug, schema_fingerprint, make_trace_id,
)

def test_slugify_basic_and_separators():
    assert slugify("Hello World!") == "hello-world"
    assert slugify("a/b\\c  d") == "a-b-c-d"

def test_stable_hash_deterministic_and_json_order_insensitive():
    a = {"b": 1, "a": 2}
    b = {"a": 2, "b": 1}
    assert stable_hash(a) == stable_hash(b)

def test_short_id_length_and_payload_changes():
    sx = short_id({"x": 1}, 8)
    sy = short_id({"x": 2}, 8)
    assert len(sx) == 8 and len(sy) == 8
    assert sx != sy

def test_make_dataset_slug_path_like():
    s = make_dataset_slug(r"file://data\raw\sales_demo")
    assert "sales-demo" in s
    assert s.startswith("file-data-raw")

def test_schema_fingerprint_ignores_order_and_duplicates():
    a = schema_fingerprint(["dia", "leads_total", "venda_total"])
    b = schema_fingerprint(["venda_total", "dia", "leads_total", "dia"])
    assert a == b
    assert len(a) == 16
    assert schema_fingerprint(["dia"]) != a

def test_trace_ids_are_prefixed_and_unique():
    t1, t2 = make_trace_id(), make_trace_id("smoke")
    assert t1.startswith("trace_")
    assert t2.startswith("smoke_")
    assert t1 != make_trace_id()
