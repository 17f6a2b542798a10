import json
import httpx
import pytest

from adaptive_dash.capabilities import detect_capabilities
from adaptive_dash.gate.datapath import HttpDataPath, InMemoryRowFetcher, LocalDataPath
from adaptive_dash.layout.compiler import compile_layout

@pytest.mark.asyncio
async def test_in_memory_fetcher_filters(sales_rows):
    fetcher = InMemoryRowFetcher({"sales": sales_rows}, time_columns={"sales": "dia"})
    rs = await fetcher.fetch_rows("sales", ("2024-03-02", "2024-03-04"))
    assert rs.total == 3
    assert [r["dia"] for r in rs.rows] == ["2024-03-02", "2024-03-03", "2024-03-04"]
    assert rs.columns[0] == "dia"

    rs = await fetcher.fetch_rows("sales", filters={"origem": "google"})
    assert rs.total == 3
    rs = await fetcher.fetch_rows("sales", filters={"origem": ["meta", "organic"]})
    assert rs.total == 4
    rs = await fetcher.fetch_rows("sales", filters={"origem": []})
    assert rs.total == len(sales_rows)

@pytest.mark.asyncio
async def test_in_memory_fetcher_unknown_dataset():
    with pytest.raises(KeyError):
        await InMemoryRowFetcher({}).fetch_rows("nope")

@pytest.mark.asyncio
async def test_fetched_rows_are_copies(simple_rows):
    fetcher = InMemoryRowFetcher({"ds": simple_rows})
    rs = await fetcher.fetch_rows("ds")
    rs.rows[0]["leads_total"] = -1
    again = await fetcher.fetch_rows("ds")
    assert again.rows[0]["leads_total"] == 12

@pytest.mark.asyncio
async def test_local_datapath_round_trip(simple_rows):
    caps = detect_capabilities(["dia", "leads_total", "venda_total"], simple_rows)
    layout = compile_layout(caps, dataset_ref="ds").layout
    path = LocalDataPath(InMemoryRowFetcher({"ds": simple_rows}, time_columns={"ds": "dia"}))

    agg = await path.aggregate("dash-1", layout, ("2024-03-01", "2024-03-31"))
    assert agg["ok"] is True
    assert agg["aggregations"]["kpis"]["sum:leads_total"] == 150.0
    assert agg["meta"]["rows_in_range"] == 10
    assert agg["schema"] == {"changed": False, "added_columns": [], "removed_columns": []}

    details = await path.details("dash-1", layout, ("2024-03-01", "2024-03-31"), page=2, page_size=4)
    assert details["ok"] is True
    assert [r["dia"] for r in details["rows"]] == ["2024-03-05", "2024-03-06", "2024-03-07", "2024-03-08"]
    assert details["meta"] == {"total_rows": 10, "page": 2, "page_size": 4}

@pytest.mark.asyncio
async def test_local_datapath_without_layout(simple_rows):
    path = LocalDataPath(InMemoryRowFetcher({"dash-1": simple_rows}))
    agg = await path.aggregate("dash-1", None, ("2024-03-01", "2024-03-31"))
    assert agg["ok"] is False
    details = await path.details("dash-1", None, ("2024-03-01", "2024-03-31"))
    assert details["meta"]["total_rows"] == 10

@pytest.mark.asyncio
async def test_http_datapath_posts_the_request_bodies():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append((request.url.path, body))
        return httpx.Response(200, json={"ok": True, "mode": body["mode"]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        path = HttpDataPath("https://api.example.test/functions/v1/", client=client, headers={"Authorization": "Bearer t"})
        agg = await path.aggregate("dash-9", None, ("2024-02-10", "2024-03-11"))
        det = await path.details("dash-9", None, ("2024-02-10", "2024-03-11"), page=1, page_size=10)

    assert agg == {"ok": True, "mode": "aggregate"} and det["mode"] == "details"
    assert seen[0] == ("/functions/v1/dashboard-data", {
        "dashboard_id": "dash-9", "start": "2024-02-10", "end": "2024-03-11", "mode": "aggregate",
    })
    assert seen[1][1]["page"] == 1 and seen[1][1]["pageSize"] == 10

@pytest.mark.asyncio
async def test_http_datapath_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"error": "down"}))
    async with httpx.AsyncClient(transport=transport) as client:
        path = HttpDataPath("https://api.example.test", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await path.aggregate("dash-9", None, ("2024-02-10", "2024-03-11"))

@pytest.mark.asyncio
async def test_local_datapath_reports_schema_drift(simple_rows):
    caps = detect_capabilities(["dia", "leads_total", "venda_total"], simple_rows)
    layout = compile_layout(caps, dataset_ref="ds").layout
    extended = [{**r, "custo_total": 10} for r in simple_rows]
    path = LocalDataPath(InMemoryRowFetcher({"ds": extended}, time_columns={"ds": "dia"}))
    agg = await path.aggregate("dash-1", layout, ("2024-03-01", "2024-03-31"))
    assert agg["schema"] == {"changed": True, "added_columns": ["custo_total"], "removed_columns": []}
    # every bound column still resolves
    assert not [w for w in agg["quality"]["warnings"] if w["code"] == "COLUMN_NOT_FOUND"]
