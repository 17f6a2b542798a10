from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import httpx

from ..aggregate.engine import compute_aggregations
from ..aggregate.plan import plan_from_layout
from ..capabilities.detector import detect_capabilities, has_capabilities_changed
from ..capabilities.model import SchemaDrift
from ..layout.model import CompiledLayout
from ..utils.fp import unique_stable
from ..utils.time import end_of_day, parse_date, start_of_day

DateWindow = Tuple[str, str]


@dataclass(frozen=True)
class RowSet:
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0


class RowFetcher(Protocol):
    """Returns the bounded row set of a dataset; access control happens before this."""

    async def fetch_rows(
        self,
        dataset_ref: str,
        date_range: Optional[DateWindow] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> RowSet: ...


class DataPath(Protocol):
    """The two round-trips a gate check makes: aggregated values and raw detail rows."""

    async def aggregate(self, dashboard_ref: str, layout: Optional[CompiledLayout], date_range: DateWindow) -> Dict[str, Any]: ...

    async def details(
        self,
        dashboard_ref: str,
        layout: Optional[CompiledLayout],
        date_range: DateWindow,
        page: int = 1,
        page_size: int = 10,
    ) -> Dict[str, Any]: ...


# ---------- Row fetchers ----------

def _matches(value: Any, wanted: Any) -> bool:
    if isinstance(wanted, (list, tuple, set, frozenset)):
        return not wanted or value in wanted
    return value == wanted

class InMemoryRowFetcher:
    """
    Row fetcher over datasets held in memory, keyed by dataset ref.

    Filters are equality (scalar) or containment (list/tuple/set; empty means
    no constraint). The date window applies when the dataset has a time column,
    on calendar days in `tz`.
    """

    def __init__(
        self,
        datasets: Mapping[str, Sequence[Mapping[str, Any]]],
        *,
        time_columns: Optional[Mapping[str, str]] = None,
        tz: str = "UTC",
    ) -> None:
        self._datasets = {k: [dict(r) for r in v] for k, v in datasets.items()}
        self._time_columns = dict(time_columns or {})
        self.tz = tz

    async def fetch_rows(
        self,
        dataset_ref: str,
        date_range: Optional[DateWindow] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> RowSet:
        if dataset_ref not in self._datasets:
            raise KeyError(f"Unknown dataset {dataset_ref!r}")
        rows = self._datasets[dataset_ref]
        columns = list(unique_stable(k for r in rows for k in r.keys()))

        time_col = self._time_columns.get(dataset_ref)
        if date_range and time_col:
            lo, hi = parse_date(date_range[0], self.tz), parse_date(date_range[1], self.tz)
            lo = start_of_day(lo) if lo else None
            hi = end_of_day(hi) if hi else None
            kept = []
            for r in rows:
                d = parse_date(r.get(time_col), self.tz)
                if d is not None and (lo is None or d >= lo) and (hi is None or d <= hi):
                    kept.append(r)
            rows = kept

        for col, wanted in (filters or {}).items():
            rows = [r for r in rows if _matches(r.get(col), wanted)]
        return RowSet(columns=columns, rows=[dict(r) for r in rows], total=len(rows))


# ---------- Data paths ----------

class LocalDataPath:
    """In-process data path: fetch rows, derive the plan from the layout, aggregate."""

    def __init__(self, fetcher: RowFetcher, *, cfg: Any = None) -> None:
        self.fetcher = fetcher
        self.cfg = cfg

    def _dataset_ref(self, dashboard_ref: str, layout: Optional[CompiledLayout]) -> str:
        bound = layout.binding.dataset_ref if layout is not None and layout.binding else None
        return bound or dashboard_ref

    def _schema_drift(self, layout: CompiledLayout, rowset: RowSet) -> Optional[SchemaDrift]:
        binding = layout.binding
        if binding is None or not binding.schema_hash:
            return None
        current = detect_capabilities(rowset.columns, rowset.rows, row_count=rowset.total, cfg=self.cfg)
        return has_capabilities_changed(current, binding.schema_hash, binding.column_names)

    async def aggregate(self, dashboard_ref: str, layout: Optional[CompiledLayout], date_range: DateWindow) -> Dict[str, Any]:
        if layout is None:
            return {"ok": False, "error": {"message": "No layout to derive an aggregation plan from"}}
        rowset = await self.fetcher.fetch_rows(self._dataset_ref(dashboard_ref, layout), date_range)
        result = compute_aggregations(
            rowset.rows,
            plan_from_layout(layout),
            date_range,
            columns=rowset.columns,
            cfg=self.cfg,
        )
        drift = self._schema_drift(layout, rowset)
        payload = result.to_dict()
        return {
            "ok": True,
            "aggregations": {
                "kpis": {k: v.value for k, v in result.kpis.items()},
                "funnel": payload["funnel"],
                "series": payload["series"],
                "rankings": payload["rankings"],
            },
            "quality": payload["quality"],
            "meta": payload["meta"],
            "schema": drift.to_dict() if drift is not None else None,
        }

    async def details(
        self,
        dashboard_ref: str,
        layout: Optional[CompiledLayout],
        date_range: DateWindow,
        page: int = 1,
        page_size: int = 10,
    ) -> Dict[str, Any]:
        rowset = await self.fetcher.fetch_rows(self._dataset_ref(dashboard_ref, layout), date_range)
        start = max(0, (page - 1) * page_size)
        return {
            "ok": True,
            "columns": rowset.columns,
            "rows": rowset.rows[start:start + page_size],
            "meta": {"total_rows": rowset.total, "page": page, "page_size": page_size},
        }


class HttpDataPath:
    """
    Remote data path against a `dashboard-data` endpoint.

    Both probes POST ``{dashboard_id, start, end, mode}``; HTTP errors raise
    ``httpx.HTTPError`` and are turned into block reasons by the gate.
    """

    def __init__(
        self,
        base_url: str,
        *,
        endpoint: str = "dashboard-data",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        self._client = client
        self.timeout = timeout
        self.headers = dict(headers or {})

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if self._client is not None:
            resp = await self._client.post(self.url, json=body, headers=self.headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self.headers) as client:
                resp = await client.post(self.url, json=body)
        resp.raise_for_status()
        return resp.json()

    async def aggregate(self, dashboard_ref: str, layout: Optional[CompiledLayout], date_range: DateWindow) -> Dict[str, Any]:
        start, end = date_range
        return await self._post({"dashboard_id": dashboard_ref, "start": start, "end": end, "mode": "aggregate"})

    async def details(
        self,
        dashboard_ref: str,
        layout: Optional[CompiledLayout],
        date_range: DateWindow,
        page: int = 1,
        page_size: int = 10,
    ) -> Dict[str, Any]:
        start, end = date_range
        return await self._post({
            "dashboard_id": dashboard_ref,
            "start": start,
            "end": end,
            "mode": "details",
            "page": page,
            "pageSize": page_size,
        })
