from __future__ import annotations
import argparse, json, sys
from pathlib import Path
from typing import Optional

from adaptive_dash.aggregate import compute_aggregations, plan_from_layout
from adaptive_dash.capabilities import detect_capabilities
from adaptive_dash.config_model.model import RootCfg
from adaptive_dash.insights import generate_insights
from adaptive_dash.layout import compile_layout
from adaptive_dash.utils.ids import make_dataset_slug
from adaptive_dash.io.readers import read_rows
from adaptive_dash.io.writers import write_json


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Detect, compile, aggregate and analyse one dataset file.")
    ap.add_argument("data", type=Path, help="CSV / JSON / NDJSON / parquet file")
    ap.add_argument("--config", default=None, help="Path to config.toml (default: env or config/config.toml)")
    ap.add_argument("--plan", type=Path, default=None, help="Optional authored dashboard plan (JSON)")
    ap.add_argument("--start", default=None, help="Range start (YYYY-MM-DD)")
    ap.add_argument("--end", default=None, help="Range end (YYYY-MM-DD)")
    ap.add_argument("--grain", choices=["day", "week", "month", "auto"], default="day")
    ap.add_argument("--out", type=Path, default=None, help="Write the JSON bundle here instead of stdout")
    args = ap.parse_args(argv)

    cfg = RootCfg.load(args.config)
    columns, rows = read_rows(args.data)
    plan = json.loads(args.plan.read_text(encoding="utf-8")) if args.plan else None

    caps = detect_capabilities(columns, rows[: cfg.detector.sample_rows], row_count=len(rows), cfg=cfg)
    compiled = compile_layout(caps, plan, dataset_ref=make_dataset_slug(args.data.stem), cfg=cfg)
    if not compiled.success:
        write_json({"capabilities": caps.to_dict(), "compilation": compiled.to_dict()}, args.out)
        print("[error] " + "; ".join(compiled.errors), file=sys.stderr)
        return 1

    agg_plan = plan_from_layout(compiled.layout).model_copy(update={"grain": args.grain})
    date_range = (args.start, args.end) if (args.start or args.end) else None
    aggregations = compute_aggregations(rows, agg_plan, date_range, columns=columns, cfg=cfg)
    insights = generate_insights(rows, date_column=caps.time_column or "dia", cfg=cfg)

    write_json({
        "capabilities": caps.to_dict(),
        "compilation": compiled.to_dict(),
        "aggregation_plan": agg_plan.model_dump(),
        "aggregations": aggregations.to_dict(),
        "insights": insights.to_dict(),
    }, args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
