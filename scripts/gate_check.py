from __future__ import annotations
import argparse, asyncio, sys
from datetime import date
from pathlib import Path
from typing import Optional

from adaptive_dash.capabilities import detect_capabilities
from adaptive_dash.config_model.model import RootCfg
from adaptive_dash.gate import HttpDataPath, InMemoryRowFetcher, LocalDataPath, format_gate_result, run_gate_check
from adaptive_dash.layout import compile_layout
from adaptive_dash.io.readers import read_rows
from adaptive_dash.io.writers import write_json


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Compile a layout for a file and run the publish gate against it.")
    ap.add_argument("data", type=Path, help="CSV / JSON / NDJSON / parquet file")
    ap.add_argument("--config", default=None)
    ap.add_argument("--dashboard-ref", default=None, help="Dashboard id sent to the remote data path")
    ap.add_argument("--remote", action="store_true", help="Probe [gate].base_url instead of the local file")
    ap.add_argument("--today", default=None, help="Override today's date (YYYY-MM-DD)")
    args = ap.parse_args(argv)

    cfg = RootCfg.load(args.config)
    columns, rows = read_rows(args.data)
    ref = args.dashboard_ref or args.data.stem

    caps = detect_capabilities(columns, rows[: cfg.detector.sample_rows], row_count=len(rows), cfg=cfg)
    compiled = compile_layout(caps, dataset_ref=ref, cfg=cfg)

    if args.remote:
        if not cfg.gate.base_url:
            print("[error] --remote needs [gate].base_url in the config", file=sys.stderr)
            return 2
        datapath = HttpDataPath(cfg.gate.base_url, timeout=cfg.gate.timeout_seconds)
    else:
        time_cols = {ref: caps.time_column} if caps.time_column else {}
        datapath = LocalDataPath(InMemoryRowFetcher({ref: rows}, time_columns=time_cols, tz=cfg.env.timezone), cfg=cfg)

    today = date.fromisoformat(args.today) if args.today else None
    result = asyncio.run(run_gate_check(ref, compiled.layout, datapath=datapath, cfg=cfg, today=today))
    write_json({"gate": result.to_dict(), "display": format_gate_result(result)}, None)
    return 0 if result.passed else 1


if __name__ == "__main__":
    raise SystemExit(main())
