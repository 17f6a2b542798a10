from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import pandas as pd
import pyarrow.parquet as pq  # fast path for parquet

_EXTS = (".csv", ".json", ".ndjson", ".parquet", ".pq", ".txt")

def _infer_ext(path: str) -> str:
    p = path.lower()
    for e in _EXTS:
        if p.endswith(e):
            return e
    # default to csv if unknown
    return ".csv"

def read_frame(path: str | Path, *, fmt: Optional[str] = None) -> pd.DataFrame:
    """
    Read a dataset file into a pandas DataFrame.
    CSV cells stay strings so value parsing happens in one place downstream.
    """
    fmt = (fmt or _infer_ext(str(path))).lstrip(".").lower()
    if fmt in {"parquet", "pq"}:
        return pq.read_table(str(path)).to_pandas()
    if fmt == "ndjson":
        return pd.read_json(path, lines=True, dtype=False)
    if fmt == "json":
        return pd.read_json(path, dtype=False)
    # csv / txt default
    return pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])

def frame_to_rows(df: pd.DataFrame) -> Tuple[List[str], List[Dict[str, Any]]]:
    """(columns, records) with missing cells as None."""
    clean = df.astype(object).where(df.notna(), None)
    return [str(c) for c in clean.columns], clean.to_dict(orient="records")

def read_rows(path: str | Path, *, fmt: Optional[str] = None) -> Tuple[List[str], List[Dict[str, Any]]]:
    return frame_to_rows(read_frame(path, fmt=fmt))
