from __future__ import annotations
from datetime import datetime, timedelta
from typing import Iterable, List, Sequence
import numpy as np
import pandas as pd

from ..parsing.values import to_number
from ..utils.time import date_key

__all__ = [
    "as_float_series",
    "population_std",
    "percent_change",
    "outlier_mask_sigma",
    "missing_dates",
]


def as_float_series(values: Iterable) -> pd.Series:
    """Cells parsed with the canonical number rules; unparseable cells become 0.0."""
    return pd.Series([to_number(v) or 0.0 for v in values], dtype=float)

def population_std(x: pd.Series) -> float:
    if x.size < 2:
        return 0.0
    return float(np.std(x.to_numpy(dtype=float), ddof=0))

def percent_change(current: float, previous: float) -> float:
    """Relative change in percent; a zero baseline reads as +100% when anything appeared."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / abs(previous) * 100.0

def outlier_mask_sigma(x: pd.Series, sigma: float = 2.0) -> pd.Series:
    """
    Classical z-score rule: |x - mean| > sigma * std (population std).
    A flat series has no outliers.
    """
    sd = population_std(x)
    if sd == 0 or np.isnan(sd):
        return pd.Series(False, index=x.index, dtype=bool)
    return ((x - float(x.mean())).abs() > float(sigma) * sd).astype(bool)

def missing_dates(dates: Sequence[datetime]) -> List[str]:
    """Every calendar day strictly between two consecutive present days more than one day apart."""
    days = sorted({d.date() for d in dates})
    out: List[str] = []
    for prev, cur in zip(days, days[1:]):
        gap = (cur - prev).days
        out.extend(date_key(prev + timedelta(days=i)) for i in range(1, gap))
    return out
