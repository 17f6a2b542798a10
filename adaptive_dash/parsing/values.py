from __future__ import annotations
from typing import Any, Iterable, Optional
import math
import numbers
import re
import unicodedata
import numpy as np
import pandas as pd

# ---- Canonical token sets (exact-token matches, casefolded) -----------------

TRUTHY_TOKENS = frozenset({
    "1", "true", "sim", "s", "yes", "y", "ok", "x", "on",
    "ativo", "realizado", "agendado", "ganho", "concluido", "fechado",
})
# Values a stage-flag column may hold; used by the detector's value check.
BOOLEAN_LIKE_TOKENS = frozenset({
    "true", "false", "yes", "no", "sim", "não", "nao", "1", "0", "s", "n",
})

_CURRENCY_PREFIX_RE = re.compile(r"^(?:R\$|US\$|\$|€|£)\s*", re.I)
_BR_RE = re.compile(r"^\d{1,3}(?:\.\d{3})*(?:,\d+)?$")
_BR_DECIMAL_RE = re.compile(r",\d{1,2}$")
_EN_RE = re.compile(r"^\d{1,3}(?:,\d{3})*(?:\.\d+)?$")

# ---- Helpers ----------------------------------------------------------------

def _is_missing(x: Any) -> bool:
    if x is None or x is pd.NA or x is pd.NaT:
        return True
    return isinstance(x, float) and math.isnan(x)

def _normalize_token(x: Any) -> str:
    s = unicodedata.normalize("NFKC", str(x)).strip()
    return s.casefold()

# ---- Public API --------------------------------------------------------------

def is_truthy(value: Any) -> bool:
    """
    Canonical truthiness for funnel/stage cells.

    True for boolean True, any number > 0, or a string in TRUTHY_TOKENS
    (case-insensitive). Everything else, empty and null included, is falsy.
    """
    if _is_missing(value):
        return False
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, numbers.Real):
        return bool(math.isfinite(value) and value > 0)
    return _normalize_token(value) in TRUTHY_TOKENS

def is_boolean_like(value: Any) -> bool:
    if _is_missing(value):
        return False
    if isinstance(value, (bool, np.bool_)):
        return True
    if isinstance(value, numbers.Real):
        return bool(value == 0 or value == 1)
    return _normalize_token(value) in BOOLEAN_LIKE_TOKENS

def to_number(value: Any) -> Optional[float]:
    """
    Parse a cell into a finite float, or None.

    Accepts numbers and numeric strings in either ``1.234,56`` or ``1,234.56``
    grouping, with an optional currency prefix or trailing ``%``. Booleans,
    NaN and infinities are not numbers here.
    """
    if _is_missing(value) or isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, numbers.Real):
        f = float(value)
        return f if math.isfinite(f) else None
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None
    sign = ""
    if s[0] in "+-":
        sign, s = s[0], s[1:].lstrip()
    s = _CURRENCY_PREFIX_RE.sub("", s).rstrip("%").strip()

    br = bool(_BR_RE.match(s) or _BR_DECIMAL_RE.search(s))
    en = bool(_EN_RE.match(s))
    if br and not en:
        s = s.replace(".", "").replace(",", ".")
    elif en and not br:
        s = s.replace(",", "")
    else:
        s = s.replace(" ", "")
        if _BR_DECIMAL_RE.search(s):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")

    try:
        f = float(sign + s)
    except ValueError:
        return None
    return f if math.isfinite(f) else None

def is_number_like(value: Any) -> bool:
    return to_number(value) is not None

def truthy_count(values: Iterable[Any]) -> int:
    return sum(1 for v in values if is_truthy(v))

def truthy_mask(s: pd.Series) -> pd.Series:
    """Vectorised view of `is_truthy` over a column."""
    return s.map(is_truthy).astype(bool)
