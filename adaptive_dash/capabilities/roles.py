from __future__ import annotations
import re
from enum import Enum
from typing import Any, Optional, Sequence, Tuple
import pandas as pd

from ..parsing.values import is_boolean_like, is_number_like


class Role(str, Enum):
    TIME = "time"
    ID = "id"
    CURRENCY = "currency"
    PERCENT = "percent"
    STAGE_FLAG = "stage_flag"
    DIMENSION = "dimension"
    METRIC = "metric"
    TEXT = "text"


def _rx(*patterns: str) -> Tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.I) for p in patterns)

# ---- Name patterns, in priority order ----
ROLE_RULES: Tuple[Tuple[Role, Tuple[re.Pattern, ...]], ...] = (
    (Role.TIME, _rx(
        r"^dia$", r"^data$", r"^date$", r"^created_at", r"^inserted_at",
        r"^updated_at", r"_at$", r"_date$", r"_time$", r"timestamp",
    )),
    (Role.ID, _rx(
        r"^id$", r"^lead_id$", r"^user_id$", r"^customer_id$", r"^idd$",
        r"^uuid$", r"_id$",
    )),
    (Role.CURRENCY, _rx(
        r"custo", r"cost", r"valor", r"value", r"price", r"preco", r"cpl",
        r"cac", r"revenue", r"receita", r"spend", r"gasto",
    )),
    (Role.PERCENT, _rx(
        r"^taxa_", r"^rate_", r"_rate$", r"_taxa$", r"percent", r"%",
    )),
    (Role.STAGE_FLAG, _rx(
        r"^st_", r"^flag_", r"^is_", r"^has_", r"entrada", r"qualificado",
        r"agendad[ao]", r"realizad[ao]", r"venda", r"perdida", r"cliente", r"ativo",
    )),
    (Role.DIMENSION, _rx(
        r"origem", r"source", r"channel", r"vendedor", r"seller", r"unidade",
        r"unit", r"modalidade", r"categoria", r"category", r"tipo", r"type",
        r"status", r"region", r"cidade",
    )),
    (Role.METRIC, _rx(
        r"_total$", r"_count$", r"_sum$", r"^total_", r"^count_",
        r"quantidade", r"qtd", r"amount",
    )),
)

# Canonical funnel vocabulary; position is the stage order.
FUNNEL_ORDER: Tuple[str, ...] = (
    "entrada", "lead", "leads", "ativo", "lead_ativo", "qualificado",
    "agendada", "agendado", "exp_agendada", "reuniao_agendada",
    "realizada", "realizado", "exp_realizada", "reuniao_realizada",
    "proposta", "venda", "vendas", "fechado", "aluno", "cliente",
    "perdida", "perdido", "churn",
)
UNKNOWN_STAGE_ORDER = 999

FLAG_PREFIX_RE = re.compile(r"^st_", re.I)
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def name_roles(colname: str) -> Tuple[Role, ...]:
    """Every role whose name patterns match, in priority order."""
    name = colname or ""
    return tuple(role for role, pats in ROLE_RULES if any(p.search(name) for p in pats))

def boolean_like_ratio(values: pd.Series) -> float:
    if values.empty:
        return 0.0
    return float(values.map(is_boolean_like).mean())

def numeric_ratio(values: pd.Series) -> float:
    if values.empty:
        return 0.0
    return float(values.map(is_number_like).mean())

def iso_date_ratio(values: pd.Series) -> float:
    if values.empty:
        return 0.0
    return float(values.map(lambda v: isinstance(v, str) and bool(_ISO_DATE_RE.match(v.strip()))).mean())

def _safe_nunique(values: pd.Series) -> int:
    try:
        return int(values.nunique(dropna=True))
    except TypeError:
        return int(values.astype(str).nunique(dropna=True))

def value_role_guess(values: pd.Series, cfg: Any = None) -> Role:
    """Value-shape fallback for columns no name pattern claims."""
    min_ratio = float(getattr(cfg, "value_shape_min_ratio", 0.8))
    lo = int(getattr(cfg, "dimension_min_distinct", 2))
    hi = int(getattr(cfg, "dimension_max_distinct", 20))

    if values.empty:
        return Role.TEXT
    if numeric_ratio(values) >= min_ratio:
        return Role.METRIC
    if iso_date_ratio(values) >= min_ratio:
        return Role.TIME
    n = _safe_nunique(values)
    if lo <= n <= hi:
        return Role.DIMENSION
    return Role.TEXT

def classify_column(colname: str, values: Sequence[Any] | pd.Series, cfg: Any = None) -> Role:
    """
    Assign exactly one role to a column.

    Name rules are tried in priority order; a stage-flag name only sticks when
    enough sampled values are boolean-like, otherwise the next rule group is
    tried. With no name match the sampled values decide. Without any sampled
    values the name alone decides, and unnamed columns are text.
    """
    vals = values if isinstance(values, pd.Series) else pd.Series(list(values), dtype=object)
    vals = vals.dropna()
    stage_min = float(getattr(cfg, "stage_flag_min_ratio", 0.5))

    for role in name_roles(colname):
        if role is Role.STAGE_FLAG:
            if not vals.empty and boolean_like_ratio(vals) < stage_min:
                continue
        return role
    return value_role_guess(vals, cfg)

def funnel_order_index(colname: str) -> int:
    base = FLAG_PREFIX_RE.sub("", colname or "").lower()
    for i, keyword in enumerate(FUNNEL_ORDER):
        if keyword in base:
            return i
    return UNKNOWN_STAGE_ORDER

def sort_stage_flags(columns: Sequence[str]) -> list[str]:
    # sorted() is stable, so unmatched stages keep their input order
    return sorted(columns, key=funnel_order_index)

def strip_flag_prefix(colname: str) -> Optional[str]:
    stripped = FLAG_PREFIX_RE.sub("", colname or "")
    return stripped if stripped != colname else None
