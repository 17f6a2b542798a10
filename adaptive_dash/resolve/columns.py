from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..utils.fp import unique_stable

STRATEGIES = ("exact", "prefix", "alias", "partial")
DEFAULT_FLAG_PREFIX = "st_"

# Canonical business term -> known real-world spellings.
COLUMN_ALIASES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "entrada": ("entrada", "entradas", "entry", "lead_entrada"),
    "lead": ("lead", "leads", "total_leads", "cadastro", "cadastros"),
    "lead_ativo": ("lead_ativo", "ativo", "active_lead"),
    "qualificado": ("qualificado", "qualificados", "qualified", "lead_qualificado", "mql", "sql"),
    "agendado": ("agendado", "agendada", "agendamento", "exp_agendada", "reuniao_agendada", "scheduled"),
    "realizado": ("realizado", "realizada", "exp_realizada", "reuniao_realizada", "attended"),
    "proposta": ("proposta", "propostas", "proposal"),
    "venda": ("venda", "vendas", "sale", "sales", "won", "ganho", "fechado", "closed"),
    "perdido": ("perdido", "perdida", "lost"),
    "aluno": ("aluno", "alunos", "aluno_ativo", "student"),
    "created_at": ("created_at", "createdat", "inserted_at", "dia", "data", "date", "timestamp"),
    "custo": ("custo", "custo_total", "cost", "spend", "investimento", "gasto"),
    "receita": ("receita", "revenue", "faturamento", "valor_venda"),
    "cpl": ("cpl", "custo_por_lead", "cost_per_lead"),
    "cac": ("cac", "custo_aquisicao", "acquisition_cost"),
    "origem": ("origem", "source", "utm_source", "canal", "channel"),
    "vendedor": ("vendedor", "seller", "owner", "responsavel"),
    "unidade": ("unidade", "unit", "filial", "branch"),
})


@dataclass(frozen=True)
class ResolutionRecord:
    declared: str
    resolved: Optional[str]
    strategy: Optional[str]
    attempted: Tuple[str, ...] = ()
    candidates: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.resolved is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "declared": self.declared,
            "resolved": self.resolved,
            "strategy": self.strategy,
            "attempted": list(self.attempted),
            "candidates": list(self.candidates),
        }


def _toggle_prefix(name: str, prefix: str) -> str:
    p = prefix.lower()
    return name[len(p):] if name.startswith(p) else p + name

def _alias_spellings(key: str, aliases: Mapping[str, Sequence[str]], prefix: str) -> List[str]:
    bare = key[len(prefix):] if key.startswith(prefix) else key
    for canonical, spellings in aliases.items():
        names = [canonical.lower(), *(s.lower() for s in spellings)]
        if bare in names:
            return names
    return []

def resolve_column(
    declared: str,
    actual_columns: Iterable[str],
    *,
    aliases: Mapping[str, Sequence[str]] = COLUMN_ALIASES,
    flag_prefix: str = DEFAULT_FLAG_PREFIX,
) -> ResolutionRecord:
    """
    Map a declared column reference onto the dataset's current columns.

    Strategies run in order and stop at the first hit: case-insensitive exact
    match, flag-prefix toggle, alias table (bare and prefixed), then a unique
    substring match in either direction. An ambiguous substring match fails
    and reports every candidate.
    """
    columns = [str(c) for c in actual_columns]
    by_lower: Dict[str, str] = {}
    for c in columns:
        by_lower.setdefault(c.lower(), c)

    key = (declared or "").strip().lower()
    prefix = (flag_prefix or "").lower()
    attempted: List[str] = []

    def _try(variant: str) -> Optional[str]:
        attempted.append(variant)
        return by_lower.get(variant)

    def _record(resolved: Optional[str], strategy: Optional[str], candidates: Sequence[str] = ()) -> ResolutionRecord:
        return ResolutionRecord(
            declared=declared,
            resolved=resolved,
            strategy=strategy,
            attempted=tuple(unique_stable(attempted)),
            candidates=tuple(candidates),
        )

    if not key:
        return _record(None, None)

    # 1) exact
    hit = _try(key)
    if hit:
        return _record(hit, "exact")

    # 2) flag prefix on/off
    if prefix:
        hit = _try(_toggle_prefix(key, prefix))
        if hit:
            return _record(hit, "prefix")

    # 3) alias table
    for spelling in _alias_spellings(key, aliases, prefix):
        for variant in ((spelling, prefix + spelling) if prefix else (spelling,)):
            hit = _try(variant)
            if hit:
                return _record(hit, "alias")

    # 4) unique substring, either direction
    candidates = [c for c in columns if key in c.lower() or (c and c.lower() in key)]
    if len(candidates) == 1:
        return _record(candidates[0], "partial", candidates)
    return _record(None, None, candidates)
