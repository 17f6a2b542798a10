from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .roles import Role


@dataclass(frozen=True)
class DatasetCapabilities:
    """Immutable snapshot of what a dataset supports (time axis, funnel, dimensions, metrics)."""
    has_time: bool = False
    time_column: Optional[str] = None
    stage_flags: Tuple[str, ...] = ()
    dimensions: Tuple[str, ...] = ()
    metrics: Tuple[str, ...] = ()
    currency_metrics: Tuple[str, ...] = ()
    percent_metrics: Tuple[str, ...] = ()
    id_column: Optional[str] = None
    row_count: int = 0
    schema_hash: str = ""
    columns: Tuple[str, ...] = ()
    # read-only; columns in `unresolved` map to Role.TEXT
    roles: Mapping[str, Role] = field(default_factory=dict)
    unresolved: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", MappingProxyType(dict(self.roles)))

    @property
    def stage_flags_count(self) -> int:
        return len(self.stage_flags)

    @property
    def dimensions_count(self) -> int:
        return len(self.dimensions)

    @property
    def metrics_count(self) -> int:
        return len(self.metrics)

    def role_of(self, column: str) -> Role:
        return self.roles.get(column, Role.TEXT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_time": self.has_time,
            "time_column": self.time_column,
            "stage_flags": list(self.stage_flags),
            "stage_flags_count": self.stage_flags_count,
            "dimensions": list(self.dimensions),
            "dimensions_count": self.dimensions_count,
            "metrics": list(self.metrics),
            "metrics_count": self.metrics_count,
            "currency_metrics": list(self.currency_metrics),
            "percent_metrics": list(self.percent_metrics),
            "id_column": self.id_column,
            "row_count": self.row_count,
            "schema_hash": self.schema_hash,
            "columns": list(self.columns),
            "roles": {c: r.value for c, r in self.roles.items()},
            "unresolved": list(self.unresolved),
        }


@dataclass(frozen=True)
class SchemaDrift:
    changed: bool
    added_columns: List[str]
    removed_columns: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changed": self.changed,
            "added_columns": list(self.added_columns),
            "removed_columns": list(self.removed_columns),
        }
