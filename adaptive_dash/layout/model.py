from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Bumped whenever the compiled layout shape changes.
LAYOUT_VERSION = 2
# Bumped whenever the compiler emits something different for the same input;
# back to 0 when LAYOUT_VERSION moves.
COMPILER_REVISION = 2
COMPILER_VERSION = f"adaptive-dash-compiler/{LAYOUT_VERSION}.{COMPILER_REVISION}"


@dataclass(frozen=True)
class Position:
    row: int
    col: int
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {"row": self.row, "col": self.col, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DiscardInfo:
    item: str
    type: str  # tab | widget | kpi | chart | funnel_stage
    reason: str
    fallback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"item": self.item, "type": self.type, "reason": self.reason, "fallback": self.fallback}


@dataclass
class CompiledWidget:
    id: str
    type: str
    config: Dict[str, Any]
    position: Position
    original_type: Optional[str] = None
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "config": self.config,
            "position": self.position.to_dict(),
        }
        if self.original_type:
            out["original_type"] = self.original_type
            out["fallback_reason"] = self.fallback_reason
        return out


@dataclass
class CompiledTab:
    id: str
    label: str
    icon: str
    widgets: List[CompiledWidget] = field(default_factory=list)
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "icon": self.icon,
            "widgets": [w.to_dict() for w in self.widgets],
            "fallback_reason": self.fallback_reason,
        }


@dataclass(frozen=True)
class CompiledFilter:
    id: str
    type: str  # date_range | multiselect
    column: str
    label: str
    default_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "column": self.column,
            "label": self.label,
            "default_value": self.default_value,
        }


@dataclass(frozen=True)
class BindingInfo:
    dataset_ref: Optional[str]
    mapping_version: int
    schema_hash: str
    column_names: List[str]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset_ref": self.dataset_ref,
            "mapping_version": self.mapping_version,
            "schema_hash": self.schema_hash,
            "column_names": list(self.column_names),
            "created_at": self.created_at,
        }


@dataclass
class CompiledLayout:
    version: int
    tabs: List[CompiledTab]
    default_tab: str
    global_filters: List[CompiledFilter]
    binding: BindingInfo
    created_at: str
    compiler_version: str = COMPILER_VERSION

    def tab(self, tab_id: str) -> Optional[CompiledTab]:
        return next((t for t in self.tabs if t.id == tab_id), None)

    def widgets(self) -> List[CompiledWidget]:
        return [w for t in self.tabs for w in t.widgets]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "tabs": [t.to_dict() for t in self.tabs],
            "default_tab": self.default_tab,
            "global_filters": [f.to_dict() for f in self.global_filters],
            "binding": self.binding.to_dict(),
            "created_at": self.created_at,
            "compiler_version": self.compiler_version,
        }
