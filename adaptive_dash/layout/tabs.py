from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List

from ..capabilities.model import DatasetCapabilities
from .catalog import MANDATORY_TABS, TAB_BY_ID, TAB_CATALOG, TabSpec
from .model import DiscardInfo


@dataclass
class TabGenerationResult:
    tabs: List[TabSpec] = field(default_factory=list)
    default_tab: str = "overview"
    discarded: List[DiscardInfo] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def tab_ids(self) -> List[str]:
        return [t.id for t in self.tabs]


def generate_tabs(caps: DatasetCapabilities, cfg: Any = None) -> TabGenerationResult:
    """
    Pick the tab set a dataset supports.

    Tabs whose requirement fails are discarded with the reason and the tab
    their content falls back to; overview and table are always present.
    """
    suggest_at = int(getattr(getattr(cfg, "compiler", None), "suggest_funnel_at_stages", 5))
    res = TabGenerationResult()

    for tab in TAB_CATALOG:
        met, reason = tab.requires.check(caps)
        if met:
            res.tabs.append(tab)
            continue
        fallback = TAB_BY_ID[tab.fallback_to].label if tab.fallback_to else None
        res.discarded.append(DiscardInfo(tab.label, "tab", reason or "Requirements not met", fallback))

    for tab_id in MANDATORY_TABS:
        if tab_id not in res.tab_ids:
            res.tabs.append(TAB_BY_ID[tab_id])
            res.warnings.append(f"{TAB_BY_ID[tab_id].label} tab added as a mandatory fallback")

    res.tabs.sort(key=lambda t: t.priority)

    if caps.stage_flags_count >= suggest_at:
        res.warnings.append("High-confidence funnel detected; consider the Funnel tab as default")
    if len(res.tabs) <= 2:
        res.warnings.append("Only the minimal tabs are available; the dataset may need more columns")
    if not caps.has_time and not caps.id_column:
        res.warnings.append("Dataset has no time or id column; features are limited")
    return res

