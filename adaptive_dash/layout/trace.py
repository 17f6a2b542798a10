from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
import time

from ..utils.ids import make_trace_id
from .model import DiscardInfo

STEP_STATUSES = ("pending", "running", "done", "error", "skipped")


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TraceStep:
    name: str
    status: str = "pending"
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[float] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    discards: List[DiscardInfo] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": self.duration_ms,
            "outputs": self.outputs,
            "warnings": list(self.warnings),
            "discards": [d.to_dict() for d in self.discards],
            "error": self.error,
        }


@dataclass
class TraceSummary:
    tabs_generated: List[str] = field(default_factory=list)
    tabs_discarded: List[str] = field(default_factory=list)
    widgets_generated: int = 0
    widgets_discarded: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tabs_generated": list(self.tabs_generated),
            "tabs_discarded": list(self.tabs_discarded),
            "widgets_generated": self.widgets_generated,
            "widgets_discarded": list(self.widgets_discarded),
            "warnings": list(self.warnings),
        }


@dataclass
class CreationTrace:
    """
    Ordered record of what a compilation did, step by step.

    Observability only: nothing here feeds back into the compiled layout.
    """
    trace_id: str = field(default_factory=make_trace_id)
    started_at: str = field(default_factory=_utcnow_iso)
    completed_at: Optional[str] = None
    status: str = "running"
    steps: List[TraceStep] = field(default_factory=list)
    summary: TraceSummary = field(default_factory=TraceSummary)

    @contextmanager
    def step(self, name: str) -> Iterator[TraceStep]:
        """Run a block as a named step; exceptions mark the step as error and propagate."""
        st = TraceStep(name=name, status="running", started_at=_utcnow_iso())
        self.steps.append(st)
        t0 = time.perf_counter()
        try:
            yield st
        except Exception as e:
            st.status = "error"
            st.error = f"{type(e).__name__}: {e}"
            raise
        else:
            st.status = "done"
        finally:
            st.completed_at = _utcnow_iso()
            st.duration_ms = round((time.perf_counter() - t0) * 1000.0, 3)

    def skip(self, name: str, reason: str) -> TraceStep:
        st = TraceStep(name=name, status="skipped", warnings=[reason])
        self.steps.append(st)
        return st

    def complete(self, status: str) -> "CreationTrace":
        self.status = status
        self.completed_at = _utcnow_iso()
        return self

    def get(self, name: str) -> Optional[TraceStep]:
        return next((s for s in self.steps if s.name == name), None)

    @property
    def failed_steps(self) -> int:
        return sum(1 for s in self.steps if s.status == "error")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "status": self.status,
            "steps": [s.to_dict() for s in self.steps],
            "summary": self.summary.to_dict(),
            "all_discards": [d.to_dict() for d in collect_discards(self)],
            "all_warnings": collect_warnings(self),
            "failed_steps": self.failed_steps,
        }


def collect_discards(trace: CreationTrace) -> List[DiscardInfo]:
    return [d for s in trace.steps for d in s.discards]

def collect_warnings(trace: CreationTrace) -> List[str]:
    return [w for s in trace.steps for w in s.warnings]
