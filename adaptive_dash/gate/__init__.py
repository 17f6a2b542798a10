from __future__ import annotations

from .datapath import RowSet, InMemoryRowFetcher, LocalDataPath, HttpDataPath
from .smoke import (
    GateCheckResult,
    SmokeTestResult,
    format_gate_result,
    run_gate_check,
    run_smoke_test,
    validate_render_shape,
)
