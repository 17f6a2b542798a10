from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List
import pytest

STAGES = ("st_entrada", "st_qualificado", "st_agendado", "st_realizado", "st_venda")
STAGE_TRUTHY = (100, 80, 50, 30, 10)


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).resolve().parents[1]

@pytest.fixture(scope="session")
def cfg_path(project_root: Path) -> Path:
    return project_root / "config" / "config.toml"

@pytest.fixture(scope="session")
def cfg(cfg_path: Path):
    from adaptive_dash.config_model.model import load_config
    return load_config(str(cfg_path))

@pytest.fixture
def tmp_out(tmp_path: Path) -> Path:
    d = tmp_path / "out"
    d.mkdir(parents=True, exist_ok=True)
    return d

@pytest.fixture
def now() -> datetime:
    # one day after the last date in the fixtures below
    return datetime(2024, 3, 11, 12, 0, 0)


def _day(i: int) -> str:
    return (date(2024, 3, 1) + timedelta(days=i)).isoformat()

@pytest.fixture
def simple_rows() -> List[Dict[str, Any]]:
    """10 daily rows: dia, leads_total, venda_total (no stage flags)."""
    leads = [12, 15, 9, 20, 18, 11, 14, 16, 13, 22]
    sales = [3, 4, 2, 6, 5, 2, 3, 4, 3, 7]
    return [
        {"dia": _day(i), "leads_total": leads[i], "venda_total": sales[i]}
        for i in range(10)
    ]

@pytest.fixture
def funnel_rows() -> List[Dict[str, Any]]:
    """100 rows whose stage flags are truthy 100/80/50/30/10 times."""
    rows = []
    for i in range(100):
        row: Dict[str, Any] = {"dia": _day(i % 10)}
        for stage, n in zip(STAGES, STAGE_TRUTHY):
            row[stage] = 1 if i < n else 0
        rows.append(row)
    return rows

@pytest.fixture
def sales_rows() -> List[Dict[str, Any]]:
    """Rows with a dimension, cost and lead volume for ranking/efficiency paths."""
    origins = ["google", "meta", "google", "organic", "meta", None, "google", "meta"]
    return [
        {
            "dia": _day(i),
            "lead_id": f"L{i:03d}",
            "origem": origins[i],
            "leads_total": 10 + i,
            "custo_total": f"R$ {100 + 10 * i},50",
            "st_entrada": "sim",
            "st_qualificado": "sim" if i % 2 == 0 else "nao",
            "st_agendado": "sim" if i % 4 == 0 else "nao",
        }
        for i in range(len(origins))
    ]
