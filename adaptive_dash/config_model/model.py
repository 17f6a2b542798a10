from __future__ import annotations
from typing import List, Optional
from pathlib import Path
import os
import sys
from pydantic import (
    BaseModel,
    Field,
    model_validator,
    ConfigDict,
    PrivateAttr,
)

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


class ConfigError(RuntimeError):
    """Raised when a config file cannot be read or parsed."""


# ---------- Leaf models ----------

class EnvCfg(BaseModel):
    project_name: str = "adaptive-dash"
    timezone: str = "UTC"


class LoggingCfg(BaseModel):
    level: str = "INFO"
    structured_json: bool = True


class DetectorCfg(BaseModel):
    sample_rows: int = Field(100, ge=1)
    stage_flag_min_ratio: float = Field(0.5, ge=0.0, le=1.0)
    value_shape_min_ratio: float = Field(0.8, ge=0.0, le=1.0)
    dimension_min_distinct: int = 2
    dimension_max_distinct: int = 20

    @model_validator(mode="after")
    def _distinct_bounds_ok(self):
        if self.dimension_min_distinct > self.dimension_max_distinct:
            raise ValueError("dimension_min_distinct must be <= dimension_max_distinct")
        return self


class CompilerCfg(BaseModel):
    max_kpis: int = Field(8, ge=2)
    min_kpis: int = Field(2, ge=1)
    funnel_max_stages: int = 7
    funnel_min_stages: int = 3
    trend_max_metrics: int = 4
    stage_area_max_flags: int = 5
    explore_max_rankings: int = 3
    ranking_limit: int = 10
    overview_ranking_limit: int = 5
    efficiency_max_kpis: int = 4
    cost_trend_max_metrics: int = 3
    filter_max_dimensions: int = 3
    table_page_size: int = 50
    suggest_funnel_at_stages: int = 5


class AggregationCfg(BaseModel):
    max_rows: int = Field(5000, ge=1)
    default_ranking_limit: int = 10
    low_time_parse_rate: float = 0.7
    high_null_rate: float = 0.5
    funnel_inversion_tolerance: float = 0.10
    top_values: int = 5
    null_dimension_label: str = "Other"


class InsightsCfg(BaseModel):
    stale_warning_days: int = 3
    stale_critical_days: int = 7
    missing_dates_critical: int = 3
    bottleneck_dropoff: float = 50.0
    bottleneck_critical: float = 70.0
    opportunity_change: float = 20.0
    opportunity_high: float = 50.0
    problem_change: float = 30.0
    problem_critical: float = 50.0
    outlier_sigma: float = 2.0
    outlier_max_columns: int = 5
    outlier_max_days: int = 3
    missing_dates_penalty_cap: float = 30.0
    missing_dates_penalty_per_day: float = 5.0
    stale_penalty_cap: float = 20.0
    stale_penalty_per_day: float = 3.0
    zero_cost_penalty: float = 10.0
    cost_keywords: List[str] = ["custo", "cost", "investimento", "spend", "gasto"]
    volume_keywords: List[str] = ["lead", "cadastro"]
    lower_is_better_keywords: List[str] = ["custo", "cpl", "cac", "cost"]


class GateCfg(BaseModel):
    min_kpis: int = 1
    min_rows: int = 0
    check_invalid_numbers: bool = True
    lookback_days: int = Field(30, ge=1)
    timeout_seconds: float = 30.0
    base_url: Optional[str] = None


# ---------- Root ----------

class RootCfg(BaseModel):
    model_config = ConfigDict(extra="ignore")

    env: EnvCfg = EnvCfg()
    logging: LoggingCfg = LoggingCfg()
    detector: DetectorCfg = DetectorCfg()
    compiler: CompilerCfg = CompilerCfg()
    aggregation: AggregationCfg = AggregationCfg()
    insights: InsightsCfg = InsightsCfg()
    gate: GateCfg = GateCfg()

    # Private attribute (not a field); where the file was loaded from
    _config_dir: Optional[Path] = PrivateAttr(default=None)

    @property
    def config_dir(self) -> Optional[Path]:
        return self._config_dir

    @classmethod
    def from_toml(cls, path: str | os.PathLike[str]) -> "RootCfg":
        p = Path(path)

        def _parse_raw_dict() -> dict:
            try:
                with p.open("rb") as f:
                    return tomllib.load(f)
            except OSError as e:
                raise ConfigError(f"Cannot read config at {p}: {e}") from e
            except tomllib.TOMLDecodeError:
                pass

            # Retry: decode with utf-8-sig (strips BOM) and stray zero-width chars
            text = p.read_text(encoding="utf-8-sig", errors="replace")
            cleaned = text.strip().lstrip("\ufeff\u200b\u200c\u200d\u2060")
            try:
                return tomllib.loads(cleaned)
            except tomllib.TOMLDecodeError as e:
                snippet = cleaned[:80].replace("\n", "\\n")
                raise ConfigError(
                    f"Failed to parse TOML at {p}. First chars: {snippet!r}"
                ) from e

        raw = _parse_raw_dict()
        cfg = cls.model_validate(raw)
        cfg._config_dir = p.parent.resolve()
        return cfg

    @classmethod
    def load(cls, path: str | None = None) -> "RootCfg":
        final = Path(path or os.environ.get("ADAPTIVE_DASH_CFG", "config/config.toml")).resolve()
        return cls.from_toml(final)


def load_config(path: str | None = None) -> RootCfg:
    return RootCfg.load(path)
