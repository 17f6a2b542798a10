from __future__ import annotations
import json, logging, sys, time
from typing import Any, Dict

ROOT_LOGGER = "adaptive_dash"

# LogRecord attributes that are not user-supplied `extra` fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}

class JsonFormatter(logging.Formatter):
    """One JSON object per line: level, logger, component, event message, UTC time, then extras."""
    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "name": record.name,
            "component": record.name.rpartition(".")[2],
            "message": record.getMessage(),
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(
            (k, v) for k, v in vars(record).items()
            if k not in _RECORD_ATTRS and k not in payload
        )
        return json.dumps(payload, separators=(",", ":"), default=str)

def _level(level: Any) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)

def get_logger(name: str = ROOT_LOGGER, level: Any = "INFO", structured_json: bool = True) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(_level(level))
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JsonFormatter() if structured_json
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
    return logger

def logger_from_cfg(component: str, cfg: Any = None) -> logging.Logger:
    """Component logger (`adaptive_dash.<component>`) configured from the `[logging]` section."""
    lc = getattr(cfg, "logging", None)
    return get_logger(
        f"{ROOT_LOGGER}.{component}",
        getattr(lc, "level", "INFO"),
        bool(getattr(lc, "structured_json", True)),
    )
