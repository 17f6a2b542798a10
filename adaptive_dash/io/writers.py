from __future__ import annotations
from pathlib import Path
from typing import Any, Optional
import json

def to_json_text(obj: Any) -> str:
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    return json.dumps(obj, indent=2, ensure_ascii=False, default=str)

def write_json(obj: Any, path: Optional[str | Path] = None) -> Optional[Path]:
    """Write `obj` (or its `to_dict()`) as JSON; prints to stdout when no path is given."""
    text = to_json_text(obj)
    if path is None:
        print(text)
        return None
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")
    return out
