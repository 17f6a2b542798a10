from __future__ import annotations
import hashlib, json, re, uuid
from typing import Any, Iterable
from slugify import slugify as _slugify

def slugify(s: str) -> str:
    return _slugify(s, lowercase=True, separator="-")

def _json_dumps_stable(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def stable_hash(obj: Any, algo: str = "sha256") -> str:
    h = hashlib.new(algo)
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    h.update(_json_dumps_stable(obj).encode("utf-8"))
    return h.hexdigest()

def short_id(obj: Any, n: int = 10) -> str:
    return stable_hash(obj)[:n]

def make_dataset_slug(uri_or_name: str) -> str:
    base = re.sub(r"[\\/]+", "-", uri_or_name.strip())
    return slugify(base)

def schema_fingerprint(columns: Iterable[str], n: int = 16) -> str:
    """Order-independent hash of a column-name set (drift detection only)."""
    return short_id(sorted({str(c) for c in columns}), n)

def make_trace_id(prefix: str = "trace") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
