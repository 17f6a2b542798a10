from __future__ import annotations

# Public API re-exports (keep small & stable)
from .detector import (
    detect_capabilities,
    has_capabilities_changed,
    capabilities_to_column_mappings,
)
from .model import DatasetCapabilities, SchemaDrift
from .roles import Role
