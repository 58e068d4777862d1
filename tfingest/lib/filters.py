"""Invalidation keys derived from the current backend's state.

The host engine uses these as delete/upsert scopes: rows ingested under a
lineage (or lineage and serial) are replaced when the key changes.
"""

from __future__ import annotations

from typing import Any, Dict

from tfingest.lib.backends import ResolvedBackend
from tfingest.lib.errors import NoBackendSelectedError
from tfingest.lib.registry import BackendRegistry

__all__ = ["lineage_key", "lineage_serial_key"]


def _current(registry: BackendRegistry) -> ResolvedBackend:
    backend = registry.current()
    if backend is None:
        raise NoBackendSelectedError(
            "no backend selected",
            suggestion="Declare at least one backend before computing invalidation keys.",
        )
    return backend


def lineage_key(registry: BackendRegistry) -> Dict[str, Any]:
    """``{"lineage": ...}`` of the current backend's state."""
    return {"lineage": _current(registry).state.lineage}


def lineage_serial_key(registry: BackendRegistry) -> Dict[str, Any]:
    """``{"lineage": ..., "serial": ...}`` of the current backend's state."""
    state = _current(registry).state
    return {"lineage": state.lineage, "serial": state.serial}
