"""Row production for the tf_data / tf_resources / tf_resource_instances tables.

The tables form a parent/child hierarchy::

    tf_data                  one row per backend's current state
      tf_resources           one row per resource   (running_id -> tf_data.cq_id)
        tf_resource_instances one row per instance   (resource_id -> tf_resources.cq_id)

Rows are produced lazily by walking the hierarchy one level at a time and
are plain dicts keyed by column name. ``TableRows.to_frames()`` converts a
finished run into pandas DataFrames for tabular consumers.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from tfingest.lib.backends import ResolvedBackend
from tfingest.lib.derivers import (
    ABSENT,
    derive_instance_attributes_json,
    derive_instance_id,
    derive_provider_type,
)
from tfingest.lib.filters import lineage_key
from tfingest.lib.logging import get_ingest_logger
from tfingest.lib.registry import BackendRegistry
from tfingest.lib.state import Instance, Resource, StateDocument
from tfingest.lib.walker import resolve_instances, resolve_resources, resolve_state

logger = logging.getLogger(__name__)

__all__ = [
    "TableDef",
    "TF_DATA",
    "TF_RESOURCES",
    "TF_RESOURCE_INSTANCES",
    "TABLES",
    "BackendRows",
    "TableRows",
    "build_state_row",
    "build_resource_row",
    "build_instance_row",
    "iter_backend_rows",
    "fetch_backend_rows",
    "fetch_tables",
]

Row = Dict[str, Any]


@dataclass(frozen=True)
class TableDef:
    """Name, columns and parent link of an output table."""

    name: str
    columns: Tuple[str, ...]
    parent: Optional[str] = None
    parent_column: Optional[str] = None


TF_DATA = TableDef(
    name="tf_data",
    columns=(
        "cq_id",
        "backend",
        "backend_name",
        "version",
        "terraform_version",
        "serial",
        "lineage",
    ),
)

TF_RESOURCES = TableDef(
    name="tf_resources",
    columns=(
        "cq_id",
        "running_id",
        "module",
        "mode",
        "type",
        "name",
        "provider_path",
        "provider",
    ),
    parent="tf_data",
    parent_column="running_id",
)

TF_RESOURCE_INSTANCES = TableDef(
    name="tf_resource_instances",
    columns=(
        "cq_id",
        "resource_id",
        "internal_id",
        "schema_version",
        "attribute",
        "dependencies",
        "create_before_destroy",
    ),
    parent="tf_resources",
    parent_column="resource_id",
)

TABLES: Tuple[TableDef, ...] = (TF_DATA, TF_RESOURCES, TF_RESOURCE_INSTANCES)


def _new_id() -> str:
    return str(uuid.uuid4())


def build_state_row(backend: ResolvedBackend, state: StateDocument) -> Row:
    return {
        "cq_id": _new_id(),
        "backend": backend.kind.value,
        "backend_name": backend.name,
        "version": state.version,
        "terraform_version": state.terraform_version,
        "serial": state.serial,
        "lineage": state.lineage,
    }


def build_resource_row(resource: Resource, parent_id: str) -> Row:
    provider = derive_provider_type(resource)
    return {
        "cq_id": _new_id(),
        "running_id": parent_id,
        "module": resource.module,
        "mode": resource.mode,
        "type": resource.type,
        "name": resource.name,
        "provider_path": resource.provider_config,
        "provider": None if provider is ABSENT else provider,
    }


def build_instance_row(instance: Instance, parent_id: str) -> Row:
    """Build an instance row.

    Raises:
        SerializationError: The instance attributes cannot be serialized
    """
    internal_id = derive_instance_id(instance)
    if internal_id is ABSENT:
        internal_id = None
    elif internal_id is not None and not isinstance(internal_id, str):
        internal_id = json.dumps(internal_id)
    return {
        "cq_id": _new_id(),
        "resource_id": parent_id,
        "internal_id": internal_id,
        "schema_version": instance.schema_version,
        "attribute": derive_instance_attributes_json(instance).decode("utf-8"),
        "dependencies": list(instance.dependencies),
        "create_before_destroy": instance.create_before_destroy,
    }


def iter_backend_rows(view: BackendRegistry) -> Iterator[Tuple[str, Row]]:
    """Yield ``(table_name, row)`` for the view's current backend.

    Children follow their parent row; nothing is yielded for an empty
    registry.
    """
    backend = view.current()
    if backend is None:
        return
    log = get_ingest_logger(__name__, backend=backend.name, kind=backend.kind.value)

    for state in resolve_state(backend):
        state_row = build_state_row(backend, state)
        yield TF_DATA.name, state_row
        resource_count = instance_count = 0
        for resource in resolve_resources(state):
            resource_row = build_resource_row(resource, state_row["cq_id"])
            resource_count += 1
            yield TF_RESOURCES.name, resource_row
            for instance in resolve_instances(resource):
                instance_count += 1
                yield TF_RESOURCE_INSTANCES.name, build_instance_row(
                    instance, resource_row["cq_id"]
                )
        log.info(
            "Produced rows for backend %s: resources=%d instances=%d",
            backend.name,
            resource_count,
            instance_count,
        )


@dataclass
class BackendRows:
    """Rows and delete filter produced for one backend."""

    backend_name: str
    delete_filter: Dict[str, Any]
    rows: Dict[str, List[Row]] = field(
        default_factory=lambda: {table.name: [] for table in TABLES}
    )


def fetch_backend_rows(view: BackendRegistry) -> Optional[BackendRows]:
    """Collect every row of the view's current backend.

    Returns None when the registry is empty.
    """
    backend = view.current()
    if backend is None:
        logger.warning("No backend configured; nothing to ingest")
        return None
    result = BackendRows(backend_name=backend.name, delete_filter=lineage_key(view))
    for table_name, row in iter_backend_rows(view):
        result.rows[table_name].append(row)
    return result


@dataclass
class TableRows:
    """Rows of every table across all backends of a run."""

    backends: List[BackendRows] = field(default_factory=list)

    def rows(self, table: str) -> List[Row]:
        return [row for b in self.backends for row in b.rows.get(table, [])]

    @property
    def delete_filters(self) -> Dict[str, Dict[str, Any]]:
        return {b.backend_name: b.delete_filter for b in self.backends}

    def to_frames(self) -> Dict[str, pd.DataFrame]:
        """One DataFrame per table, columns in table order."""
        return {
            table.name: pd.DataFrame(self.rows(table.name), columns=list(table.columns))
            for table in TABLES
        }


def fetch_tables(registry: BackendRegistry) -> TableRows:
    """Produce rows for every backend in the registry, in declaration order."""
    result = TableRows()
    for view in registry.multiplex():
        backend_rows = fetch_backend_rows(view)
        if backend_rows is not None:
            result.backends.append(backend_rows)
    return result
