"""Terraform state ingestion library.

This package resolves backend declarations into validated Terraform state,
walks the state -> resource -> instance hierarchy and produces the rows and
invalidation keys consumed by a tabular engine.
"""

from tfingest.lib.backends import (
    BackendDeclaration,
    BackendKind,
    LocalBackendConfig,
    ResolvedBackend,
    S3BackendConfig,
    resolve,
)
from tfingest.lib.config_loader import load_config, load_config_from_string
from tfingest.lib.derivers import (
    ABSENT,
    derive_instance_attributes_json,
    derive_instance_id,
    derive_provider_type,
    parse_provider_type,
)
from tfingest.lib.env import expand_env_vars, load_env_file
from tfingest.lib.errors import (
    ConfigError,
    FetchFailure,
    InvalidRoleArnError,
    NoBackendSelectedError,
    ObjectFetchError,
    RegionDiscoveryError,
    ResolutionError,
    RoleAssumptionError,
    SerializationError,
    StateFormatError,
    StateReadError,
    TerraformIngestError,
    TypeMismatchError,
    UnsupportedVersionError,
)
from tfingest.lib.filters import lineage_key, lineage_serial_key
from tfingest.lib.logging import setup_logging
from tfingest.lib.registry import BackendRegistry
from tfingest.lib.state import (
    SUPPORTED_STATE_VERSION,
    Instance,
    Resource,
    StateDocument,
    decode_state,
    encode_state,
)
from tfingest.lib.tables import TABLES, TableRows, fetch_tables
from tfingest.lib.walker import resolve_instances, resolve_resources, resolve_state

__all__ = [
    # Backends
    "BackendDeclaration",
    "BackendKind",
    "LocalBackendConfig",
    "ResolvedBackend",
    "S3BackendConfig",
    "resolve",
    "BackendRegistry",
    # Config
    "load_config",
    "load_config_from_string",
    "expand_env_vars",
    "load_env_file",
    "setup_logging",
    # State
    "SUPPORTED_STATE_VERSION",
    "StateDocument",
    "Resource",
    "Instance",
    "decode_state",
    "encode_state",
    # Walking and derivation
    "resolve_state",
    "resolve_resources",
    "resolve_instances",
    "ABSENT",
    "parse_provider_type",
    "derive_provider_type",
    "derive_instance_id",
    "derive_instance_attributes_json",
    "lineage_key",
    "lineage_serial_key",
    # Tables
    "TABLES",
    "TableRows",
    "fetch_tables",
    # Errors
    "TerraformIngestError",
    "ConfigError",
    "ResolutionError",
    "StateReadError",
    "StateFormatError",
    "UnsupportedVersionError",
    "RegionDiscoveryError",
    "InvalidRoleArnError",
    "RoleAssumptionError",
    "FetchFailure",
    "ObjectFetchError",
    "SerializationError",
    "TypeMismatchError",
    "NoBackendSelectedError",
]
