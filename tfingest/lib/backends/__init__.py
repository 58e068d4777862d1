"""State backends.

Resolves a backend declaration into a validated state document. The set of
backend kinds is closed (local file, S3 object) and dispatched in one place.

Usage:
    from tfingest.lib.backends import BackendDeclaration, resolve

    backend = resolve(BackendDeclaration.local("dev", "./terraform.tfstate"))
    backend = resolve(
        BackendDeclaration.s3(
            "prod",
            "terraform-state-prod",
            "network/terraform.tfstate",
            role_arn="arn:aws:iam::123456789012:role/ReadState",
        )
    )
"""

from __future__ import annotations

import logging
from typing import Optional

from tfingest.lib.backends.base import (
    BackendConfig,
    BackendDeclaration,
    BackendKind,
    LocalBackendConfig,
    ResolvedBackend,
    S3BackendConfig,
)
from tfingest.lib.backends.local import read_local_state
from tfingest.lib.backends.s3 import (
    S3StateReader,
    SessionFactory,
    classify_fetch_error,
    parse_role_arn,
    read_s3_state,
)
from tfingest.lib.errors import ConfigError

logger = logging.getLogger(__name__)

__all__ = [
    "BackendConfig",
    "BackendDeclaration",
    "BackendKind",
    "LocalBackendConfig",
    "ResolvedBackend",
    "S3BackendConfig",
    "S3StateReader",
    "classify_fetch_error",
    "parse_role_arn",
    "resolve",
]


def resolve(
    declaration: BackendDeclaration,
    *,
    session_factory: Optional[SessionFactory] = None,
    timeout: Optional[float] = None,
) -> ResolvedBackend:
    """Fetch and validate the state of a declared backend.

    Resolution only reads from the filesystem or network, so resolving the
    same declaration twice yields the same document unless the source
    changed in between.

    Args:
        declaration: The backend to resolve
        session_factory: boto3 Session factory (S3 only)
        timeout: Connect/read timeout in seconds for network calls (S3 only)

    Returns:
        ResolvedBackend carrying the backend's name, kind and state

    Raises:
        ConfigError: Unsupported backend kind
        ResolutionError: Any failure reading or validating the state
    """
    config = declaration.config
    if declaration.kind is BackendKind.LOCAL and isinstance(config, LocalBackendConfig):
        state = read_local_state(declaration.name, config)
    elif declaration.kind is BackendKind.S3 and isinstance(config, S3BackendConfig):
        state = read_s3_state(
            declaration.name,
            config,
            session_factory=session_factory,
            timeout=timeout,
        )
    else:
        raise ConfigError(
            "unsupported backend",
            backend=declaration.name,
            field="backend",
            value=declaration.kind,
        )

    logger.info(
        "Resolved %s backend %s (serial=%d, lineage=%s, resources=%d)",
        declaration.kind.value,
        declaration.name,
        state.serial,
        state.lineage,
        len(state.resources),
    )
    return ResolvedBackend(name=declaration.name, kind=declaration.kind, state=state)
