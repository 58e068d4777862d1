"""Local filesystem state backend."""

from __future__ import annotations

import logging
from pathlib import Path

from tfingest.lib.backends.base import LocalBackendConfig
from tfingest.lib.errors import StateReadError
from tfingest.lib.state import StateDocument, decode_state

logger = logging.getLogger(__name__)

__all__ = ["read_local_state"]


def read_local_state(name: str, config: LocalBackendConfig) -> StateDocument:
    """Read and decode the state file of a local backend.

    Args:
        name: Backend name (for error context)
        config: Local backend settings

    Returns:
        Decoded StateDocument

    Raises:
        StateReadError: The file cannot be opened or read
        StateFormatError: The file is not valid state JSON
        UnsupportedVersionError: The state version is not supported
    """
    path = Path(config.path).expanduser()
    try:
        payload = path.read_bytes()
    except OSError as exc:
        raise StateReadError(
            f"failed to read tfstate from {config.path}",
            backend=name,
            path=str(config.path),
            cause=exc,
        ) from exc

    logger.debug("Read %d bytes of state from %s", len(payload), path)
    return decode_state(payload, backend=name, details={"path": str(config.path)})
