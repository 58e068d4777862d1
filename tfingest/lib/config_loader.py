"""YAML configuration loader for backend declarations.

Example YAML (backends.yaml):
    backends:
      - name: dev
        backend: local
        config:
          path: ./terraform.tfstate

      - name: prod
        backend: s3
        config:
          bucket: ${STATE_BUCKET}
          key: network/terraform.tfstate
          region: us-east-1
          role_arn: arn:aws:iam::123456789012:role/ReadState

Usage:
    from tfingest.lib.config_loader import load_config
    from tfingest.lib.registry import BackendRegistry

    registry = BackendRegistry.from_declarations(load_config("./backends.yaml"))
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from tfingest.lib.backends import (
    BackendDeclaration,
    BackendKind,
    LocalBackendConfig,
    S3BackendConfig,
)
from tfingest.lib.env import expand_settings
from tfingest.lib.errors import ConfigError

logger = logging.getLogger(__name__)

__all__ = [
    "load_config",
    "load_config_from_string",
    "parse_backend_declarations",
    "parse_backend_declaration",
]

# setting name -> required
LOCAL_SETTINGS = {"path": True}
S3_SETTINGS = {"bucket": True, "key": True, "region": False, "role_arn": False}

_SETTINGS_BY_KIND = {
    BackendKind.LOCAL: LOCAL_SETTINGS,
    BackendKind.S3: S3_SETTINGS,
}


def _resolve_path(path: str, config_dir: Path) -> str:
    """Resolve "./" and "../" paths relative to the config file directory."""
    if os.path.isabs(path):
        return path
    if path.startswith("./") or path.startswith("../"):
        return str(config_dir / path)
    return path


def _check_settings(
    name: str, kind: BackendKind, settings: Dict[str, Any]
) -> Dict[str, Optional[str]]:
    allowed = _SETTINGS_BY_KIND[kind]

    unknown = sorted(set(settings) - set(allowed))
    if unknown:
        raise ConfigError(
            f"cannot parse backend config: unknown setting(s) {', '.join(unknown)}. "
            f"Valid options: {', '.join(allowed)}",
            backend=name,
            field=unknown[0],
        )

    values: Dict[str, Optional[str]] = {}
    for key, required in allowed.items():
        value = settings.get(key)
        if value is None or value == "":
            if required:
                raise ConfigError(
                    f"{kind.value} backend requires '{key}'",
                    backend=name,
                    field=key,
                )
            values[key] = None
            continue
        if not isinstance(value, str):
            raise ConfigError(
                f"'{key}' must be a string",
                backend=name,
                field=key,
                value=value,
            )
        values[key] = value
    return values


def parse_backend_declaration(
    entry: Dict[str, Any],
    config_dir: Optional[Path] = None,
    *,
    strict_env: bool = False,
) -> BackendDeclaration:
    """Create a BackendDeclaration from one entry of the ``backends`` list.

    Raises:
        ConfigError: If the entry is invalid
    """
    if not isinstance(entry, dict):
        raise ConfigError("each backend must be a mapping", value=entry)

    name = entry.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError("backend name is required", field="name", value=name)

    if "backend" not in entry:
        raise ConfigError("backend kind is required", backend=name, field="backend")
    kind = BackendKind.parse(entry["backend"], backend=name)

    settings = entry.get("config") or {}
    if not isinstance(settings, dict):
        raise ConfigError(
            "config must be a mapping", backend=name, field="config", value=settings
        )
    settings = expand_settings(settings, backend=name, strict=strict_env)
    values = _check_settings(name, kind, settings)

    if kind is BackendKind.LOCAL:
        path = _resolve_path(values["path"] or "", config_dir or Path.cwd())
        return BackendDeclaration(name, kind, LocalBackendConfig(path=path))

    return BackendDeclaration(
        name,
        kind,
        S3BackendConfig(
            bucket=values["bucket"] or "",
            key=values["key"] or "",
            region=values["region"],
            role_arn=values["role_arn"],
        ),
    )


def parse_backend_declarations(
    data: Any,
    config_dir: Optional[Path] = None,
    *,
    strict_env: bool = False,
) -> List[BackendDeclaration]:
    """Parse the top-level configuration mapping into declarations.

    Declaration order is preserved; it decides which backend is current
    when none is selected.

    Raises:
        ConfigError: No backends, duplicate names, or an invalid entry
    """
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping with a 'backends' list")

    entries = data.get("backends")
    if not entries:
        raise ConfigError("no config were provided", field="backends")
    if not isinstance(entries, list):
        raise ConfigError("'backends' must be a list", field="backends")

    declarations: List[BackendDeclaration] = []
    seen: set = set()
    for entry in entries:
        declaration = parse_backend_declaration(entry, config_dir, strict_env=strict_env)
        if declaration.name in seen:
            raise ConfigError(
                f"duplicate backend name '{declaration.name}'",
                backend=declaration.name,
                field="name",
            )
        seen.add(declaration.name)
        declarations.append(declaration)

    logger.debug("Parsed %d backend declaration(s)", len(declarations))
    return declarations


def load_config_from_string(
    text: str,
    config_dir: Optional[Path] = None,
    *,
    strict_env: bool = False,
) -> List[BackendDeclaration]:
    """Parse backend declarations from YAML text."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML: {exc}") from exc
    return parse_backend_declarations(data, config_dir, strict_env=strict_env)


def load_config(
    path: Union[str, Path],
    *,
    strict_env: bool = False,
) -> List[BackendDeclaration]:
    """Load backend declarations from a YAML file.

    Relative local paths are resolved from the file's directory.

    Raises:
        ConfigError: The file is missing, unreadable or invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"cannot read config file {path}", details={"path": str(path)}
        ) from exc

    logger.info("Loading backend config from %s", path)
    return load_config_from_string(text, path.parent, strict_env=strict_env)
