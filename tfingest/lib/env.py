"""Environment variable handling for backend settings.

Backend settings may reference the environment with ``${VAR}`` or ``$VAR``
(for example ``bucket: ${STATE_BUCKET}``). Variables can be supplied through
a ``.env`` file, loaded with python-dotenv.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from tfingest.lib.errors import ConfigError

__all__ = ["expand_env_vars", "expand_settings", "load_env_file"]

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load variables from a .env file into ``os.environ``.

    Args:
        path: Path to the .env file. If None, python-dotenv searches the
              current directory and its parents.
        override: Replace variables that are already set.

    Returns:
        True if a .env file was found and loaded.
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: str, *, strict: bool = False) -> str:
    """Substitute environment variables referenced in ``value``.

    Unset variables are left verbatim unless ``strict`` is set, in which
    case a KeyError names the missing variable.

    Example:
        >>> os.environ["STATE_BUCKET"] = "terraform-state-prod"
        >>> expand_env_vars("${STATE_BUCKET}")
        'terraform-state-prod'
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        if strict:
            raise KeyError(f"Environment variable not set: {var_name}")
        return match.group(0)

    return ENV_VAR_PATTERN.sub(replacer, value)


def expand_settings(
    settings: Dict[str, Any],
    *,
    backend: Optional[str] = None,
    strict: bool = False,
) -> Dict[str, Any]:
    """Return a copy of a backend's settings with string values expanded.

    Raises:
        ConfigError: ``strict`` is set and a referenced variable is unset.
    """
    expanded: Dict[str, Any] = {}
    for key, value in settings.items():
        if not isinstance(value, str):
            expanded[key] = value
            continue
        try:
            expanded[key] = expand_env_vars(value, strict=strict)
        except KeyError as exc:
            raise ConfigError(
                f"cannot expand setting '{key}': {exc.args[0]}",
                backend=backend,
                field=key,
                value=value,
            ) from exc
    return expanded
