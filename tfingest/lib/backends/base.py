"""Backend declaration and resolved-backend types.

A backend declaration is a closed tagged variant: the ``kind`` discriminator
selects exactly one settings type.

    local -> LocalBackendConfig(path)
    s3    -> S3BackendConfig(bucket, key, region, role_arn)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from tfingest.lib.errors import ConfigError
from tfingest.lib.state import StateDocument

__all__ = [
    "BackendKind",
    "LocalBackendConfig",
    "S3BackendConfig",
    "BackendConfig",
    "BackendDeclaration",
    "ResolvedBackend",
]


class BackendKind(str, Enum):
    """Where a backend's state lives."""

    LOCAL = "local"
    S3 = "s3"

    @classmethod
    def parse(cls, value: str, *, backend: Optional[str] = None) -> "BackendKind":
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ConfigError(
                f"unsupported backend '{value}'. Valid options: {valid}",
                backend=backend,
                field="backend",
                value=value,
            ) from None


@dataclass(frozen=True)
class LocalBackendConfig:
    """State read from a file on the local filesystem."""

    path: str

    def describe(self) -> Dict[str, Any]:
        return {"path": self.path}


@dataclass(frozen=True)
class S3BackendConfig:
    """State read from an S3 object.

    ``region`` is discovered from the bucket when omitted. ``role_arn``
    names a role to assume (one hop) before fetching the object.
    """

    bucket: str
    key: str
    region: Optional[str] = None
    role_arn: Optional[str] = None

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    def describe(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"bucket": self.bucket, "key": self.key}
        if self.region:
            info["region"] = self.region
        if self.role_arn:
            info["role_arn"] = self.role_arn
        return info


BackendConfig = Union[LocalBackendConfig, S3BackendConfig]

_CONFIG_TYPES = {
    BackendKind.LOCAL: LocalBackendConfig,
    BackendKind.S3: S3BackendConfig,
}


@dataclass(frozen=True)
class BackendDeclaration:
    """A named backend as declared in configuration."""

    name: str
    kind: BackendKind
    config: BackendConfig

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("backend name is required", field="name")
        expected = _CONFIG_TYPES.get(self.kind)
        if expected is None or not isinstance(self.config, expected):
            kind = getattr(self.kind, "value", self.kind)
            raise ConfigError(
                f"settings do not match backend kind '{kind}'",
                backend=self.name,
                field="config",
                value=type(self.config).__name__,
            )

    @classmethod
    def local(cls, name: str, path: str) -> "BackendDeclaration":
        return cls(name, BackendKind.LOCAL, LocalBackendConfig(path))

    @classmethod
    def s3(
        cls,
        name: str,
        bucket: str,
        key: str,
        *,
        region: Optional[str] = None,
        role_arn: Optional[str] = None,
    ) -> "BackendDeclaration":
        return cls(name, BackendKind.S3, S3BackendConfig(bucket, key, region, role_arn))


@dataclass(frozen=True)
class ResolvedBackend:
    """A declaration's identity paired with its fetched, validated state.

    Created once per run and never mutated.
    """

    name: str
    kind: BackendKind
    state: StateDocument

    def __repr__(self) -> str:
        return (
            f"ResolvedBackend(name={self.name!r}, kind={self.kind.value!r}, "
            f"serial={self.state.serial}, lineage={self.state.lineage!r})"
        )
