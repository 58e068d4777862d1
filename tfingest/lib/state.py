"""Terraform state document model (state format version 4).

A state payload decodes into a three-level hierarchy::

    StateDocument
      -> Resource (one per resource block, in document order)
           -> Instance (one per count/for_each element)

Instance attributes are schema-free: their JSON is kept verbatim in a
:class:`RawJSON` wrapper and only ever inspected on demand.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from tfingest.lib.errors import StateFormatError, UnsupportedVersionError

logger = logging.getLogger(__name__)

__all__ = [
    "SUPPORTED_STATE_VERSION",
    "RawJSON",
    "OutputValue",
    "Instance",
    "Resource",
    "StateDocument",
    "decode_state",
    "encode_state",
]

SUPPORTED_STATE_VERSION = 4


@dataclass(frozen=True)
class RawJSON:
    """Opaque JSON text.

    Equality is textual; ``value()`` parses on demand and may raise
    ``ValueError`` when the text is not valid JSON.
    """

    text: str

    @classmethod
    def from_value(cls, value: Any) -> "RawJSON":
        return cls(json.dumps(value, separators=(",", ":"), sort_keys=True))

    def value(self) -> Any:
        return json.loads(self.text)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class OutputValue:
    """A root module output recorded in state.

    The value and its type constraint are kept as JSON text, like instance
    attributes, so a decoded state cannot be changed through them.
    """

    value_raw: RawJSON
    type_raw: RawJSON = RawJSON("null")
    sensitive: bool = False

    @property
    def value(self) -> Any:
        return self.value_raw.value()

    @property
    def type(self) -> Any:
        return self.type_raw.value()


@dataclass(frozen=True)
class Instance:
    """One concrete materialization of a resource."""

    schema_version: int = 0
    attributes_raw: RawJSON = field(default_factory=lambda: RawJSON("{}"))
    dependencies: Tuple[str, ...] = ()
    create_before_destroy: bool = False
    index_key: Union[int, str, None] = None
    """count index or for_each key; None for single-instance resources."""
    status: str = ""
    """Empty, or 'tainted'."""
    deposed: str = ""


@dataclass(frozen=True)
class Resource:
    """A resource block recorded in state."""

    module: str
    mode: str
    type: str
    name: str
    provider_config: str = ""
    """Encoded provider path, e.g. 'provider["registry.terraform.io/hashicorp/aws"]'."""
    each_mode: str = ""
    instances: Tuple[Instance, ...] = ()

    @property
    def address(self) -> str:
        """Resource address, e.g. 'module.net.aws_subnet.a' or 'data.aws_ami.ubuntu'."""
        local = f"{self.type}.{self.name}"
        if self.mode == "data":
            local = f"data.{local}"
        return f"{self.module}.{local}" if self.module else local


@dataclass(frozen=True)
class StateDocument:
    """A decoded, version-checked Terraform state."""

    version: int
    terraform_version: str
    serial: int
    lineage: str
    resources: Tuple[Resource, ...] = ()
    outputs: Mapping[str, OutputValue] = field(
        default_factory=lambda: MappingProxyType({}), hash=False
    )
    """Read-only view keyed by output name."""

    @property
    def instance_count(self) -> int:
        return sum(len(r.instances) for r in self.resources)


# ----------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------


class _Decoder:
    """Field-by-field decoder that reports the JSON path of a bad value."""

    def __init__(self, context: Dict[str, Any]) -> None:
        self._context = context

    def fail(self, message: str, path: str) -> StateFormatError:
        details = dict(self._context.get("details") or {})
        details["json_path"] = path
        return StateFormatError(
            f"invalid tf state file: {message}",
            backend=self._context.get("backend"),
            details=details,
        )

    def object(self, value: Any, path: str) -> Dict[str, Any]:
        if not isinstance(value, dict):
            raise self.fail(f"expected an object at {path}", path)
        return value

    def integer(self, obj: Dict[str, Any], key: str, path: str) -> int:
        value = obj.get(key, 0)
        if value is None:
            return 0
        if isinstance(value, bool) or not isinstance(value, int):
            raise self.fail(f"'{key}' must be an integer", f"{path}.{key}")
        return value

    def string(self, obj: Dict[str, Any], key: str, path: str) -> str:
        value = obj.get(key, "")
        if value is None:
            return ""
        if not isinstance(value, str):
            raise self.fail(f"'{key}' must be a string", f"{path}.{key}")
        return value

    def boolean(self, obj: Dict[str, Any], key: str, path: str) -> bool:
        value = obj.get(key, False)
        if value is None:
            return False
        if not isinstance(value, bool):
            raise self.fail(f"'{key}' must be a boolean", f"{path}.{key}")
        return value

    def array(self, obj: Dict[str, Any], key: str, path: str) -> list:
        value = obj.get(key, [])
        if value is None:
            return []
        if not isinstance(value, list):
            raise self.fail(f"'{key}' must be an array", f"{path}.{key}")
        return value

    def instance(self, value: Any, path: str) -> Instance:
        obj = self.object(value, path)
        dependencies = self.array(obj, "dependencies", path)
        for i, dep in enumerate(dependencies):
            if not isinstance(dep, str):
                raise self.fail("dependencies must be strings", f"{path}.dependencies[{i}]")
        index_key = obj.get("index_key")
        if index_key is not None and (
            isinstance(index_key, bool) or not isinstance(index_key, (int, str))
        ):
            raise self.fail("'index_key' must be an integer or string", f"{path}.index_key")
        return Instance(
            schema_version=self.integer(obj, "schema_version", path),
            attributes_raw=RawJSON.from_value(obj.get("attributes", {})),
            dependencies=tuple(dependencies),
            create_before_destroy=self.boolean(obj, "create_before_destroy", path),
            index_key=index_key,
            status=self.string(obj, "status", path),
            deposed=self.string(obj, "deposed", path),
        )

    def resource(self, value: Any, path: str) -> Resource:
        obj = self.object(value, path)
        instances = self.array(obj, "instances", path)
        return Resource(
            module=self.string(obj, "module", path),
            mode=self.string(obj, "mode", path),
            type=self.string(obj, "type", path),
            name=self.string(obj, "name", path),
            provider_config=self.string(obj, "provider", path),
            each_mode=self.string(obj, "each", path),
            instances=tuple(
                self.instance(inst, f"{path}.instances[{i}]")
                for i, inst in enumerate(instances)
            ),
        )

    def outputs(self, obj: Dict[str, Any]) -> Mapping[str, OutputValue]:
        raw = obj.get("outputs") or {}
        outputs = self.object(raw, "$.outputs")
        result: Dict[str, OutputValue] = {}
        for name, entry in outputs.items():
            path = f"$.outputs.{name}"
            entry = self.object(entry, path)
            result[name] = OutputValue(
                value_raw=RawJSON.from_value(entry.get("value")),
                type_raw=RawJSON.from_value(entry.get("type")),
                sensitive=self.boolean(entry, "sensitive", path),
            )
        return MappingProxyType(result)


def decode_state(
    payload: Union[bytes, str],
    *,
    backend: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> StateDocument:
    """Decode and validate a Terraform state payload.

    The version is checked before the rest of the document is decoded, so a
    state written in another format is always reported as unsupported rather
    than malformed.

    Args:
        payload: Raw state bytes or text
        backend: Backend name, used for error context
        details: Extra error context (path, bucket, key)

    Returns:
        The decoded StateDocument

    Raises:
        StateFormatError: payload is not a JSON object or a field has the wrong type
        UnsupportedVersionError: ``version`` is not SUPPORTED_STATE_VERSION
    """
    context = {"backend": backend, "details": details}
    decoder = _Decoder(context)

    try:
        raw = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise StateFormatError(
            "invalid tf state file",
            backend=backend,
            details=dict(details or {}),
            cause=exc,
        ) from exc

    obj = decoder.object(raw, "$")

    version = obj.get("version")
    if (
        not isinstance(version, int)
        or isinstance(version, bool)
        or version != SUPPORTED_STATE_VERSION
    ):
        raise UnsupportedVersionError(
            f"unsupported state version {version!r}",
            backend=backend,
            version=version,
            supported=SUPPORTED_STATE_VERSION,
            details=dict(details or {}),
        )

    resources = decoder.array(obj, "resources", "$")
    state = StateDocument(
        version=version,
        terraform_version=decoder.string(obj, "terraform_version", "$"),
        serial=decoder.integer(obj, "serial", "$"),
        lineage=decoder.string(obj, "lineage", "$"),
        resources=tuple(
            decoder.resource(res, f"$.resources[{i}]") for i, res in enumerate(resources)
        ),
        outputs=decoder.outputs(obj),
    )
    logger.debug(
        "Decoded state serial=%d lineage=%s resources=%d instances=%d",
        state.serial,
        state.lineage,
        len(state.resources),
        state.instance_count,
    )
    return state


def _instance_to_dict(instance: Instance) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if instance.index_key is not None:
        data["index_key"] = instance.index_key
    if instance.status:
        data["status"] = instance.status
    if instance.deposed:
        data["deposed"] = instance.deposed
    data["schema_version"] = instance.schema_version
    data["attributes"] = instance.attributes_raw.value()
    data["dependencies"] = list(instance.dependencies)
    data["create_before_destroy"] = instance.create_before_destroy
    return data


def _resource_to_dict(resource: Resource) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if resource.module:
        data["module"] = resource.module
    data.update(mode=resource.mode, type=resource.type, name=resource.name)
    if resource.each_mode:
        data["each"] = resource.each_mode
    data["provider"] = resource.provider_config
    data["instances"] = [_instance_to_dict(i) for i in resource.instances]
    return data


def encode_state(state: StateDocument) -> bytes:
    """Encode a StateDocument back to version 4 state JSON.

    ``decode_state(encode_state(state)) == state`` holds for any document
    produced by :func:`decode_state`.
    """
    data: Dict[str, Any] = {
        "version": state.version,
        "terraform_version": state.terraform_version,
        "serial": state.serial,
        "lineage": state.lineage,
        "outputs": {
            name: {"value": out.value, "type": out.type, "sensitive": out.sensitive}
            for name, out in state.outputs.items()
        },
        "resources": [_resource_to_dict(r) for r in state.resources],
    }
    return json.dumps(data, indent=2).encode("utf-8")
