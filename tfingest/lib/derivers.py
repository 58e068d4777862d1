"""Derived fields that are not stored verbatim in state.

Provider type and instance id derivation are best-effort: a value that
cannot be derived is reported as :data:`ABSENT` and the row field stays
unset. Attribute serialization is not best-effort, since the attributes are
the instance row's payload.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Union

from tfingest.lib.errors import SerializationError, TypeMismatchError
from tfingest.lib.state import Instance, Resource

logger = logging.getLogger(__name__)

__all__ = [
    "ABSENT",
    "Absent",
    "PROVIDER_PATH_PATTERN",
    "parse_provider_type",
    "derive_provider_type",
    "derive_instance_id",
    "derive_instance_attributes_json",
]

# e.g. provider["registry.terraform.io/hashicorp/aws"] or
# module.foo.provider["registry.terraform.io/hashicorp/aws"].west
PROVIDER_PATH_PATTERN = re.compile(
    r'^.*\["(?P<hostname>.*)/(?P<namespace>.*)/(?P<type>.*)"\].*?$'
)


class Absent:
    """Marker for a field that could not be derived.

    Distinct from None, which is a legitimate JSON value (``"id": null``).
    """

    _instance = None

    def __new__(cls) -> "Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = Absent()


def parse_provider_type(provider_config: str) -> Union[str, Absent]:
    """Extract the provider type from an encoded provider path.

    >>> parse_provider_type('provider["registry.terraform.io/hashicorp/aws"]')
    'aws'
    >>> parse_provider_type("provider.aws")
    ABSENT
    """
    if not isinstance(provider_config, str):
        return ABSENT
    match = PROVIDER_PATH_PATTERN.match(provider_config)
    if match is None:
        return ABSENT
    return match.group("type")


def derive_provider_type(resource: Resource) -> Union[str, Absent]:
    if not isinstance(resource, Resource):
        raise TypeMismatchError("Resource", resource)
    provider = parse_provider_type(resource.provider_config)
    if provider is ABSENT:
        logger.debug(
            "No provider type in %r for %s", resource.provider_config, resource.address
        )
    return provider


def derive_instance_id(instance: Instance) -> Any:
    """Return the ``id`` attribute of an instance, or ABSENT.

    Attributes that are not valid JSON, not a JSON object, or have no
    ``id`` key all yield ABSENT.
    """
    if not isinstance(instance, Instance):
        raise TypeMismatchError("Instance", instance)
    try:
        attributes = instance.attributes_raw.value()
    except ValueError:
        logger.debug("Instance attributes are not valid JSON; leaving id unset")
        return ABSENT
    if not isinstance(attributes, dict) or "id" not in attributes:
        return ABSENT
    return attributes["id"]


def derive_instance_attributes_json(instance: Instance) -> bytes:
    """Serialize an instance's attributes to canonical JSON bytes.

    Raises:
        SerializationError: The attributes are not valid JSON
    """
    if not isinstance(instance, Instance):
        raise TypeMismatchError("Instance", instance)
    try:
        value = instance.attributes_raw.value()
        return json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SerializationError(
            "not valid JSON attributes",
            details={"cause": str(exc), "cause_type": type(exc).__name__},
        ) from exc
