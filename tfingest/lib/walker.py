"""Hierarchy walker: state -> resources -> instances.

Each entry point takes the parent item the host engine hands it and yields
that item's children in document order. Only one level is materialized at a
time; the returned iterators are single-pass.
"""

from __future__ import annotations

from typing import Any, Iterator, Optional

from tfingest.lib.backends import ResolvedBackend
from tfingest.lib.errors import TypeMismatchError
from tfingest.lib.state import Instance, Resource, StateDocument

__all__ = ["resolve_state", "resolve_resources", "resolve_instances"]


def resolve_state(backend: Optional[ResolvedBackend]) -> Iterator[StateDocument]:
    """Yield the current backend's state, or nothing when no backend is selected."""
    if backend is None:
        return iter(())
    return iter((backend.state,))


def resolve_resources(state: Any) -> Iterator[Resource]:
    """Yield the resources of a state document.

    Raises:
        TypeMismatchError: ``state`` is not a StateDocument
    """
    if not isinstance(state, StateDocument):
        raise TypeMismatchError("state", state)
    return iter(state.resources)


def resolve_instances(resource: Any) -> Iterator[Instance]:
    """Yield the instances of a resource.

    Raises:
        TypeMismatchError: ``resource`` is not a Resource
    """
    if not isinstance(resource, Resource):
        raise TypeMismatchError("Resource", resource)
    return iter(resource.instances)
